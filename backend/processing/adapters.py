"""Concrete collaborators shipped with the orchestrator."""

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from events.bus import EventBus
from events.types import PROCESSING_CHANNEL, EventType, OrchestratorEvent
from processing.collaborators import CacheKey

logger = structlog.get_logger(__name__)


class FileContentFetcher:
    """Reads session transcripts straight from the provider's file.

    Reads run in a worker thread so large transcripts do not stall the loop.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def fetch_content(self, provider: str, file_path: str, session_id: str) -> str:
        path = Path(file_path).expanduser()
        content = await asyncio.to_thread(path.read_text, encoding=self.encoding)
        logger.debug(
            "session_content_read",
            session_id=session_id,
            provider=provider,
            size=len(content),
        )
        return content


class EventBusCacheInvalidator:
    """Announces stale read-cache keys on the processing channel.

    UI clients listening on the WebSocket refetch whatever keys they hold.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus

    async def invalidate(self, keys: Sequence[CacheKey]) -> None:
        session_ids = {key[1] for key in keys if len(key) > 1}
        await self.event_bus.publish(
            OrchestratorEvent(
                type=EventType.CACHE_INVALIDATED,
                channel=PROCESSING_CHANNEL,
                session_id=next(iter(session_ids)) if len(session_ids) == 1 else None,
                data={"keys": [list(key) for key in keys]},
            )
        )


class DisabledAiSummarizer:
    """AI collaborator used when no AI provider is configured."""

    def has_credential(self) -> bool:
        return False

    async def compute_ai_summary(self, session_id: str, parsed_content: Any) -> None:
        raise RuntimeError("AI summarization is not configured")
