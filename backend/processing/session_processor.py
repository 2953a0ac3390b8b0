"""Guarded single-session processing routine.

Every path that recomputes a session goes through ``SessionProcessor``:
debounce firings, bulk items, manual triggers, session-completed events and
the delayed AI sweep. The routine holds the ProcessingGate for the session
from the first store read until caches have been invalidated, so two of
those paths never overlap on the same session.
"""

from enum import StrEnum

import structlog

from events.bus import EventBus
from events.types import PROCESSING_CHANNEL, EventType, OrchestratorEvent
from processing.collaborators import (
    AiSummarizer,
    CacheInvalidator,
    CacheKey,
    ContentFetcher,
    MetricsComputer,
    SessionStoreProtocol,
)
from processing.gate import ProcessingGate

logger = structlog.get_logger(__name__)


class ProcessOutcome(StrEnum):
    """Result of one guarded processing attempt."""

    PROCESSED = "processed"
    SKIPPED_BUSY = "skipped_busy"
    NOT_FOUND = "not_found"


def session_cache_keys(session_id: str) -> list[CacheKey]:
    """Read-cache keys that hold data derived from one session."""
    return [
        ("local-sessions",),
        ("session-metrics", session_id),
        ("session-metadata", session_id),
    ]


class SessionProcessor:
    """Runs core metrics and, optionally, the AI summary for one session.

    Attributes:
        gate: The process-wide ProcessingGate shared with every caller.
    """

    def __init__(
        self,
        gate: ProcessingGate,
        store: SessionStoreProtocol,
        content: ContentFetcher,
        metrics: MetricsComputer,
        ai: AiSummarizer,
        cache: CacheInvalidator,
        event_bus: EventBus | None = None,
    ) -> None:
        self.gate = gate
        self.store = store
        self.content = content
        self.metrics = metrics
        self.ai = ai
        self.cache = cache
        self.event_bus = event_bus

    def has_ai_credential(self) -> bool:
        try:
            return bool(self.ai.has_credential())
        except Exception as e:
            logger.warning("ai_credential_check_failed", error=str(e))
            return False

    async def process(
        self,
        session_id: str,
        *,
        core: bool = True,
        ai: bool = False,
    ) -> ProcessOutcome:
        """Process one session under the gate.

        Core metrics are always recomputed when ``core`` is set, even if a
        previous run completed: live sessions keep growing. The AI pass only
        runs when ``ai`` is set and a credential is configured.

        Args:
            session_id: The session to process.
            core: Compute core metrics.
            ai: Compute the AI summary (credential permitting).

        Returns:
            PROCESSED on success, SKIPPED_BUSY if another path holds the
            session, NOT_FOUND if the store has no row for it.

        Raises:
            Exception: Whatever the content, metrics or AI collaborator
                raised. Caches are invalidated and the gate released first.
        """
        if not self.gate.try_acquire(session_id):
            return ProcessOutcome.SKIPPED_BUSY

        row = None
        try:
            row = await self.store.get_session_row(session_id)
            if row is None:
                logger.warning("process_session_not_found", session_id=session_id)
                return ProcessOutcome.NOT_FOUND

            content = await self.content.fetch_content(row.provider, row.file_path, session_id)

            if core:
                await self.metrics.compute_core_metrics(session_id, row.provider, content)

            ran_ai = False
            if ai and self.has_ai_credential():
                parsed = await self.metrics.parse_session(row.provider, content)
                await self.ai.compute_ai_summary(session_id, parsed)
                ran_ai = True

            logger.info(
                "session_processed",
                session_id=session_id,
                provider=row.provider,
                core=core,
                ai=ran_ai,
            )
            await self._publish(
                EventType.SESSION_PROCESSED,
                session_id,
                {"core": core, "ai": ran_ai},
            )
            return ProcessOutcome.PROCESSED
        except Exception as e:
            logger.error(
                "process_session_failed",
                session_id=session_id,
                error=str(e),
            )
            await self._publish(
                EventType.SESSION_PROCESSING_FAILED,
                session_id,
                {"error": str(e)},
            )
            raise
        finally:
            if row is not None:
                await self._invalidate(session_id)
            self.gate.release(session_id)

    async def _invalidate(self, session_id: str) -> None:
        try:
            await self.cache.invalidate(session_cache_keys(session_id))
        except Exception as e:
            logger.warning(
                "cache_invalidation_failed",
                session_id=session_id,
                error=str(e),
            )

    async def _publish(self, event_type: EventType, session_id: str, data: dict) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            OrchestratorEvent(
                type=event_type,
                channel=PROCESSING_CHANNEL,
                session_id=session_id,
                data=data,
            )
        )
