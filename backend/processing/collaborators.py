"""Interfaces of the external collaborators the orchestrator drives.

The orchestrator decides when and how often work happens; what the work is
belongs to these collaborators. Concrete transports live outside this
package (see ``processing.adapters`` and ``models.database`` for the ones
shipped here).
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from events.types import SessionDetected
from models.schemas import SessionInfo, SessionRow, SyncProgress

# A read-cache key, e.g. ("session-metrics", "sess_123")
CacheKey = tuple[str, ...]


@runtime_checkable
class SessionStoreProtocol(Protocol):
    async def session_exists(self, session_id: str, file_name: str) -> bool: ...

    async def insert_session(self, session: SessionDetected) -> str: ...

    async def get_session_row(self, session_id: str) -> SessionRow | None: ...

    async def list_sessions(self) -> list[SessionRow]: ...

    async def find_ai_eligible(
        self,
        now_ms: int,
        delay_ms: int,
        min_end_time_ms: int,
        limit: int,
    ) -> list[SessionRow]: ...

    async def update_processing_status(self, session_id: str, status: str) -> None: ...


@runtime_checkable
class ContentFetcher(Protocol):
    async def fetch_content(self, provider: str, file_path: str, session_id: str) -> str: ...


@runtime_checkable
class MetricsComputer(Protocol):
    """Computes core metrics. Overwrites any previous result for the session."""

    async def compute_core_metrics(self, session_id: str, provider: str, content: str) -> None: ...

    async def parse_session(self, provider: str, content: str) -> Any: ...


@runtime_checkable
class AiSummarizer(Protocol):
    def has_credential(self) -> bool: ...

    async def compute_ai_summary(self, session_id: str, parsed_content: Any) -> None: ...


@runtime_checkable
class CacheInvalidator(Protocol):
    async def invalidate(self, keys: Sequence[CacheKey]) -> None: ...


@runtime_checkable
class RemoteSync(Protocol):
    async def scan_historical_sessions(self, provider_id: str) -> list[SessionInfo]: ...

    async def sync_historical_sessions(self, provider_id: str) -> None: ...

    async def get_sync_progress(self, provider_id: str) -> SyncProgress: ...

    async def reset_sync_progress(self, provider_id: str) -> None: ...


@dataclass
class Collaborators:
    """Everything the orchestrator needs from the outside world.

    ``cache`` may be left as None; the orchestrator then publishes cache
    invalidations on the event bus.
    """

    store: SessionStoreProtocol
    content: ContentFetcher
    metrics: MetricsComputer
    ai: AiSummarizer
    remote_sync: RemoteSync
    cache: CacheInvalidator | None = None
