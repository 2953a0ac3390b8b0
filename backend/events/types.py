"""Event type definitions for the orchestrator event channel.

Inbound events arrive on the ``watcher`` channel from the file watcher
subsystem. Outbound events are published on the ``processing`` and ``sync``
channels for whoever renders progress (WebSocket clients, tests).
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

WATCHER_CHANNEL = "watcher"
PROCESSING_CHANNEL = "processing"
SYNC_CHANNEL = "sync"


class EventType(StrEnum):
    """All event types flowing through the event bus.

    Events are categorized by:
    - Watcher: sessions detected, updated or completed on disk
    - Processing: per-session results and cache invalidations
    - Bulk: bulk job state and progress
    - Sync: historical sync progress snapshots
    - Control: channel shutdown sentinel
    """

    # Watcher (inbound)
    SESSION_DETECTED = "session_detected"
    SESSION_UPDATED = "session_updated"
    SESSION_COMPLETED = "session_completed"

    # Processing
    SESSION_PROCESSED = "session_processed"
    SESSION_PROCESSING_FAILED = "session_processing_failed"
    CACHE_INVALIDATED = "cache_invalidated"

    # Bulk
    BULK_STATE_CHANGED = "bulk_state_changed"
    BULK_PROGRESS = "bulk_progress"
    BULK_COMPLETE = "bulk_complete"

    # Sync
    SYNC_PROGRESS = "sync_progress"

    # Control
    CHANNEL_CLOSED = "channel_closed"


class OrchestratorEvent(BaseModel):
    """An event published on one channel of the event bus.

    Payload schemas by event type:

    SESSION_DETECTED:
        - the fields of ``SessionDetected``

    SESSION_UPDATED / SESSION_COMPLETED:
        - session_id: str

    SESSION_PROCESSED:
        - core: bool - Whether core metrics were computed
        - ai: bool - Whether the AI summary was computed

    SESSION_PROCESSING_FAILED:
        - error: str

    CACHE_INVALIDATED:
        - keys: list[list[str]] - Read-cache keys to refetch

    BULK_STATE_CHANGED:
        - state: str - New BulkState value

    BULK_PROGRESS:
        - current: int, total: int, session_id: str

    BULK_COMPLETE:
        - success_count, error_count, skipped_count: int
        - cancelled: bool

    SYNC_PROGRESS:
        - provider_id: str, phase: str, plus the SyncProgress snapshot
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    channel: str
    session_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class SessionDetected(BaseModel):
    """Payload of a session-detected notification from a watcher."""

    provider: str
    project_name: str
    session_id: str
    file_name: str
    file_path: str
    file_size: int = 0
    session_start_time: int | None = None
    session_end_time: int | None = None
    duration_ms: int | None = None


class SessionUpdated(BaseModel):
    """Payload of a session-updated notification (transcript grew)."""

    session_id: str


class SessionCompleted(BaseModel):
    """Payload of a session-completed notification (session ended)."""

    session_id: str


def session_detected_event(payload: SessionDetected) -> OrchestratorEvent:
    """Wrap a detected-session payload for the watcher channel."""
    return OrchestratorEvent(
        type=EventType.SESSION_DETECTED,
        channel=WATCHER_CHANNEL,
        session_id=payload.session_id,
        data=payload.model_dump(),
    )


def session_updated_event(session_id: str) -> OrchestratorEvent:
    """Build a session-updated event for the watcher channel."""
    return OrchestratorEvent(
        type=EventType.SESSION_UPDATED,
        channel=WATCHER_CHANNEL,
        session_id=session_id,
        data=SessionUpdated(session_id=session_id).model_dump(),
    )


def session_completed_event(session_id: str) -> OrchestratorEvent:
    """Build a session-completed event for the watcher channel."""
    return OrchestratorEvent(
        type=EventType.SESSION_COMPLETED,
        channel=WATCHER_CHANNEL,
        session_id=session_id,
        data=SessionCompleted(session_id=session_id).model_dump(),
    )
