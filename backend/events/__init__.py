"""Event channel between watchers, the orchestrator and progress observers.

Key Components:
    - EventType: Enum of all event types in the system
    - OrchestratorEvent: Pydantic model for events flowing through the bus
    - SessionDetected / SessionUpdated / SessionCompleted: watcher payloads
    - EventBus: Async pub/sub implementation keyed by channel

Usage:
    >>> from events import get_event_bus, session_updated_event
    >>>
    >>> bus = get_event_bus()
    >>> queue = bus.subscribe("processing")
    >>>
    >>> # A watcher thread reports a transcript change
    >>> bus.publish_sync(session_updated_event("sess_123"))

Event Flow:
    1. Watchers publish SESSION_* events on the ``watcher`` channel
    2. The Orchestrator consumes them (ingest, debounce, auto-process)
    3. Processing, bulk and sync progress go out on ``processing``/``sync``
    4. The WebSocket handler forwards outbound channels to the UI
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    PROCESSING_CHANNEL,
    SYNC_CHANNEL,
    WATCHER_CHANNEL,
    EventType,
    OrchestratorEvent,
    SessionCompleted,
    SessionDetected,
    SessionUpdated,
    session_completed_event,
    session_detected_event,
    session_updated_event,
)

__all__ = [
    # Channels
    "PROCESSING_CHANNEL",
    "SYNC_CHANNEL",
    "WATCHER_CHANNEL",
    # Event types
    "EventType",
    "OrchestratorEvent",
    "SessionCompleted",
    "SessionDetected",
    "SessionUpdated",
    "session_completed_event",
    "session_detected_event",
    "session_updated_event",
    # Event bus
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
