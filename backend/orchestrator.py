"""Session processing orchestrator.

The Orchestrator owns every piece of coordination state (the processing
gate, debounce timers, the bulk job, sync trackers, the delayed AI sweep)
as instance fields, so independent instances never share hidden state. It
consumes watcher notifications from the event bus and drives the external
collaborators accordingly.

Lifecycle:
    orchestrator = Orchestrator(collaborators, event_bus, settings)
    await orchestrator.start()   # subscribe to the watcher channel
    ...
    await orchestrator.stop()    # cancel timers, pollers and any bulk run
"""

import asyncio
import contextlib
from typing import Any

import structlog

from config import Settings
from config import settings as default_settings
from events.bus import EventBus
from events.types import (
    WATCHER_CHANNEL,
    EventType,
    OrchestratorEvent,
    SessionCompleted,
    SessionDetected,
    SessionUpdated,
)
from models.schemas import ProcessingMode
from processing.adapters import EventBusCacheInvalidator
from processing.bulk import BulkProcessingEngine
from processing.collaborators import Collaborators
from processing.debounce import DebounceScheduler
from processing.delayed_ai import DelayedAiProcessor
from processing.errors import SessionBusyError, SessionNotFoundError
from processing.gate import ProcessingGate
from processing.ingestor import EventIngestor
from processing.session_processor import ProcessOutcome, SessionProcessor
from sync.tracker import SyncTrackerRegistry

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Decides when sessions are (re)processed and tracks historical sync.

    Attributes:
        gate: Shared ProcessingGate; every processing path acquires it.
        ingestor: Handles session-detected notifications.
        processor: The guarded single-session routine.
        scheduler: Debounces session-updated notifications.
        bulk: The bulk processing engine.
        sync: Per-provider sync trackers.
        delayed_ai: Periodic AI sweep over ended sessions.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        event_bus: EventBus,
        settings: Settings | None = None,
    ) -> None:
        self.collaborators = collaborators
        self.event_bus = event_bus
        self.settings = settings or default_settings

        cache = collaborators.cache or EventBusCacheInvalidator(event_bus)

        self.gate = ProcessingGate()
        self.ingestor = EventIngestor(collaborators.store)
        self.processor = SessionProcessor(
            self.gate,
            collaborators.store,
            collaborators.content,
            collaborators.metrics,
            collaborators.ai,
            cache,
            event_bus=event_bus,
        )
        self.scheduler = DebounceScheduler(
            self.processor,
            window_provider=lambda: self.settings.core_metrics_debounce_seconds,
            recompute_after_end=lambda: self.settings.recompute_after_session_end,
        )
        self.bulk = BulkProcessingEngine(
            self.processor,
            collaborators.store,
            rate_limit_provider=lambda: self.settings.bulk_ai_rate_limit_seconds,
            event_bus=event_bus,
        )
        self.sync = SyncTrackerRegistry(
            collaborators.remote_sync,
            poll_interval=lambda: self.settings.sync_poll_interval_seconds,
            event_bus=event_bus,
        )
        self.delayed_ai = DelayedAiProcessor(
            self.processor,
            collaborators.store,
            self.settings,
        )

        self._queue: asyncio.Queue[OrchestratorEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[ProcessOutcome | None]] = set()

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to watcher notifications and start background sweeps."""
        if self.running:
            return
        self.event_bus.bind_loop(asyncio.get_running_loop())
        self._queue = self.event_bus.subscribe(WATCHER_CHANNEL)
        self._consumer = asyncio.create_task(self._consume(self._queue), name="watcher_consumer")
        self.delayed_ai.start()
        logger.info(
            "orchestrator_started",
            debounce_seconds=self.settings.core_metrics_debounce_seconds,
            delayed_ai=self.delayed_ai.running,
        )

    async def stop(self) -> None:
        """Stop consuming and return every component to a quiescent state.

        Pending debounce timers are cancelled. A running bulk job is
        cancelled cooperatively and its current item allowed to finish.
        """
        logger.info("orchestrator_stopping")

        if self._queue is not None:
            self.event_bus.unsubscribe(WATCHER_CHANNEL, self._queue)
            self._queue = None
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

        await self.scheduler.cancel_all()
        await self.delayed_ai.stop()
        await self.sync.stop_all()
        await self.bulk.shutdown()
        await self.scheduler.wait_idle()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

        logger.info("orchestrator_stopped")

    # -------------------------------------------------------------------------
    # Inbound notifications
    # -------------------------------------------------------------------------

    async def _consume(self, queue: asyncio.Queue[OrchestratorEvent]) -> None:
        while True:
            event = await queue.get()
            if event.type == EventType.CHANNEL_CLOSED:
                logger.info("watcher_channel_closed")
                return
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(
                    "watcher_event_failed",
                    event_type=event.type.value,
                    session_id=event.session_id,
                    error=str(e),
                )

    async def handle_event(self, event: OrchestratorEvent) -> None:
        """Dispatch one watcher notification."""
        if event.type == EventType.SESSION_DETECTED:
            await self.ingestor.ingest(SessionDetected.model_validate(event.data))
        elif event.type == EventType.SESSION_UPDATED:
            updated = SessionUpdated.model_validate(self._payload(event))
            self.scheduler.notify(updated.session_id)
        elif event.type == EventType.SESSION_COMPLETED:
            completed = SessionCompleted.model_validate(self._payload(event))
            self.on_session_completed(completed.session_id)
        else:
            logger.debug("watcher_event_ignored", event_type=event.type.value)

    @staticmethod
    def _payload(event: OrchestratorEvent) -> dict[str, Any]:
        """Event data, falling back to the envelope's session id."""
        if event.session_id is None:
            return event.data
        return {"session_id": event.session_id, **event.data}

    def on_session_completed(self, session_id: str) -> None:
        self.scheduler.mark_ended(session_id)
        if not self.settings.auto_process_completed_sessions:
            return
        task = asyncio.create_task(
            self._process_completed(session_id),
            name=f"completed:{session_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _process_completed(self, session_id: str) -> ProcessOutcome | None:
        try:
            outcome = await self.processor.process(session_id, core=True)
        except Exception as e:
            logger.error("completed_session_processing_failed", session_id=session_id, error=str(e))
            return None
        if outcome == ProcessOutcome.SKIPPED_BUSY:
            logger.debug("completed_session_busy", session_id=session_id)
        return outcome

    # -------------------------------------------------------------------------
    # Manual trigger
    # -------------------------------------------------------------------------

    async def process_session(
        self,
        session_id: str,
        mode: ProcessingMode = ProcessingMode.CORE_ONLY,
    ) -> ProcessOutcome:
        """Process one session now, through the shared guarded routine.

        Raises:
            SessionBusyError: Another path is processing the session.
            SessionNotFoundError: The store has no such session.
        """
        outcome = await self.processor.process(
            session_id,
            core=True,
            ai=ProcessingMode(mode) == ProcessingMode.FULL,
        )
        if outcome == ProcessOutcome.SKIPPED_BUSY:
            raise SessionBusyError(session_id)
        if outcome == ProcessOutcome.NOT_FOUND:
            raise SessionNotFoundError(session_id)
        return outcome
