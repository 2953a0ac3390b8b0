"""User-driven bulk processing over a selection of sessions.

The engine walks the selection strictly one session at a time through the
shared guarded routine, so a bulk run never overlaps a debounce firing or
manual trigger on the same session. Cancellation is cooperative: the item
in flight always finishes, the next one never starts.
"""

import asyncio
import contextlib
from collections.abc import Callable, Sequence

import structlog

from events.bus import EventBus
from events.types import PROCESSING_CHANNEL, EventType, OrchestratorEvent
from models.schemas import (
    BulkJobSnapshot,
    BulkProgress,
    BulkState,
    BulkSummary,
    ProcessingMode,
)
from processing.collaborators import SessionStoreProtocol
from processing.errors import BulkStateError
from processing.session_processor import ProcessOutcome, SessionProcessor

logger = structlog.get_logger(__name__)


class CancellationToken:
    """Shared cancel flag for one bulk run.

    Backed by an asyncio.Event so the rate-limit pause can wake up early
    once cancellation is requested.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class BulkProcessingEngine:
    """State machine driving bulk runs.

    States::

        IDLE -> MODE_SELECTION -> CONFIRMING -> RUNNING -> COMPLETE -> IDLE
                                                   |          ^
                                                   v          |
                                               CANCELLING ----+

    ``decline`` returns to IDLE from MODE_SELECTION or CONFIRMING.
    Operations called in the wrong state raise ``BulkStateError``.

    Attributes:
        state: Current BulkState.
        mode: Chosen ProcessingMode, or None before mode selection.
        selection: Session ids of the pending or running job.
        progress: ``current``/``total`` of the running job.
        summary: Result of the last finished run, until acknowledged.
    """

    def __init__(
        self,
        processor: SessionProcessor,
        store: SessionStoreProtocol,
        rate_limit_provider: Callable[[], float],
        event_bus: EventBus | None = None,
    ) -> None:
        self.processor = processor
        self.store = store
        self.rate_limit_provider = rate_limit_provider
        self.event_bus = event_bus

        self.state = BulkState.IDLE
        self.mode: ProcessingMode | None = None
        self.selection: list[str] = []
        self.progress = BulkProgress()
        self.success_count = 0
        self.error_count = 0
        self.skipped_count = 0
        self.summary: BulkSummary | None = None

        self._token: CancellationToken | None = None
        self._task: asyncio.Task[BulkSummary] | None = None

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _require(self, *states: BulkState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise BulkStateError(
                f"Bulk engine is '{self.state.value}', expected one of: {allowed}"
            )

    async def _set_state(self, state: BulkState) -> None:
        previous = self.state
        self.state = state
        logger.info("bulk_state_changed", previous=previous.value, state=state.value)
        await self._publish(EventType.BULK_STATE_CHANGED, {"state": state.value})

    async def request(self, session_ids: Sequence[str]) -> None:
        """Start a bulk job for an explicit selection; asks for a mode next."""
        self._require(BulkState.IDLE)
        selection = list(dict.fromkeys(session_ids))
        if not selection:
            raise BulkStateError("Bulk selection is empty")
        self.selection = selection
        self.mode = None
        await self._set_state(BulkState.MODE_SELECTION)

    async def choose_mode(self, mode: ProcessingMode) -> None:
        self._require(BulkState.MODE_SELECTION)
        self.mode = ProcessingMode(mode)
        await self._set_state(BulkState.CONFIRMING)

    async def process_all(self, mode: ProcessingMode) -> list[str]:
        """Select every eligible session for ``mode`` and ask for confirmation.

        Core-only runs select every known session. Full runs skip sessions
        whose assessment already completed.

        Returns:
            The selected session ids.
        """
        self._require(BulkState.IDLE)
        mode = ProcessingMode(mode)
        selection = await self.select_all(mode)
        if not selection:
            raise BulkStateError("No sessions eligible for bulk processing")
        self.selection = selection
        self.mode = mode
        await self._set_state(BulkState.CONFIRMING)
        return selection

    async def select_all(self, mode: ProcessingMode) -> list[str]:
        rows = await self.store.list_sessions()
        if mode == ProcessingMode.FULL:
            rows = [r for r in rows if r.assessment_status != "completed"]
        return list(dict.fromkeys(r.session_id for r in rows))

    async def confirm(self) -> asyncio.Task[BulkSummary]:
        """Start the run in a background task."""
        self._require(BulkState.CONFIRMING)
        if self.mode is None:
            raise BulkStateError("No processing mode chosen")

        self._token = CancellationToken()
        self.progress = BulkProgress(current=0, total=len(self.selection))
        self.success_count = 0
        self.error_count = 0
        self.skipped_count = 0
        self.summary = None
        await self._set_state(BulkState.RUNNING)

        self._task = asyncio.create_task(
            self._run_loop(list(self.selection), self.mode, self._token),
            name="bulk_processing",
        )
        return self._task

    async def decline(self) -> None:
        self._require(BulkState.MODE_SELECTION, BulkState.CONFIRMING)
        self.selection = []
        self.mode = None
        await self._set_state(BulkState.IDLE)

    async def cancel(self) -> None:
        """Request cancellation; the current item still runs to completion."""
        self._require(BulkState.RUNNING)
        if self._token is not None:
            self._token.cancel()
        await self._set_state(BulkState.CANCELLING)

    async def acknowledge(self) -> BulkSummary | None:
        """Dismiss a finished run's summary and return to IDLE."""
        self._require(BulkState.COMPLETE)
        summary = self.summary
        self.summary = None
        self.mode = None
        self.progress = BulkProgress()
        self.success_count = 0
        self.error_count = 0
        self.skipped_count = 0
        await self._set_state(BulkState.IDLE)
        return summary

    async def wait(self) -> BulkSummary | None:
        """Wait for the running job, if any, and return its summary."""
        if self._task is None:
            return self.summary
        return await self._task

    async def run(self, session_ids: Sequence[str], mode: ProcessingMode) -> BulkSummary:
        """Request, choose mode, confirm and wait in one call."""
        await self.request(session_ids)
        await self.choose_mode(mode)
        task = await self.confirm()
        return await task

    async def shutdown(self) -> None:
        """Cancel cooperatively and wait for the running item to finish."""
        if self._token is not None and self.state == BulkState.RUNNING:
            self._token.cancel()
            self.state = BulkState.CANCELLING
        if self._task is not None and not self._task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> BulkJobSnapshot:
        return BulkJobSnapshot(
            state=self.state,
            mode=self.mode,
            selection=list(self.selection),
            progress=self.progress.model_copy(),
            success_count=self.success_count,
            error_count=self.error_count,
            skipped_count=self.skipped_count,
            summary=self.summary,
        )

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def _run_loop(
        self,
        selection: list[str],
        mode: ProcessingMode,
        token: CancellationToken,
    ) -> BulkSummary:
        total = len(selection)
        full = mode == ProcessingMode.FULL
        logger.info("bulk_run_started", mode=mode.value, total=total)

        try:
            for i, session_id in enumerate(selection):
                if token.cancelled:
                    logger.info("bulk_run_cancelled", completed=i, total=total)
                    break

                self.progress = BulkProgress(current=i + 1, total=total)
                await self._publish(
                    EventType.BULK_PROGRESS,
                    {"current": i + 1, "total": total, "session_id": session_id},
                    session_id=session_id,
                )

                await self._process_item(session_id, full)

                if full and i < total - 1 and self.processor.has_ai_credential():
                    delay = self.rate_limit_provider()
                    if delay > 0:
                        with contextlib.suppress(TimeoutError):
                            await asyncio.wait_for(token.wait(), timeout=delay)
        finally:
            summary = BulkSummary(
                success_count=self.success_count,
                error_count=self.error_count,
                skipped_count=self.skipped_count,
                cancelled=token.cancelled,
            )
            self.summary = summary
            self.selection = []
            self._token = None
            await self._set_state(BulkState.COMPLETE)
            await self._publish(EventType.BULK_COMPLETE, summary.model_dump())
            logger.info("bulk_run_finished", **summary.model_dump())

        return summary

    async def _process_item(self, session_id: str, full: bool) -> None:
        try:
            outcome = await self.processor.process(session_id, core=True, ai=full)
        except Exception as e:
            self.error_count += 1
            logger.warning("bulk_item_failed", session_id=session_id, error=str(e))
            return

        if outcome == ProcessOutcome.PROCESSED:
            self.success_count += 1
        elif outcome == ProcessOutcome.SKIPPED_BUSY:
            self.skipped_count += 1
            logger.info("bulk_item_skipped_busy", session_id=session_id)
        else:
            self.error_count += 1
            logger.warning("bulk_item_not_found", session_id=session_id)

    async def _publish(
        self,
        event_type: EventType,
        data: dict,
        session_id: str | None = None,
    ) -> None:
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
