"""Per-session trailing-edge debounce of update notifications."""

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from processing.session_processor import ProcessOutcome, SessionProcessor

logger = structlog.get_logger(__name__)


@dataclass
class DebounceEntry:
    """The single pending timer for one session key."""

    key: str
    task: asyncio.Task[None]
    scheduled_at: float


class DebounceScheduler:
    """Collapses bursts of SessionUpdated events into one recomputation.

    Each ``notify`` for a key replaces that key's pending timer, so the
    guarded routine runs ``window`` seconds after the *last* event of a
    burst. Timers for distinct keys are independent and uncapped.

    The window is read through ``window_provider`` on every notify, so a
    changed setting applies to the next event without a restart.

    A firing that finds the session busy is dropped; the next update event
    re-debounces it. A firing whose computation fails is logged and
    dropped, the processor having already released the gate and
    invalidated caches.

    Ended sessions are remembered in insertion order up to
    MAX_ENDED_SESSIONS; beyond that the oldest are forgotten.
    """

    MAX_ENDED_SESSIONS = 10_000

    def __init__(
        self,
        processor: SessionProcessor,
        window_provider: Callable[[], float],
        recompute_after_end: Callable[[], bool] = lambda: True,
    ) -> None:
        self.processor = processor
        self.window_provider = window_provider
        self.recompute_after_end = recompute_after_end
        self._entries: dict[str, DebounceEntry] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._ended: dict[str, None] = {}

    def notify(self, session_id: str) -> None:
        """Record an update for ``session_id`` and (re)arm its timer."""
        if session_id in self._ended and not self.recompute_after_end():
            logger.debug("debounce_ignored_ended_session", session_id=session_id)
            return

        previous = self._entries.pop(session_id, None)
        if previous is not None:
            previous.task.cancel()

        window = max(0.0, float(self.window_provider()))
        task = asyncio.create_task(
            self._fire_after(session_id, window),
            name=f"debounce:{session_id}",
        )
        self._entries[session_id] = DebounceEntry(
            key=session_id,
            task=task,
            scheduled_at=time.monotonic() + window,
        )
        logger.debug(
            "debounce_scheduled",
            session_id=session_id,
            window_seconds=window,
            superseded=previous is not None,
        )

    def mark_ended(self, session_id: str) -> None:
        """Record that the watcher reported ``session_id`` as finished.

        When recomputation after end is disabled, any timer still pending
        for the session is dropped.
        """
        self._ended.pop(session_id, None)
        self._ended[session_id] = None
        while len(self._ended) > self.MAX_ENDED_SESSIONS:
            del self._ended[next(iter(self._ended))]
        if self.recompute_after_end():
            return
        entry = self._entries.pop(session_id, None)
        if entry is not None:
            entry.task.cancel()
            logger.debug("debounce_cancelled_ended_session", session_id=session_id)

    def is_ended(self, session_id: str) -> bool:
        return session_id in self._ended

    def pending_keys(self) -> list[str]:
        return list(self._entries)

    def get_entry(self, session_id: str) -> DebounceEntry | None:
        return self._entries.get(session_id)

    async def _fire_after(self, session_id: str, window: float) -> None:
        await asyncio.sleep(window)

        # From here on a new notify arms a fresh timer instead of
        # cancelling this firing.
        current = asyncio.current_task()
        entry = self._entries.get(session_id)
        if entry is not None and entry.task is current:
            del self._entries[session_id]
        if current is not None:
            self._inflight.add(current)
            current.add_done_callback(self._inflight.discard)

        try:
            outcome = await self.processor.process(session_id, core=True)
        except Exception as e:
            logger.error(
                "debounced_processing_failed",
                session_id=session_id,
                error=str(e),
            )
            return

        if outcome == ProcessOutcome.SKIPPED_BUSY:
            logger.debug("debounce_firing_dropped_busy", session_id=session_id)
        elif outcome == ProcessOutcome.NOT_FOUND:
            logger.warning("debounce_session_missing", session_id=session_id)
        else:
            logger.debug("debounce_fired", session_id=session_id)

    async def cancel_all(self) -> None:
        """Cancel every pending timer. In-flight firings are left to finish."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.task.cancel()
        for entry in entries:
            with contextlib.suppress(asyncio.CancelledError):
                await entry.task
        if entries:
            logger.info("debounce_timers_cancelled", count=len(entries))

    async def wait_idle(self) -> None:
        """Wait for firings that already left their timer to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
