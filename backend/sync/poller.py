"""Periodic background callback with start/stop."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

IntervalSource = float | Callable[[], float]


class Poller:
    """Runs ``callback`` every ``interval`` seconds until stopped.

    The first tick runs immediately after ``start``. A tick that raises is
    logged and the loop keeps going; polling never stops on its own.

    ``interval`` may be a number or a zero-argument callable, in which case
    it is re-read before every sleep.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval: IntervalSource,
        name: str = "poller",
    ) -> None:
        self.callback = callback
        self.interval = interval
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _interval_seconds(self) -> float:
        value = self.interval() if callable(self.interval) else self.interval
        return max(0.0, float(value))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        logger.info("poller_started", poller=self.name, interval_seconds=self._interval_seconds())
        try:
            while True:
                try:
                    await self.callback()
                except Exception as e:
                    logger.error("poller_tick_failed", poller=self.name, error=str(e))
                await asyncio.sleep(self._interval_seconds())
        except asyncio.CancelledError:
            logger.info("poller_stopped", poller=self.name)
            raise
