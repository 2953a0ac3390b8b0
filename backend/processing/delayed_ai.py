"""Delayed AI summarization of recently ended sessions.

Sessions are summarized some minutes after they end rather than on every
update: the AI pass is costly and a session that is still being worked on
would need to be summarized again. A periodic sweep picks up sessions whose
core metrics are done and whose processing status is still pending.
"""

import time
from collections.abc import Callable

import structlog

from config import Settings
from models.schemas import ProcessingStatus
from processing.collaborators import SessionStoreProtocol
from processing.session_processor import ProcessOutcome, SessionProcessor
from sync.poller import Poller

logger = structlog.get_logger(__name__)

_AUTH_ERROR_MARKERS = ("401", "403", "api key", "unauthorized")


def is_auth_error(error: Exception) -> bool:
    """True if ``error`` looks like a rejected or missing AI credential."""
    message = str(error).lower()
    return any(marker in message for marker in _AUTH_ERROR_MARKERS)


class DelayedAiProcessor:
    """Periodic sweep running the AI pass on sessions that ended a while ago.

    Sessions are eligible once they ended more than
    ``ai_processing_delay_minutes`` ago but less than
    ``ai_processing_max_age_minutes`` ago. An authentication failure marks
    the session ``failed`` so it is not retried on every sweep; any other
    failure leaves it pending for the next one.
    """

    def __init__(
        self,
        processor: SessionProcessor,
        store: SessionStoreProtocol,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.processor = processor
        self.store = store
        self.settings = settings
        self.clock = clock
        self._poller = Poller(
            self.sweep,
            lambda: self.settings.ai_sweep_interval_seconds,
            name="delayed_ai_sweep",
        )

    @property
    def running(self) -> bool:
        return self._poller.running

    def start(self) -> None:
        if not self.settings.delayed_ai_enabled:
            logger.info("delayed_ai_disabled")
            return
        self._poller.start()

    async def stop(self) -> None:
        await self._poller.stop()

    async def sweep(self) -> int:
        """Run one pass. Returns the number of sessions summarized."""
        if not self.processor.has_ai_credential():
            logger.debug("delayed_ai_skipped_no_credential")
            return 0

        now_ms = int(self.clock() * 1000)
        delay_ms = self.settings.ai_processing_delay_minutes * 60 * 1000
        max_age_ms = self.settings.ai_processing_max_age_minutes * 60 * 1000
        eligible = await self.store.find_ai_eligible(
            now_ms=now_ms,
            delay_ms=delay_ms,
            min_end_time_ms=now_ms - max_age_ms,
            limit=self.settings.ai_sweep_batch_size,
        )
        if not eligible:
            return 0

        logger.info("delayed_ai_sweep_started", eligible=len(eligible))
        processed = 0
        for row in eligible:
            try:
                outcome = await self.processor.process(row.session_id, core=False, ai=True)
            except Exception as e:
                if is_auth_error(e):
                    logger.warning(
                        "delayed_ai_auth_failed",
                        session_id=row.session_id,
                        error=str(e),
                    )
                    await self.store.update_processing_status(
                        row.session_id, ProcessingStatus.FAILED
                    )
                else:
                    logger.error(
                        "delayed_ai_failed",
                        session_id=row.session_id,
                        error=str(e),
                    )
                continue

            if outcome == ProcessOutcome.PROCESSED:
                processed += 1

        logger.info("delayed_ai_sweep_finished", processed=processed, eligible=len(eligible))
        return processed
