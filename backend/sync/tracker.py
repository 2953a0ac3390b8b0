"""Client-side tracking of a remote historical scan/sync operation.

The remote-sync collaborator owns the actual ``SyncProgress``. A tracker
issues the phase-transition commands (scan, sync, reset), keeps the last
snapshot it saw, and while mounted re-reads that snapshot on a fixed
interval so background upload progress shows up without further commands.
"""

import asyncio
from collections.abc import Callable

import structlog

from events.bus import EventBus
from events.types import SYNC_CHANNEL, EventType, OrchestratorEvent
from models.schemas import SyncPhase, SyncProgress
from processing.collaborators import RemoteSync
from sync.poller import IntervalSource, Poller

logger = structlog.get_logger(__name__)

_BUSY_PHASES = (SyncPhase.SYNCING, SyncPhase.UPLOADING)


class SyncProgressTracker:
    """Tracks one provider's scan -> sync -> upload progression.

    Phase only moves forward (idle, scanning, scanned, syncing, uploading,
    complete). Snapshots that would move it backwards are kept for their
    counters but the phase stays put, except right after ``reset``.

    Remote failures never raise out of ``scan``/``sync``/``reset``: they
    become ``error`` and the phase is left unchanged so the caller can retry.
    """

    def __init__(
        self,
        provider_id: str,
        remote: RemoteSync,
        poll_interval: IntervalSource = 1.0,
        event_bus: EventBus | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.remote = remote
        self.event_bus = event_bus
        self.phase = SyncPhase.IDLE
        self.progress = SyncProgress()
        self.error: str | None = None
        self._lock = asyncio.Lock()
        self._poller = Poller(self.refresh, poll_interval, name=f"sync_poll:{provider_id}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Mount the tracker: begin periodic refreshes."""
        self._poller.start()

    async def stop(self) -> None:
        await self._poller.stop()

    @property
    def polling(self) -> bool:
        return self._poller.running

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def scan(self) -> list:
        """Discover historical sessions on the remote side.

        Returns:
            The discovered SessionInfo list, or an empty list on failure.
        """
        if self.phase in _BUSY_PHASES:
            self.error = "A sync is already in progress"
            return []

        self.error = None
        previous = self.phase
        self._advance(SyncPhase.SCANNING)
        try:
            found = await self.remote.scan_historical_sessions(self.provider_id)
        except Exception as e:
            self.error = f"Scan failed: {e}"
            logger.warning("sync_scan_failed", provider_id=self.provider_id, error=str(e))
            self.phase = previous
            await self._publish()
            return []

        self.progress = self.progress.model_copy(
            update={"sessions_found": list(found)}
        )
        self._advance(SyncPhase.SCANNED)
        logger.info(
            "sync_scan_completed",
            provider_id=self.provider_id,
            sessions_found=len(found),
        )
        await self._publish()
        return list(found)

    async def sync(self) -> bool:
        """Queue the discovered sessions for upload.

        Returns:
            True if the remote accepted the request.
        """
        if self.phase in _BUSY_PHASES:
            self.error = "A sync is already in progress"
            return False
        if not self.progress.sessions_found:
            self.error = "No sessions found to sync. Run scan first."
            return False

        self.error = None
        try:
            await self.remote.sync_historical_sessions(self.provider_id)
        except Exception as e:
            self.error = f"Sync failed: {e}"
            logger.warning("sync_request_failed", provider_id=self.provider_id, error=str(e))
            await self._publish()
            return False

        self._advance(SyncPhase.SYNCING)
        logger.info("sync_requested", provider_id=self.provider_id)
        try:
            await self.refresh()
        except Exception as e:
            logger.warning("sync_refresh_failed", provider_id=self.provider_id, error=str(e))
        return True

    async def reset(self) -> bool:
        """Discard discovered and queued state and return to idle."""
        try:
            await self.remote.reset_sync_progress(self.provider_id)
        except Exception as e:
            self.error = f"Reset failed: {e}"
            logger.warning("sync_reset_failed", provider_id=self.provider_id, error=str(e))
            return False

        async with self._lock:
            self.phase = SyncPhase.IDLE
            self.progress = SyncProgress()
            self.error = None
        logger.info("sync_reset", provider_id=self.provider_id)
        await self._publish()
        return True

    async def refresh(self) -> SyncProgress:
        """Re-read the remote snapshot and fold it into local state."""
        async with self._lock:
            snapshot = await self.remote.get_sync_progress(self.provider_id)
            if snapshot.phase.rank < self.phase.rank:
                logger.debug(
                    "sync_phase_regression_ignored",
                    provider_id=self.provider_id,
                    phase=self.phase.value,
                    reported=snapshot.phase.value,
                )
            else:
                self.phase = snapshot.phase
            if not snapshot.sessions_found and self.progress.sessions_found:
                snapshot = snapshot.model_copy(
                    update={"sessions_found": self.progress.sessions_found}
                )
            self.progress = snapshot
        await self._publish()
        return snapshot

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _advance(self, phase: SyncPhase) -> None:
        if phase.rank > self.phase.rank:
            self.phase = phase

    @property
    def is_complete(self) -> bool:
        return self.phase == SyncPhase.COMPLETE or self.progress.is_complete

    async def _publish(self) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            OrchestratorEvent(
                type=EventType.SYNC_PROGRESS,
                channel=SYNC_CHANNEL,
                data={
                    "provider_id": self.provider_id,
                    "phase": self.phase.value,
                    "error": self.error,
                    **self.progress.model_dump(mode="json", exclude={"phase"}),
                },
            )
        )


class SyncTrackerRegistry:
    """One mounted tracker per provider, created on first use."""

    def __init__(
        self,
        remote: RemoteSync,
        poll_interval: IntervalSource = 1.0,
        event_bus: EventBus | None = None,
        tracker_factory: Callable[..., SyncProgressTracker] = SyncProgressTracker,
    ) -> None:
        self.remote = remote
        self.poll_interval = poll_interval
        self.event_bus = event_bus
        self.tracker_factory = tracker_factory
        self._trackers: dict[str, SyncProgressTracker] = {}

    def get(self, provider_id: str) -> SyncProgressTracker:
        tracker = self._trackers.get(provider_id)
        if tracker is None:
            tracker = self.tracker_factory(
                provider_id,
                self.remote,
                self.poll_interval,
                self.event_bus,
            )
            self._trackers[provider_id] = tracker
            tracker.start()
        return tracker

    def peek(self, provider_id: str) -> SyncProgressTracker | None:
        return self._trackers.get(provider_id)

    async def remove(self, provider_id: str) -> bool:
        tracker = self._trackers.pop(provider_id, None)
        if tracker is None:
            return False
        await tracker.stop()
        return True

    async def stop_all(self) -> None:
        trackers = list(self._trackers.values())
        self._trackers.clear()
        for tracker in trackers:
            await tracker.stop()

    def provider_ids(self) -> list[str]:
        return list(self._trackers)
