"""Keyed mutual-exclusion guard for session processing."""

import structlog

logger = structlog.get_logger(__name__)


class ProcessingGate:
    """Set of session ids currently being processed.

    Every path that recomputes a session (debounce firing, bulk item,
    manual trigger, delayed AI sweep) must hold the gate for that session.
    Acquisition never waits: a second attempt on a held key is rejected and
    the caller skips. Callers release in a ``finally`` block.

    All access happens on the event loop thread, and neither method awaits,
    so no lock is needed.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        """Mark ``key`` held. Returns False, without blocking, if it already is."""
        if key in self._held:
            logger.debug("gate_rejected", session_id=key)
            return False
        self._held.add(key)
        return True

    def release(self, key: str) -> None:
        """Clear the held mark. Safe to call for keys that are not held."""
        self._held.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._held

    def held_keys(self) -> frozenset[str]:
        return frozenset(self._held)

    def __len__(self) -> int:
        return len(self._held)
