"""Historical sync tracking for the orchestrator.

Exports:
    Poller: Periodic background callback with start/stop
    SyncProgressTracker: Poll-driven view of one provider's scan/sync
    SyncTrackerRegistry: One tracker per provider
"""

from sync.poller import Poller
from sync.tracker import SyncProgressTracker, SyncTrackerRegistry

__all__ = [
    "Poller",
    "SyncProgressTracker",
    "SyncTrackerRegistry",
]
