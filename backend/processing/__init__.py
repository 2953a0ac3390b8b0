"""Session processing components.

Exports:
    ProcessingGate: Keyed non-blocking mutual exclusion
    EventIngestor: Deduplicating ingestion of detected sessions
    SessionProcessor: The guarded single-session routine
    DebounceScheduler: Per-session trailing-edge debounce
    BulkProcessingEngine: Cancellable sequential bulk runs
    DelayedAiProcessor: Periodic AI sweep over ended sessions
"""

from processing.errors import (
    BulkStateError,
    ProcessingError,
    SessionBusyError,
    SessionNotFoundError,
)
from processing.collaborators import (
    AiSummarizer,
    CacheInvalidator,
    CacheKey,
    Collaborators,
    ContentFetcher,
    MetricsComputer,
    RemoteSync,
    SessionStoreProtocol,
)
from processing.gate import ProcessingGate
from processing.ingestor import EventIngestor
from processing.session_processor import ProcessOutcome, SessionProcessor, session_cache_keys
from processing.debounce import DebounceEntry, DebounceScheduler
from processing.bulk import BulkProcessingEngine, CancellationToken
from processing.adapters import (
    DisabledAiSummarizer,
    EventBusCacheInvalidator,
    FileContentFetcher,
)
from processing.delayed_ai import DelayedAiProcessor, is_auth_error

__all__ = [
    "AiSummarizer",
    "BulkProcessingEngine",
    "BulkStateError",
    "CacheInvalidator",
    "CacheKey",
    "CancellationToken",
    "Collaborators",
    "ContentFetcher",
    "DebounceEntry",
    "DebounceScheduler",
    "DelayedAiProcessor",
    "DisabledAiSummarizer",
    "EventBusCacheInvalidator",
    "EventIngestor",
    "FileContentFetcher",
    "MetricsComputer",
    "ProcessOutcome",
    "ProcessingError",
    "ProcessingGate",
    "RemoteSync",
    "SessionBusyError",
    "SessionNotFoundError",
    "SessionProcessor",
    "SessionStoreProtocol",
    "is_auth_error",
    "session_cache_keys",
]
