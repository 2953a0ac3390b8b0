"""Exceptions raised by the processing components."""


class ProcessingError(Exception):
    """Base class for orchestrator processing errors."""


class SessionBusyError(ProcessingError):
    """Raised when a manual trigger hits a session that is already in flight."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is already being processed")
        self.session_id = session_id


class SessionNotFoundError(ProcessingError, KeyError):
    """Raised when a manual trigger names a session the store does not know."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id

    def __str__(self) -> str:
        return str(self.args[0])


class BulkStateError(ProcessingError, RuntimeError):
    """Raised on a bulk engine operation that is invalid in the current state."""
