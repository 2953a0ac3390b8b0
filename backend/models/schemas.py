"""Pydantic schemas for the orchestrator data model and HTTP API.

This module defines the records exchanged with collaborators (session rows,
sync progress snapshots) as well as request/response models used by the
HTTP API. All models use Pydantic v2.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProcessingMode(StrEnum):
    """Bulk/manual processing modes."""

    CORE_ONLY = "core"
    FULL = "full"


class ProcessingStatus(StrEnum):
    """Values of the ``processing_status`` column of a session row."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionRef(BaseModel):
    """Stable identity of one unit of work."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    provider: str
    file_path: str


class SessionRow(BaseModel):
    """A locally stored session as seen by the orchestrator."""

    session_id: str
    provider: str
    file_path: str
    file_name: str = ""
    project_name: str = ""
    core_metrics_status: str | None = None
    processing_status: str = ProcessingStatus.PENDING
    assessment_status: str | None = None
    session_end_time: int | None = None

    @property
    def ref(self) -> SessionRef:
        return SessionRef(
            session_id=self.session_id,
            provider=self.provider,
            file_path=self.file_path,
        )


class SessionInfo(BaseModel):
    """A discovered-but-not-yet-synced historical session."""

    provider: str
    project_name: str
    session_id: str
    file_path: str
    file_name: str
    file_size: int = 0
    session_start_time: str | None = None


class SyncPhase(StrEnum):
    """Phases of a historical scan/sync, in forward order."""

    IDLE = "idle"
    SCANNING = "scanning"
    SCANNED = "scanned"
    SYNCING = "syncing"
    UPLOADING = "uploading"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(SyncPhase)


class SyncProgress(BaseModel):
    """Server-tracked state of a scan-then-upload operation for one provider.

    Remote implementations may report either an explicit ``phase`` or the
    boolean flags (``is_scanning``, ``is_syncing``, ``is_uploading``) the
    phase is derived from.
    """

    phase: SyncPhase = SyncPhase.IDLE
    total_sessions: int = 0
    synced_sessions: int = 0
    current_provider: str = ""
    current_project: str = ""
    sessions_found: list[SessionInfo] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    is_complete: bool = False

    @model_validator(mode="before")
    @classmethod
    def derive_phase(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("phase"):
            return data
        data = dict(data)
        if data.get("is_complete"):
            phase = SyncPhase.COMPLETE
        elif data.get("is_uploading"):
            phase = SyncPhase.UPLOADING
        elif data.get("is_syncing"):
            phase = SyncPhase.SYNCING
        elif data.get("is_scanning"):
            phase = SyncPhase.SCANNING
        elif data.get("sessions_found"):
            phase = SyncPhase.SCANNED
        else:
            phase = SyncPhase.IDLE
        data["phase"] = phase
        return data


class BulkState(StrEnum):
    """Lifecycle of the bulk processing engine."""

    IDLE = "idle"
    MODE_SELECTION = "mode_selection"
    CONFIRMING = "confirming"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETE = "complete"


class BulkProgress(BaseModel):
    current: int = 0
    total: int = 0


class BulkSummary(BaseModel):
    """Outcome counts reported when a bulk loop exits."""

    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    cancelled: bool = False


class BulkJobSnapshot(BaseModel):
    """Read-only view of the bulk engine for API consumers."""

    state: BulkState
    mode: ProcessingMode | None = None
    selection: list[str] = Field(default_factory=list)
    progress: BulkProgress = Field(default_factory=BulkProgress)
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    summary: BulkSummary | None = None


# -----------------------------------------------------------------------------
# API request / response models
# -----------------------------------------------------------------------------


class BulkSelectionRequest(BaseModel):
    session_ids: list[str] = Field(
        min_length=1,
        description="Sessions to include in the bulk run",
    )


class BulkModeRequest(BaseModel):
    mode: ProcessingMode = Field(description="Processing mode for the bulk run")


class ProcessSessionResponse(BaseModel):
    session_id: str
    mode: ProcessingMode
    outcome: str


class SyncStateResponse(BaseModel):
    """Tracker view for one provider."""

    provider_id: str
    phase: SyncPhase
    error: str | None = None
    progress: SyncProgress | None = None


class ConfigResponse(BaseModel):
    core_metrics_debounce_seconds: float
    bulk_ai_rate_limit_ms: int
    sync_poll_interval_ms: int
    recompute_after_session_end: bool


class ConfigUpdateRequest(BaseModel):
    core_metrics_debounce_seconds: float | None = Field(default=None, ge=0.0)
    recompute_after_session_end: bool | None = None


class HealthResponse(BaseModel):
    status: str = Field(default="healthy")
    timestamp: float
    version: str = Field(default="0.1.0")
    running: bool = False
