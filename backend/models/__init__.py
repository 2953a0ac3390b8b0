"""Models module for Pydantic schemas and the local session store.

This module exposes the data model shared by the orchestrator components
and the request/response models used by the API.
"""

from models.schemas import (
    BulkJobSnapshot,
    BulkModeRequest,
    BulkProgress,
    BulkSelectionRequest,
    BulkState,
    BulkSummary,
    ConfigResponse,
    ConfigUpdateRequest,
    HealthResponse,
    ProcessingMode,
    ProcessingStatus,
    ProcessSessionResponse,
    SessionInfo,
    SessionRef,
    SessionRow,
    SyncPhase,
    SyncProgress,
    SyncStateResponse,
)

__all__ = [
    "BulkJobSnapshot",
    "BulkModeRequest",
    "BulkProgress",
    "BulkSelectionRequest",
    "BulkState",
    "BulkSummary",
    "ConfigResponse",
    "ConfigUpdateRequest",
    "HealthResponse",
    "ProcessingMode",
    "ProcessingStatus",
    "ProcessSessionResponse",
    "SessionInfo",
    "SessionRef",
    "SessionRow",
    "SyncPhase",
    "SyncProgress",
    "SyncStateResponse",
]
