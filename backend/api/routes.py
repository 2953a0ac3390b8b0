"""HTTP API routes for the session processing orchestrator.

This module defines the endpoints for manual processing, bulk runs,
historical sync and live configuration. Progress events are streamed via
WebSocket in websocket.py.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, status

from config import Settings, settings
from models.schemas import (
    BulkJobSnapshot,
    BulkModeRequest,
    BulkSelectionRequest,
    ConfigResponse,
    ConfigUpdateRequest,
    HealthResponse,
    ProcessingMode,
    ProcessSessionResponse,
    SyncStateResponse,
)
from processing.errors import BulkStateError, SessionBusyError, SessionNotFoundError

if TYPE_CHECKING:
    from orchestrator import Orchestrator
    from sync.tracker import SyncProgressTracker

logger = structlog.get_logger(__name__)

router = APIRouter()

# Orchestrator dependency (set during application startup)
_orchestrator: Orchestrator | None = None


def set_orchestrator(orchestrator: Orchestrator | None) -> None:
    """Set the orchestrator instance for route handlers.

    Args:
        orchestrator: The Orchestrator instance to use, or None to clear it.
    """
    global _orchestrator
    _orchestrator = orchestrator
    logger.info("orchestrator_configured", configured=orchestrator is not None)


def get_orchestrator() -> Orchestrator:
    """Get the configured orchestrator.

    Raises:
        HTTPException: 503 if the orchestrator is not configured.
    """
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized",
        )
    return _orchestrator


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _bulk_conflict(e: BulkStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def _sync_state(tracker: SyncProgressTracker) -> SyncStateResponse:
    return SyncStateResponse(
        provider_id=tracker.provider_id,
        phase=tracker.phase,
        error=tracker.error,
        progress=tracker.progress,
    )


def _active_settings() -> Settings:
    """Settings the running orchestrator reads, falling back to the global ones."""
    if _orchestrator is not None:
        return _orchestrator.settings
    return settings


def _config_response() -> ConfigResponse:
    current = _active_settings()
    return ConfigResponse(
        core_metrics_debounce_seconds=current.core_metrics_debounce_seconds,
        bulk_ai_rate_limit_ms=current.bulk_ai_rate_limit_ms,
        sync_poll_interval_ms=current.sync_poll_interval_ms,
        recompute_after_session_end=current.recompute_after_session_end,
    )


ProviderId = Annotated[str, Path(min_length=1, description="Provider identifier")]


# -----------------------------------------------------------------------------
# Manual processing
# -----------------------------------------------------------------------------


@router.post(
    "/api/sessions/{session_id}/process",
    response_model=ProcessSessionResponse,
    summary="Process one session now",
)
async def process_session(
    session_id: Annotated[str, Path(min_length=1)],
    mode: Annotated[ProcessingMode, Query()] = ProcessingMode.CORE_ONLY,
) -> ProcessSessionResponse:
    """Run the guarded single-session routine for one session.

    Returns 409 if the session is already being processed by the debounce
    path or a bulk run, 404 if the store does not know it.
    """
    orchestrator = get_orchestrator()
    try:
        outcome = await orchestrator.process_session(session_id, mode)
    except SessionBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except Exception as e:
        logger.error("manual_processing_failed", session_id=session_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Processing failed: {e}",
        ) from e

    return ProcessSessionResponse(session_id=session_id, mode=mode, outcome=outcome.value)


# -----------------------------------------------------------------------------
# Bulk processing
# -----------------------------------------------------------------------------


@router.get("/api/bulk", response_model=BulkJobSnapshot, summary="Get bulk job state")
async def get_bulk_state() -> BulkJobSnapshot:
    return get_orchestrator().bulk.snapshot()


@router.post("/api/bulk/request", response_model=BulkJobSnapshot, summary="Select sessions")
async def request_bulk(request: BulkSelectionRequest) -> BulkJobSnapshot:
    bulk = get_orchestrator().bulk
    try:
        await bulk.request(request.session_ids)
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post(
    "/api/bulk/process-all",
    response_model=BulkJobSnapshot,
    summary="Select every eligible session",
)
async def process_all(request: BulkModeRequest) -> BulkJobSnapshot:
    """Select all sessions eligible for the mode and await confirmation.

    Core-only selects every session; full skips sessions whose assessment
    has already completed.
    """
    bulk = get_orchestrator().bulk
    try:
        await bulk.process_all(request.mode)
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post("/api/bulk/mode", response_model=BulkJobSnapshot, summary="Choose bulk mode")
async def choose_bulk_mode(request: BulkModeRequest) -> BulkJobSnapshot:
    bulk = get_orchestrator().bulk
    try:
        await bulk.choose_mode(request.mode)
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post("/api/bulk/confirm", response_model=BulkJobSnapshot, summary="Start bulk run")
async def confirm_bulk() -> BulkJobSnapshot:
    bulk = get_orchestrator().bulk
    try:
        await bulk.confirm()
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post("/api/bulk/decline", response_model=BulkJobSnapshot, summary="Abandon bulk job")
async def decline_bulk() -> BulkJobSnapshot:
    bulk = get_orchestrator().bulk
    try:
        await bulk.decline()
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post("/api/bulk/cancel", response_model=BulkJobSnapshot, summary="Cancel bulk run")
async def cancel_bulk() -> BulkJobSnapshot:
    """Request cancellation. The session in flight still finishes."""
    bulk = get_orchestrator().bulk
    try:
        await bulk.cancel()
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


@router.post(
    "/api/bulk/acknowledge",
    response_model=BulkJobSnapshot,
    summary="Dismiss bulk summary",
)
async def acknowledge_bulk() -> BulkJobSnapshot:
    bulk = get_orchestrator().bulk
    try:
        await bulk.acknowledge()
    except BulkStateError as e:
        raise _bulk_conflict(e) from e
    return bulk.snapshot()


# -----------------------------------------------------------------------------
# Historical sync
# -----------------------------------------------------------------------------


@router.get(
    "/api/sync/{provider_id}",
    response_model=SyncStateResponse,
    summary="Get sync state",
)
async def get_sync_state(provider_id: ProviderId) -> SyncStateResponse:
    """Return the tracker state, mounting a polling tracker on first use."""
    tracker = get_orchestrator().sync.get(provider_id)
    return _sync_state(tracker)


@router.post(
    "/api/sync/{provider_id}/scan",
    response_model=SyncStateResponse,
    summary="Scan for historical sessions",
)
async def scan_sync(provider_id: ProviderId) -> SyncStateResponse:
    tracker = get_orchestrator().sync.get(provider_id)
    await tracker.scan()
    return _sync_state(tracker)


@router.post(
    "/api/sync/{provider_id}/sync",
    response_model=SyncStateResponse,
    summary="Upload scanned sessions",
)
async def start_sync(provider_id: ProviderId) -> SyncStateResponse:
    tracker = get_orchestrator().sync.get(provider_id)
    await tracker.sync()
    return _sync_state(tracker)


@router.post(
    "/api/sync/{provider_id}/reset",
    response_model=SyncStateResponse,
    summary="Reset sync progress",
)
async def reset_sync(provider_id: ProviderId) -> SyncStateResponse:
    tracker = get_orchestrator().sync.get(provider_id)
    await tracker.reset()
    return _sync_state(tracker)


@router.delete(
    "/api/sync/{provider_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop tracking a provider",
)
async def unmount_sync(provider_id: ProviderId) -> None:
    removed = await get_orchestrator().sync.remove(provider_id)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No sync tracker for provider '{provider_id}'",
        )


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@router.get("/api/config", response_model=ConfigResponse, summary="Get live configuration")
async def get_config() -> ConfigResponse:
    return _config_response()


@router.put("/api/config", response_model=ConfigResponse, summary="Update live configuration")
async def update_config(request: ConfigUpdateRequest) -> ConfigResponse:
    """Update settings that are read on every use.

    The new debounce window applies from the next session-updated event.
    """
    current = _active_settings()
    if request.core_metrics_debounce_seconds is not None:
        current.core_metrics_debounce_seconds = request.core_metrics_debounce_seconds
    if request.recompute_after_session_end is not None:
        current.recompute_after_session_end = request.recompute_after_session_end
    logger.info("config_updated", **request.model_dump(exclude_none=True))
    return _config_response()


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check() -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        version="0.1.0",
        running=_orchestrator is not None and _orchestrator.running,
    )
