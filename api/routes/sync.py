"""
Sync control endpoints: start, resume and status
"""

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from typing import Optional
from api.dependencies import get_orchestrator
from core.exceptions import (
    NothingToResume,
    PersistenceError,
    ProviderError,
    SyncAlreadyRunningError,
    UnknownSyncTypeError
)
from models.base import SyncType
from schemas.api import SyncActionResponse, SyncStatusListResponse
from schemas.sync import SyncProgressRead, SyncStartRequest
from sync.orchestrator import SyncOrchestrator
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


@router.get("", response_model=SyncStatusListResponse)
async def list_syncs(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Progress of every sync type that has run at least once"""
    try:
        items = await orchestrator.status_all()
    except PersistenceError as e:
        logger.error(f"GET /sync failed: {e}")
        raise HTTPException(status_code=503, detail=e.message)
    return SyncStatusListResponse(
        items=items,
        running=[sync_type.value for sync_type in orchestrator.running_types()]
    )


@router.get("/{sync_type}", response_model=SyncProgressRead)
async def get_sync(sync_type: SyncType, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Current progress row for one sync type"""
    try:
        progress = await orchestrator.status(sync_type)
    except PersistenceError as e:
        logger.error(f"GET /sync/{sync_type.value} failed: {e}")
        raise HTTPException(status_code=503, detail=e.message)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No {sync_type.value} sync has run yet")
    return progress


@router.post("/{sync_type}/start", response_model=SyncActionResponse, status_code=202)
async def start_sync(
    sync_type: SyncType,
    request: Request,
    body: Optional[SyncStartRequest] = Body(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Start a full sync.

    The job runs in the background; poll GET /sync/{type} for progress.
    """
    body = body or SyncStartRequest()
    logger.info(
        f"[{_request_id(request)}] POST /sync/{sync_type.value}/start - "
        f"clear_existing={body.clear_existing}, batch_size={body.batch_size}, mode={body.mode}"
    )

    try:
        progress = await orchestrator.start(
            sync_type,
            clear_existing=body.clear_existing,
            batch_size=body.batch_size,
            mode=body.mode,
            provider_options=body.provider_options
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except UnknownSyncTypeError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ProviderError as e:
        logger.error(f"[{_request_id(request)}] Failed to start {sync_type.value}: {e}")
        raise HTTPException(status_code=502, detail=e.message)
    except PersistenceError as e:
        logger.error(f"[{_request_id(request)}] Failed to start {sync_type.value}: {e}")
        raise HTTPException(status_code=503, detail=e.message)

    return SyncActionResponse(
        action="start",
        message=f"{sync_type.value} sync started",
        progress=progress
    )


@router.post("/{sync_type}/resume", response_model=SyncActionResponse, status_code=202)
async def resume_sync(
    sync_type: SyncType,
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Resume an incomplete sync from its last persisted offset"""
    logger.info(f"[{_request_id(request)}] POST /sync/{sync_type.value}/resume")

    try:
        progress = await orchestrator.resume(sync_type)
    except NothingToResume as e:
        raise HTTPException(status_code=404, detail=e.message)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except PersistenceError as e:
        logger.error(f"[{_request_id(request)}] Failed to resume {sync_type.value}: {e}")
        raise HTTPException(status_code=503, detail=e.message)

    return SyncActionResponse(
        action="resume",
        message=f"{sync_type.value} sync resumed at {progress.processed}/{progress.total}",
        progress=progress
    )
