"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_orchestrator
from core.exceptions import PersistenceError
from schemas.api import HealthCheckResponse, SyncTypeHealth
from sync.orchestrator import SyncOrchestrator
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Condensed progress for every sync type
    - Number of running and failed syncs
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    syncs = []
    failed_syncs = 0
    running = set(orchestrator.running_types())

    if db_connected:
        try:
            for progress in await orchestrator.status_all():
                is_running = progress.type in running
                if progress.last_error and not is_running and not progress.is_complete:
                    failed_syncs += 1

                syncs.append(SyncTypeHealth(
                    type=progress.type.value,
                    processed=progress.processed,
                    total=progress.total,
                    is_complete=progress.is_complete,
                    needs_continuation=progress.needs_continuation,
                    running=is_running,
                    error_count=len(progress.error_items),
                    last_error=progress.last_error,
                    updated_at=progress.updated_at
                ))
        except PersistenceError as e:
            logger.error(f"Failed to fetch sync progress: {str(e)}")

    # Status calculation is handled by the validator in HealthCheckResponse
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        syncs=syncs,
        running_syncs=len(running),
        failed_syncs=failed_syncs
    )
