"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sync.orchestrator import SyncOrchestrator


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Database session from the application's session factory"""
    async with request.app.state.session_factory() as session:
        yield session


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """The application-wide sync orchestrator"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync engine is not started")
    return orchestrator
