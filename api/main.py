"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from sync.orchestrator import SyncOrchestrator
from sync.scheduler import RecoverySweep

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Pet Travel Sync API",
    description="Chunked, resumable synchronization of pet-travel reference data",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Pet Travel Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if not hasattr(app.state, "session_factory"):
        app.state.session_factory = async_session_maker
    if not hasattr(app.state, "orchestrator"):
        app.state.orchestrator = SyncOrchestrator(app.state.session_factory)

    app.state.recovery = None
    if settings.SYNC_RECOVERY_ENABLED:
        app.state.recovery = RecoverySweep(app.state.orchestrator)
        await app.state.recovery.run_recovery_job()
        app.state.recovery.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Pet Travel Sync API")
    if app.state.recovery is not None:
        app.state.recovery.stop()
    await app.state.orchestrator.shutdown()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Pet Travel Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": "/sync",
            "start": "/sync/{type}/start",
            "resume": "/sync/{type}/resume"
        }
    }
