"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str = None) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to settings.DATABASE_URL)"""
    url = database_url or settings.DATABASE_URL
    return create_async_engine(
        url,
        echo=False,
        poolclass=NullPool,  # Each sync driver opens short-lived sessions
        future=True
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to an engine"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


# Default engine and session factory
engine = build_engine()
async_session_maker = build_session_factory(engine)


async def get_session() -> AsyncSession:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
