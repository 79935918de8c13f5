"""
Content provider contract and shared persistence helpers.

A content provider knows how to enumerate the work set of one sync type,
fetch the proposed content for each candidate item, look up the stored
record and write the new one idempotently. The chunk processor only talks
to this interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import logging

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ConfigurationError, PersistenceError
from models.base import SyncType
from sync.signature import ContentSignature

logger = logging.getLogger(__name__)


class FetchChunkResult(BaseModel):
    """One page of candidate items"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[Any] = Field(default_factory=list)
    next_resume_token: Optional[str] = None
    total: Optional[int] = None


class ContentProvider(ABC):
    """
    Abstract base class for all content providers.

    Attributes:
        sync_type: The sync type this provider serves
        model: ORM model of the target content table
        content_signature: Fields compared in update mode (None = always write)
        cooldown_seconds: Pause between chunks (None = engine default)
        dependent_models: Tables referencing the content table, emptied
            before it on clear
    """

    sync_type: SyncType
    model: Any = None
    dependent_models: Sequence[Any] = ()
    content_signature: Optional[ContentSignature] = None
    cooldown_seconds: Optional[float] = None

    def __init__(
        self,
        session_factory: async_sessionmaker,
        options: Optional[Dict[str, Any]] = None
    ):
        self.session_factory = session_factory
        self.options = dict(options or {})

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    async def count_total(self) -> Optional[int]:
        """Size of the work set, or None when it is not known up front"""
        pass

    @abstractmethod
    async def fetch_candidates(
        self,
        offset: int,
        batch_size: int,
        resume_token: Optional[str] = None
    ) -> FetchChunkResult:
        """
        Fetch up to batch_size candidate items.

        Args:
            offset: Number of items already attempted in this job
            batch_size: Maximum items to return
            resume_token: Opaque cursor returned by the previous page
        """
        pass

    @abstractmethod
    def item_id(self, raw: Any) -> str:
        """Stable identifier of a candidate item"""
        pass

    @abstractmethod
    async def fetch_proposed_content(self, raw: Any) -> BaseModel:
        """Build the record that should be stored for a candidate"""
        pass

    @abstractmethod
    async def upsert(self, proposed: BaseModel):
        """Insert or update the record (idempotent)"""
        pass

    @abstractmethod
    async def get_existing(self, item_id: str) -> Optional[Any]:
        """Stored record for an item, or None"""
        pass

    async def clear(self) -> int:
        """Remove all rows of the target content table"""
        if self.model is None:
            raise ConfigurationError(
                f"{self.name} has no content table to clear",
                context={"provider": self.name}
            )
        try:
            async with self.session_factory() as session:
                for dependent in self.dependent_models:
                    await session.execute(delete(dependent))
                result = await session.execute(delete(self.model))
                await session.commit()
        except SQLAlchemyError as e:
            raise self._persistence_error("clear", e)
        logger.info(f"Cleared {result.rowcount} rows from {self.model.__tablename__}")
        return result.rowcount

    def has_changed(self, existing: Any, proposed: BaseModel) -> bool:
        """Whether the proposed record differs in content from the stored one"""
        if self.content_signature is None:
            return True
        return self.content_signature.changed(existing, proposed)

    async def close(self):
        """Release network clients; called when a driver finishes"""
        pass

    def _persistence_error(self, operation: str, error: SQLAlchemyError) -> PersistenceError:
        return PersistenceError(
            f"{self.name} failed to {operation}: {str(error)}",
            context={"sync_type": self.sync_type.value, "provider": self.name, "operation": operation},
            original_exception=error
        )

    async def _get_one(self, *criteria) -> Optional[Any]:
        async with self.session_factory() as session:
            result = await session.execute(select(self.model).where(*criteria))
            return result.scalar_one_or_none()


async def upsert_rows(
    session: AsyncSession,
    model: Any,
    rows: Sequence[Dict[str, Any]],
    index_elements: Sequence[str],
    preserve: Sequence[str] = ("created_at",)
) -> int:
    """
    INSERT ... ON CONFLICT DO UPDATE for PostgreSQL and SQLite.

    Every column present in the rows is overwritten on conflict except the
    conflict keys and the preserved columns. Caller commits.

    Returns:
        Number of rows written
    """
    if not rows:
        return 0

    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise ConfigurationError(
            f"Upsert is not supported on dialect {dialect}",
            context={"dialect": dialect, "table": model.__tablename__}
        )

    now = datetime.utcnow()
    columns = {column.name for column in model.__table__.columns}
    prepared = []
    for row in rows:
        values = {k: v for k, v in row.items() if k in columns}
        if "created_at" in columns:
            values.setdefault("created_at", now)
        if "updated_at" in columns:
            values["updated_at"] = now
        prepared.append(values)

    for values in prepared:
        stmt = insert(model).values(**values)
        skip = set(index_elements) | set(preserve)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(index_elements),
            set_={key: stmt.excluded[key] for key in values if key not in skip}
        )
        await session.execute(stmt)

    return len(prepared)
