"""
Durable sync progress with optimistic concurrency and change notifications.

One row per sync type holds the job cursor, counters, item-level audit
trail and completion state. Every write:

- opens its own short-lived session (drivers for different types run concurrently)
- is checked against the row version (SQLAlchemy version_id_col), so a
  concurrent writer surfaces as VersionConflictError instead of a lost update
- stamps updated_at and publishes the full row to subscribers
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging
import uuid

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.exceptions import PersistenceError, VersionConflictError
from models.base import SyncType, SyncMode
from models.sync_progress import SyncProgress
from schemas.sync import ChunkResult, SyncProgressRead
from sync.notifications import ProgressNotifier

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "total",
    "processed",
    "items_skipped",
    "last_processed",
    "resume_token",
    "processed_items",
    "error_items",
    "is_complete",
    "needs_continuation",
    "last_error",
    "batch_metrics",
    "mode",
    "batch_size",
    "provider_options",
})


def _error_entry(item_id: str, message: Optional[str]) -> Dict[str, Any]:
    return {
        "id": item_id,
        "message": message or "unknown error",
        "timestamp": datetime.utcnow().isoformat()
    }


class SyncProgressStore:
    """
    Progress rows keyed by sync type.

    Concurrent writes for different types are safe. Writes for the same
    type are read-modify-write; a second writer is detected through the
    row version and rejected, it is never merged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: Optional[ProgressNotifier] = None
    ):
        self.session_factory = session_factory
        self.notifier = notifier or ProgressNotifier()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, sync_type: SyncType) -> Optional[SyncProgressRead]:
        """Current row for a type, or None when no sync has run yet"""
        try:
            async with self.session_factory() as session:
                row = await self._fetch(session, sync_type)
                return SyncProgressRead.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to read sync progress for {sync_type.value}",
                context={"sync_type": sync_type.value, "operation": "get"},
                original_exception=e
            )

    async def list_all(self) -> List[SyncProgressRead]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(SyncProgress).order_by(SyncProgress.type))
                return [SyncProgressRead.model_validate(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to list sync progress",
                context={"operation": "list_all"},
                original_exception=e
            )

    async def find_orphaned(self, stale_after_seconds: int) -> List[SyncProgressRead]:
        """
        Incomplete rows waiting for continuation that nobody touched recently.

        A row written within the staleness window may still have an active
        driver in another process and is left alone.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=stale_after_seconds)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncProgress).where(
                        and_(
                            SyncProgress.needs_continuation.is_(True),
                            SyncProgress.is_complete.is_(False),
                            SyncProgress.updated_at <= cutoff
                        )
                    )
                )
                return [SyncProgressRead.model_validate(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to query orphaned sync progress",
                context={"operation": "find_orphaned"},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def initialize(
        self,
        sync_type: SyncType,
        total: Optional[int],
        resume: bool = False,
        mode: SyncMode = SyncMode.CLEAR,
        batch_size: int = 10,
        provider_options: Optional[Dict[str, Any]] = None
    ) -> Optional[SyncProgressRead]:
        """
        Start a new job for a type.

        With resume=True the existing row is reused as-is and returned.
        Otherwise the row is upserted fresh: new job id, counters reset,
        item lists cleared, new start_time.
        """
        if resume:
            logger.info(f"Resuming {sync_type.value}: reusing existing progress row")
            return await self.get(sync_type)

        now = datetime.utcnow()
        values = {
            "job_id": str(uuid.uuid4()),
            "total": total,
            "processed": 0,
            "items_skipped": 0,
            "last_processed": None,
            "resume_token": None,
            "processed_items": [],
            "error_items": [],
            "mode": mode,
            "batch_size": batch_size,
            "provider_options": dict(provider_options or {}),
            "start_time": now,
            "is_complete": False,
            "needs_continuation": False,
            "last_error": None,
            "batch_metrics": {
                "avg_time_per_item": 0.0,
                "estimated_time_remaining": None,
                "success_rate": 100.0,
                "elapsed_seconds": 0.0,
            },
            "updated_at": now,
        }

        try:
            async with self.session_factory() as session:
                row = await self._fetch(session, sync_type)
                if row is None:
                    row = SyncProgress(type=sync_type, created_at=now, **values)
                    session.add(row)
                else:
                    for field, value in values.items():
                        setattr(row, field, value)
                await session.commit()
                snapshot = SyncProgressRead.model_validate(row)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to initialize sync progress for {sync_type.value}",
                context={"sync_type": sync_type.value, "operation": "initialize", "total": total},
                original_exception=e
            )

        logger.info(
            f"Initialized sync progress for {sync_type.value}: total={total}, "
            f"mode={mode.value}, job_id={snapshot.job_id}"
        )
        await self.notifier.publish(snapshot)
        return snapshot

    async def update(
        self,
        sync_type: SyncType,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> SyncProgressRead:
        """
        Merge fields into the row for a type.

        Raises:
            ValueError: For fields that are not updatable, contradictory
                flags or an invalid processed count
            VersionConflictError: When expected_version no longer matches
            PersistenceError: When the row is missing or the write fails
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if fields.get("is_complete") and fields.get("needs_continuation"):
            raise ValueError("A sync cannot be complete and need continuation at the same time")
        if "processed" in fields:
            processed = fields["processed"]
            if not isinstance(processed, int) or isinstance(processed, bool) or processed < 0:
                raise ValueError(f"processed must be a non-negative integer, got {processed!r}")

        def apply(row: SyncProgress):
            for field, value in fields.items():
                if field == "processed" and value < row.processed:
                    logger.warning(
                        f"Ignoring processed={value} for {sync_type.value}: "
                        f"would move backwards from {row.processed}"
                    )
                    continue
                setattr(row, field, value)

        return await self._mutate(sync_type, apply, expected_version, operation="update")

    async def mark_complete(
        self,
        sync_type: SyncType,
        expected_version: Optional[int] = None
    ) -> SyncProgressRead:
        logger.info(f"Marking sync complete for {sync_type.value}")
        return await self.update(
            sync_type,
            {"is_complete": True, "needs_continuation": False},
            expected_version=expected_version
        )

    async def append_processed(self, sync_type: SyncType, item_id: str) -> SyncProgressRead:
        """Record one succeeded item (read-then-append, not atomic across writers)"""
        def apply(row: SyncProgress):
            row.processed_items = list(row.processed_items or []) + [item_id]
            row.processed = (row.processed or 0) + 1
            row.last_processed = item_id

        return await self._mutate(sync_type, apply, operation="append_processed")

    async def append_error(
        self,
        sync_type: SyncType,
        item_id: str,
        message: Optional[str] = None
    ) -> SyncProgressRead:
        """Record one failed item (read-then-append, not atomic across writers)"""
        def apply(row: SyncProgress):
            row.error_items = list(row.error_items or []) + [_error_entry(item_id, message)]
            row.processed = (row.processed or 0) + 1
            row.last_processed = item_id

        return await self._mutate(sync_type, apply, operation="append_error")

    async def record_chunk(
        self,
        sync_type: SyncType,
        result: ChunkResult,
        expected_version: Optional[int] = None
    ) -> SyncProgressRead:
        """
        Apply one chunk outcome in a single write.

        Succeeded (including unchanged-and-skipped) items go to
        processed_items, failed ones to error_items; processed advances to
        the chunk's next offset; needs_continuation mirrors has_more.
        """
        def apply(row: SyncProgress):
            attempted = result.items_attempted

            row.processed_items = list(row.processed_items or []) + [
                item.id for item in attempted if item.success
            ]
            new_errors = [_error_entry(item.id, item.error_message) for item in attempted if not item.success]
            if new_errors:
                row.error_items = list(row.error_items or []) + new_errors
            row.items_skipped = (row.items_skipped or 0) + len(result.skipped)

            if row.total is None and result.total is not None:
                row.total = result.total

            next_offset = result.next_offset
            if next_offset is None:
                next_offset = result.offset + len(attempted)
            row.processed = max(row.processed or 0, next_offset)

            if attempted:
                row.last_processed = attempted[-1].id
            row.resume_token = result.next_resume_token
            row.needs_continuation = result.has_more
            row.last_error = None
            row.batch_metrics = self._batch_metrics(row, result)

        return await self._mutate(sync_type, apply, expected_version, operation="record_chunk")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _fetch(session, sync_type: SyncType) -> Optional[SyncProgress]:
        result = await session.execute(
            select(SyncProgress).where(SyncProgress.type == sync_type)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _batch_metrics(row: SyncProgress, result: ChunkResult) -> Dict[str, Any]:
        metrics = dict(row.batch_metrics or {})
        elapsed = float(metrics.get("elapsed_seconds") or 0.0) + result.duration_seconds
        processed = row.processed or 0
        error_count = len(row.error_items or [])

        avg = elapsed / processed if processed else 0.0
        remaining = None
        if row.total is not None:
            remaining = round(avg * max(row.total - processed, 0), 2)

        metrics.update({
            "elapsed_seconds": round(elapsed, 3),
            "avg_time_per_item": round(avg, 3),
            "estimated_time_remaining": remaining,
            "success_rate": round(100.0 * (processed - error_count) / processed, 2) if processed else 100.0,
        })
        return metrics

    async def _mutate(
        self,
        sync_type: SyncType,
        apply: Callable[[SyncProgress], None],
        expected_version: Optional[int] = None,
        operation: str = "update"
    ) -> SyncProgressRead:
        context = {"sync_type": sync_type.value, "operation": operation}
        try:
            async with self.session_factory() as session:
                row = await self._fetch(session, sync_type)
                if row is None:
                    raise PersistenceError(
                        f"No sync progress row for {sync_type.value}",
                        context=context
                    )
                if expected_version is not None and row.version != expected_version:
                    raise VersionConflictError(
                        f"Sync progress for {sync_type.value} was modified by another writer",
                        context={**context, "expected_version": expected_version, "actual_version": row.version}
                    )

                apply(row)
                self._enforce_invariants(row)
                row.updated_at = datetime.utcnow()

                await session.commit()
                snapshot = SyncProgressRead.model_validate(row)

        except StaleDataError as e:
            raise VersionConflictError(
                f"Concurrent write to sync progress for {sync_type.value}",
                context=context,
                original_exception=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to write sync progress for {sync_type.value}",
                context=context,
                original_exception=e
            )

        await self.notifier.publish(snapshot)
        return snapshot

    @staticmethod
    def _enforce_invariants(row: SyncProgress):
        if row.is_complete:
            row.needs_continuation = False
        if row.total is not None and row.processed is not None and row.processed > row.total:
            logger.warning(
                f"Processed count ({row.processed}) exceeds total ({row.total}) "
                f"for {row.type.value}; capping at total"
            )
            row.processed = row.total
