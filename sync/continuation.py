"""
Continuation scheduler - drives multi-chunk sync jobs to completion.

One asyncio task ("driver") per sync type runs chunks back to back with a
cooldown in between, persisting every chunk before deciding what to do
next. A passive recovery path watches progress notifications and restarts
jobs that need continuation but have no driver in this process.

Per-type states:

    IDLE -> RUNNING -> COMPLETE
                    -> FAILED                  (chunk-fatal or storage error)
                    -> AWAITING_CONTINUATION   (driver cancelled on shutdown)
"""

import asyncio
import enum
import inspect
import logging
from typing import Callable, Dict, List, Optional, Set

from core.config import settings
from core.exceptions import ChunkFatalError, PersistenceError, SyncAlreadyRunningError
from models.base import SyncType
from schemas.sync import SyncProgressRead
from sync.chunk_processor import ChunkProcessor
from sync.progress_store import SyncProgressStore
from sync.providers.base import ContentProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[SyncType, dict], ContentProvider]
CompletionCallback = Callable[[SyncProgressRead], object]


class DriverState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_CONTINUATION = "awaiting_continuation"
    COMPLETE = "complete"
    FAILED = "failed"


class ContinuationScheduler:
    """
    Owns the per-type drivers.

    At most one driver runs per sync type in this process; a second
    begin() for the same type raises SyncAlreadyRunningError. A start that
    is still clearing or counting reserves its type, and a reserved type is
    busy for begin() and recovery alike. Jobs that FAILED here are not
    picked up again by passive recovery; an explicit resume or a new start
    is required.
    """

    def __init__(
        self,
        store: SyncProgressStore,
        provider_factory: ProviderFactory,
        default_cooldown: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep=asyncio.sleep
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.default_cooldown = (
            default_cooldown if default_cooldown is not None else settings.SYNC_COOLDOWN_SECONDS
        )
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.sleep = sleep

        self._tasks: Dict[SyncType, asyncio.Task] = {}
        self._states: Dict[SyncType, DriverState] = {}
        self._failed_jobs: Dict[SyncType, str] = {}
        self._completed_jobs: Dict[SyncType, str] = {}
        self._reserved: Set[SyncType] = set()
        self._completion_callbacks: List[CompletionCallback] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closing = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, sync_type: SyncType) -> DriverState:
        return self._states.get(sync_type, DriverState.IDLE)

    def is_running(self, sync_type: SyncType) -> bool:
        task = self._tasks.get(sync_type)
        return task is not None and not task.done()

    def running_types(self) -> List[SyncType]:
        return [sync_type for sync_type in self._tasks if self.is_running(sync_type)]

    def is_busy(self, sync_type: SyncType) -> bool:
        """Running, or reserved by a start that has not handed over yet"""
        return self.is_running(sync_type) or sync_type in self._reserved

    def reserve(self, sync_type: SyncType):
        """
        Claim a type before a driver exists for it.

        Raises:
            SyncAlreadyRunningError: The type is running or already reserved
        """
        if self.is_busy(sync_type):
            raise SyncAlreadyRunningError(
                f"A {sync_type.value} sync is already running",
                context={"sync_type": sync_type.value}
            )
        self._reserved.add(sync_type)

    def release(self, sync_type: SyncType):
        self._reserved.discard(sync_type)

    def on_complete(self, callback: CompletionCallback) -> Callable[[], None]:
        """Register a callback fired once per completed job"""
        self._completion_callbacks.append(callback)

        def remove():
            if callback in self._completion_callbacks:
                self._completion_callbacks.remove(callback)

        return remove

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def begin(
        self,
        progress: SyncProgressRead,
        provider: Optional[ContentProvider] = None,
        reserved: bool = False
    ) -> asyncio.Task:
        """
        Start a driver from a persisted progress row.

        Pass reserved=True when the caller holds the reservation for the
        type; the reservation is handed over to the new driver.

        Raises:
            SyncAlreadyRunningError: A driver for this type is active, or
                another caller has reserved it
        """
        sync_type = progress.type
        busy = self.is_running(sync_type) if reserved else self.is_busy(sync_type)
        if busy:
            raise SyncAlreadyRunningError(
                f"A {sync_type.value} sync is already running",
                context={"sync_type": sync_type.value}
            )
        if self._closing:
            raise SyncAlreadyRunningError(
                "Scheduler is shutting down",
                context={"sync_type": sync_type.value}
            )

        self._reserved.discard(sync_type)
        self._states[sync_type] = DriverState.RUNNING
        self._failed_jobs.pop(sync_type, None)

        task = asyncio.create_task(self._drive(progress, provider), name=f"sync-driver-{sync_type.value}")
        self._tasks[sync_type] = task
        task.add_done_callback(lambda t: self._forget_task(sync_type, t))

        logger.info(
            f"Driver started for {sync_type.value} at offset {progress.processed} "
            f"(total={progress.total}, job_id={progress.job_id})"
        )
        return task

    def _forget_task(self, sync_type: SyncType, task: asyncio.Task):
        if self._tasks.get(sync_type) is task:
            del self._tasks[sync_type]

    async def wait(self, sync_type: SyncType) -> DriverState:
        """Wait for the current driver of a type (if any) to finish"""
        task = self._tasks.get(sync_type)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.state(sync_type)

    async def _drive(self, progress: SyncProgressRead, provider: Optional[ContentProvider]):
        sync_type = progress.type
        job_id = progress.job_id
        version = progress.version

        try:
            if provider is None:
                provider = self.provider_factory(sync_type, progress.provider_options)
            processor = ChunkProcessor(
                provider,
                max_attempts=self.max_attempts,
                retry_base_delay=self.retry_base_delay,
                sleep=self.sleep
            )
            cooldown = provider.cooldown_seconds if provider.cooldown_seconds is not None else self.default_cooldown

            while True:
                try:
                    result = await processor.process(
                        sync_type,
                        progress.processed,
                        progress.batch_size,
                        mode=progress.mode,
                        resume_token=progress.resume_token,
                        total=progress.total
                    )
                except ChunkFatalError as e:
                    await self._fail(sync_type, job_id, e.message, version)
                    return

                progress = await self.store.record_chunk(sync_type, result, expected_version=version)
                version = progress.version

                if not result.has_more:
                    progress = await self.store.mark_complete(sync_type, expected_version=version)
                    self._states[sync_type] = DriverState.COMPLETE
                    await self._signal_completion(progress)
                    return

                await self.sleep(cooldown)

        except asyncio.CancelledError:
            self._states[sync_type] = DriverState.AWAITING_CONTINUATION
            logger.info(f"Driver for {sync_type.value} cancelled; job can be resumed")
            raise

        except PersistenceError as e:
            self._states[sync_type] = DriverState.FAILED
            self._failed_jobs[sync_type] = job_id
            logger.error(f"Driver for {sync_type.value} stopped on storage error: {str(e)}")

        except Exception as e:
            logger.error(f"Driver for {sync_type.value} crashed: {str(e)}", exc_info=True)
            await self._fail(sync_type, job_id, f"{type(e).__name__}: {str(e)}", version)

        finally:
            if provider is not None:
                try:
                    await provider.close()
                except Exception as e:
                    logger.warning(f"Failed to close {provider.name}: {str(e)}")

    async def _fail(self, sync_type: SyncType, job_id: str, message: str, version: int):
        """Mark FAILED and leave the row resumable"""
        self._states[sync_type] = DriverState.FAILED
        self._failed_jobs[sync_type] = job_id
        logger.error(f"Sync {sync_type.value} failed: {message}")
        try:
            await self.store.update(
                sync_type,
                {"needs_continuation": True, "is_complete": False, "last_error": message},
                expected_version=version
            )
        except PersistenceError as e:
            logger.error(f"Could not record failure for {sync_type.value}: {str(e)}")

    async def _signal_completion(self, progress: SyncProgressRead):
        if self._completed_jobs.get(progress.type) == progress.job_id:
            return
        self._completed_jobs[progress.type] = progress.job_id

        logger.info(
            f"Sync {progress.type.value} complete: processed={progress.processed}, "
            f"skipped={progress.items_skipped}, errors={len(progress.error_items)}"
        )
        for callback in list(self._completion_callbacks):
            try:
                result = callback(progress)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Completion callback failed for {progress.type.value}: {str(e)}", exc_info=True)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def enable_recovery(self):
        """Watch progress notifications for jobs left without a driver"""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.notifier.subscribe(self._on_progress)

    def disable_recovery(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def should_recover(self, progress: SyncProgressRead) -> bool:
        if self._closing:
            return False
        if progress.is_complete or not progress.needs_continuation:
            return False
        if self.is_busy(progress.type):
            return False
        if self._failed_jobs.get(progress.type) == progress.job_id:
            return False
        return True

    def recover(self, progress: SyncProgressRead) -> bool:
        """Start a driver for an orphaned job; returns whether one was started"""
        if not self.should_recover(progress):
            return False
        logger.info(
            f"Recovering {progress.type.value} from offset {progress.processed} "
            f"(job_id={progress.job_id})"
        )
        self.begin(progress)
        return True

    async def _on_progress(self, progress: SyncProgressRead):
        self.recover(progress)

    async def shutdown(self):
        """Stop recovery and cancel every driver"""
        self._closing = True
        self.disable_recovery()
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Continuation scheduler stopped ({len(tasks)} drivers cancelled)")
