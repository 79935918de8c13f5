"""
Sync orchestrator - public entry point for starting and resuming syncs.

    orchestrator = SyncOrchestrator(async_session_maker)
    progress = await orchestrator.start(SyncType.AIRLINES, clear_existing=True)
    await orchestrator.wait(SyncType.AIRLINES)
"""

import logging
from typing import Any, Dict, List, Optional, Type

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import NothingToResume, UnknownSyncTypeError
from models.base import SyncMode, SyncType
from schemas.sync import SyncProgressRead
from sync.continuation import ContinuationScheduler, DriverState
from sync.notifications import ProgressNotifier
from sync.progress_store import SyncProgressStore
from sync.providers.base import ContentProvider
from sync.providers.cirium import AirlineProvider, AirportProvider
from sync.providers.country_policies import CountryPolicyProvider
from sync.providers.pet_policies import PetPolicyProvider
from sync.providers.routes import RouteProvider

logger = logging.getLogger(__name__)

DEFAULT_PROVIDERS: Dict[SyncType, Type[ContentProvider]] = {
    SyncType.AIRLINES: AirlineProvider,
    SyncType.AIRPORTS: AirportProvider,
    SyncType.ROUTES: RouteProvider,
    SyncType.PET_POLICIES: PetPolicyProvider,
    SyncType.COUNTRY_POLICIES: CountryPolicyProvider,
}


class SyncOrchestrator:
    """
    Starts, resumes and reports on sync jobs.

    Responsibilities:
    - Resolve the content provider for a sync type
    - Purge the target table on clear_existing
    - Initialize the progress row and hand the job to a driver
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        providers: Optional[Dict[SyncType, Type[ContentProvider]]] = None,
        store: Optional[SyncProgressStore] = None,
        scheduler: Optional[ContinuationScheduler] = None,
        enable_recovery: bool = True,
        **scheduler_options
    ):
        self.session_factory = session_factory
        self.providers = dict(providers if providers is not None else DEFAULT_PROVIDERS)
        self.store = store or SyncProgressStore(session_factory, ProgressNotifier())
        self.scheduler = scheduler or ContinuationScheduler(self.store, self.build_provider, **scheduler_options)
        if enable_recovery:
            self.scheduler.enable_recovery()

    @property
    def notifier(self) -> ProgressNotifier:
        return self.store.notifier

    def build_provider(self, sync_type: SyncType, options: Optional[Dict[str, Any]] = None) -> ContentProvider:
        provider_class = self.providers.get(sync_type)
        if provider_class is None:
            raise UnknownSyncTypeError(
                f"No content provider registered for {sync_type.value}",
                context={"sync_type": sync_type.value}
            )
        return provider_class(self.session_factory, options)

    async def start(
        self,
        sync_type: SyncType,
        clear_existing: bool = False,
        batch_size: Optional[int] = None,
        mode: Optional[SyncMode] = None,
        provider_options: Optional[Dict[str, Any]] = None
    ) -> SyncProgressRead:
        """
        Start a full sync for a type.

        clear_existing purges the content table first and forces clear mode.

        Returns:
            The freshly initialized progress row

        Raises:
            SyncAlreadyRunningError: A driver for this type is active
            UnknownSyncTypeError: No provider is registered for the type
            ProviderError: The work set could not be counted
            PersistenceError: The progress row could not be written
        """
        self.scheduler.reserve(sync_type)
        try:
            return await self._start(sync_type, clear_existing, batch_size, mode, provider_options)
        finally:
            self.scheduler.release(sync_type)

    async def _start(self, sync_type, clear_existing, batch_size, mode, provider_options) -> SyncProgressRead:
        if clear_existing:
            mode = SyncMode.CLEAR
        mode = mode or SyncMode.CLEAR
        batch_size = batch_size or settings.SYNC_BATCH_SIZE

        provider = self.build_provider(sync_type, provider_options)
        try:
            if clear_existing:
                removed = await provider.clear()
                logger.info(f"Cleared existing {sync_type.value} content ({removed} rows)")

            total = await provider.count_total()
            logger.info(f"Starting {sync_type.value} sync: total={total}, batch_size={batch_size}, mode={mode.value}")

            progress = await self.store.initialize(
                sync_type,
                total,
                resume=False,
                mode=mode,
                batch_size=batch_size,
                provider_options=provider.options
            )
            self.scheduler.begin(progress, provider, reserved=True)
        except Exception:
            await provider.close()
            raise

        return progress

    async def resume(self, sync_type: SyncType) -> SyncProgressRead:
        """
        Continue an incomplete job from its persisted offset.

        Raises:
            NothingToResume: No progress row, or the job is complete
            SyncAlreadyRunningError: A driver for this type is active
        """
        progress = await self.store.get(sync_type)
        if progress is None or progress.is_complete:
            raise NothingToResume(
                f"No incomplete {sync_type.value} sync to resume",
                context={"sync_type": sync_type.value, "has_progress": progress is not None}
            )

        logger.info(f"Resuming {sync_type.value} sync at {progress.processed}/{progress.total}")
        self.scheduler.begin(progress)
        return progress

    async def status(self, sync_type: SyncType) -> Optional[SyncProgressRead]:
        return await self.store.get(sync_type)

    async def status_all(self) -> List[SyncProgressRead]:
        return await self.store.list_all()

    def is_running(self, sync_type: SyncType) -> bool:
        return self.scheduler.is_running(sync_type)

    def running_types(self) -> List[SyncType]:
        return self.scheduler.running_types()

    async def wait(self, sync_type: SyncType) -> DriverState:
        return await self.scheduler.wait(sync_type)

    async def recover_orphans(self, stale_after_seconds: Optional[int] = None) -> List[SyncType]:
        """Restart stale incomplete jobs that have no driver; returns the recovered types"""
        stale_after = stale_after_seconds if stale_after_seconds is not None else settings.SYNC_STALE_AFTER_SECONDS
        recovered = []
        for progress in await self.store.find_orphaned(stale_after):
            if self.scheduler.recover(progress):
                recovered.append(progress.type)
        return recovered

    async def shutdown(self):
        await self.scheduler.shutdown()
