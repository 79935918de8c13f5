import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from core.exceptions import SyncException
from sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class RecoverySweep:
    """Periodically restarts incomplete syncs whose driver disappeared (crash, redeploy)"""

    def __init__(self, orchestrator: SyncOrchestrator, interval_minutes: int = None):
        self.orchestrator = orchestrator
        self.interval_minutes = interval_minutes or settings.SYNC_RECOVERY_INTERVAL_MINUTES
        self.scheduler = AsyncIOScheduler()

    async def run_recovery_job(self):
        """Job to hand orphaned progress rows back to the continuation scheduler"""
        logger.info("Scheduler: Checking for orphaned syncs")
        try:
            recovered = await self.orchestrator.recover_orphans()
            if recovered:
                logger.info(f"Scheduler: Recovered {', '.join(t.value for t in recovered)}")
        except SyncException as e:
            logger.error(f"Scheduler: Recovery sweep failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_recovery_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_recovery",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Recovery sweep started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Recovery sweep stopped")
