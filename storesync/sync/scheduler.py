"""
Fleet Scheduler

The only timer-driven caller of the orchestrator. Each tick lists active
tenants and dispatches one run per tenant without waiting for any of them;
failures stop at the tick.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storesync.database.models import RunTrigger
from storesync.sync.orchestrator import SyncOrchestrator
from storesync.sync.tenants import TenantDirectory

logger = structlog.get_logger(__name__)

JOB_ID = "fleet_sync"


class FleetScheduler:
    """
    Periodic fan-out of scheduled sync runs.

    Example:
        scheduler = FleetScheduler(tenants, orchestrator, interval_seconds=3600)
        scheduler.start()
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        orchestrator: SyncOrchestrator,
        interval_seconds: int = 3600,
    ):
        self.tenants = tenants
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def tick(self) -> int:
        """
        Dispatch a scheduled run for every active tenant.

        Returns:
            Number of runs started (tenants already in flight are not counted)
        """
        try:
            tenants = await self.tenants.list_active()
        except Exception:
            logger.exception("Scheduler tick skipped, could not list tenants")
            return 0

        started = 0
        for tenant in tenants:
            try:
                if self.orchestrator.dispatch(tenant.tenant_id, RunTrigger.SCHEDULED):
                    started += 1
            except Exception:
                logger.exception("Failed to dispatch scheduled sync", tenant_id=tenant.tenant_id)

        logger.info("Scheduler tick", active_tenants=len(tenants), runs_started=started)
        return started

    def start(self) -> None:
        """Register the interval job and start the scheduler on the running loop."""
        if self.running:
            logger.warning("Fleet scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Fleet Storefront Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Fleet scheduler started", interval_seconds=self.interval_seconds)

    def shutdown(self) -> None:
        """Stop issuing ticks. In-flight runs are drained by the orchestrator."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Fleet scheduler stopped")
