"""Scheduled background maintenance of the memory index"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from journal_memory.config import AppConfig, config
from journal_memory.models.maintenance import MaintenanceResult
from journal_memory.services.memory_service import MemoryService

logger = logging.getLogger(__name__)

DRAIN_JOB_ID = "memory_drain"
ORPHAN_SWEEP_JOB_ID = "orphan_sweep"


class MaintenanceScheduler:
    """Periodically drains the index queue and sweeps orphaned embeddings"""

    def __init__(self, service: MemoryService, settings: AppConfig | None = None):
        self.service = service
        self.config = settings or config
        self.scheduler: AsyncIOScheduler | None = None

    def configure_scheduler(
        self,
        scheduler: AsyncIOScheduler,
        drain_interval_minutes: int | None = None,
        orphan_sweep_hours: int | None = None,
    ) -> None:
        """
        Register maintenance jobs on a scheduler

        Args:
            scheduler: AsyncIOScheduler running on the service's event loop
            drain_interval_minutes: Minutes between queue drains (default from config)
            orphan_sweep_hours: Hours between orphan sweeps (default from config)
        """
        self.scheduler = scheduler
        drain_interval_minutes = (
            drain_interval_minutes or self.config.maintenance_drain_interval_minutes
        )
        orphan_sweep_hours = orphan_sweep_hours or self.config.maintenance_orphan_sweep_hours

        self.scheduler.add_job(
            self.run_drain,
            trigger=IntervalTrigger(minutes=drain_interval_minutes, start_date=datetime.now()),
            id=DRAIN_JOB_ID,
            name="Memory Index Queue Drain",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_orphan_sweep,
            trigger=IntervalTrigger(hours=orphan_sweep_hours, start_date=datetime.now()),
            id=ORPHAN_SWEEP_JOB_ID,
            name="Orphaned Embedding Sweep",
            max_instances=1,
            replace_existing=True,
        )

        logger.info(
            f"Scheduled queue drain every {drain_interval_minutes} minutes "
            f"and orphan sweep every {orphan_sweep_hours} hours"
        )

    def stop_scheduler(self) -> None:
        """Remove maintenance jobs from the scheduler"""
        if not self.scheduler:
            return

        for job_id in (DRAIN_JOB_ID, ORPHAN_SWEEP_JOB_ID):
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                logger.warning(f"Maintenance job {job_id} not found during shutdown")
        logger.info("Stopped maintenance scheduler")

    async def run_drain(self) -> MaintenanceResult:
        """Drain the index queue once"""

        async def drain() -> int:
            result = await self.service.drain()
            return result.succeeded

        return await self._run("drain", drain)

    async def run_orphan_sweep(self) -> MaintenanceResult:
        """Remove embeddings whose source entity is gone"""
        return await self._run("orphan_sweep", self.service.cleanup_orphans)

    async def _run(self, job: str, work: Callable[[], Awaitable[int]]) -> MaintenanceResult:
        start_time = datetime.now()

        try:
            logger.info(f"Starting maintenance job: {job}")
            processed = await work()

            end_time = datetime.now()
            duration_seconds = (end_time - start_time).total_seconds()
            logger.info(
                f"Maintenance job {job} completed in {duration_seconds:.2f}s "
                f"({processed} processed)"
            )

            return MaintenanceResult(
                job=job,
                success=True,
                start_time=start_time,
                end_time=end_time,
                duration_seconds=duration_seconds,
                processed=processed,
            )

        except Exception as e:
            logger.error(f"Maintenance job {job} failed with exception: {e}", exc_info=True)
            end_time = datetime.now()
            return MaintenanceResult(
                job=job,
                success=False,
                start_time=start_time,
                end_time=end_time,
                duration_seconds=(end_time - start_time).total_seconds(),
                error=str(e),
            )
