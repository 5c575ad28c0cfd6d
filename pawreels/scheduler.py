"""
Sync scheduler - fires the sync jobs on their cadences.

Every job runs with max_instances=1 and coalesce=True: a slow run is never
overlapped by the next tick, and missed ticks collapse into one.
"""

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from pawreels.settings import Settings, global_settings
from pawreels.sync import (
    DiscoveryJob,
    DuplicateCleanupJob,
    JanitorJob,
    QuickScanJob,
    RefreshJob,
    SyncStats,
)
from pawreels.utils import job_boundary


class SyncScheduler:
    """
    Usage:
        scheduler = SyncScheduler(discovery, quick_scan, refresh, janitor, dedup)
        scheduler.start()
        await scheduler.run_now("discovery")
    """

    def __init__(
        self,
        discovery: DiscoveryJob,
        quick_scan: QuickScanJob,
        refresh: RefreshJob,
        janitor: JanitorJob,
        dedup: DuplicateCleanupJob,
        settings: Settings | None = None,
    ):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.settings = settings or global_settings
        self._is_running = False
        self.discovery = discovery
        self.quick_scan = quick_scan
        self.refresh = refresh
        self.janitor = janitor
        self.dedup = dedup
        self.last_stats: dict[str, dict[str, Any]] = {}

    def _remember(self, stats: SyncStats | None) -> None:
        if stats is not None:
            self.last_stats[stats.job] = stats.to_dict()

    @job_boundary
    async def discovery_job(self) -> None:
        self._remember(await self.discovery.run())

    @job_boundary
    async def quick_scan_job(self) -> None:
        self._remember(await self.quick_scan.run())

    @job_boundary
    async def refresh_job(self) -> None:
        self._remember(await self.refresh.run())

    @job_boundary
    async def janitor_job(self) -> None:
        self._remember(await self.janitor.run())

    @job_boundary
    async def cleanup_job(self) -> None:
        self._remember(await self.dedup.run())

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("SyncScheduler is already running")
            return

        settings = self.settings
        common = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self.discovery_job,
            trigger=CronTrigger(hour=settings.discovery_hour, minute=0, timezone="UTC"),
            id="discovery",
            name="Discovery",
            **common,
        )
        logger.info(f"Discovery job: {settings.discovery_hour:02d}:00 UTC")

        self.scheduler.add_job(
            self.quick_scan_job,
            trigger="interval",
            minutes=settings.quick_scan_interval_minutes,
            id="quick_scan",
            name="Quick Scan",
            **common,
        )
        logger.info(f"Quick-scan job: every {settings.quick_scan_interval_minutes} min")

        self.scheduler.add_job(
            self.refresh_job,
            trigger="interval",
            hours=settings.refresh_interval_hours,
            id="refresh",
            name="Refresh",
            **common,
        )
        logger.info(f"Refresh job: every {settings.refresh_interval_hours} h")

        self.scheduler.add_job(
            self.janitor_job,
            trigger="interval",
            minutes=settings.janitor_interval_minutes,
            id="janitor",
            name="Janitor",
            **common,
        )
        logger.info(f"Janitor job: every {settings.janitor_interval_minutes} min")

        self.scheduler.add_job(
            self.cleanup_job,
            trigger=CronTrigger(hour=settings.cleanup_hour, minute=0, timezone="UTC"),
            id="dedup_cleanup",
            name="Duplicate Cleanup",
            **common,
        )
        logger.info(f"Duplicate cleanup job: {settings.cleanup_hour:02d}:00 UTC")

        self.scheduler.start()
        self._is_running = True
        logger.info("SyncScheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("SyncScheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    async def run_now(self, job: str) -> None:
        """Run one job immediately (manual trigger)."""
        jobs = {
            "discovery": self.discovery_job,
            "quick_scan": self.quick_scan_job,
            "refresh": self.refresh_job,
            "janitor": self.janitor_job,
            "dedup_cleanup": self.cleanup_job,
        }
        if job not in jobs:
            raise ValueError(f"Unknown job '{job}', expected one of {sorted(jobs)}")
        logger.info(f"Manual {job} triggered")
        await jobs[job]()

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        jobs = []
        if self._is_running:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                    }
                )
        return {
            "running": self._is_running,
            "jobs": jobs,
            "last_runs": self.last_stats,
        }
