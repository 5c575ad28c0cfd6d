"""
Janitor - removes records nobody has seen for too long, then orphaned
organizations.
"""

from datetime import timedelta

from loguru import logger

from pawreels.datastore.repositories import AnimalRepository, OrganizationRepository
from pawreels.sync.base import SyncJob, SyncStats


class JanitorJob(SyncJob):
    """Staleness sweep. Makes no upstream calls."""

    job_name = "janitor"

    async def run(self) -> SyncStats:
        stats = SyncStats(job=self.job_name)
        cutoff = self.now() - timedelta(hours=self.settings.stale_hours)

        async with self.session_factory() as session:
            stats.deleted = await AnimalRepository(session).delete_stale(cutoff)
            stats.organizations_deleted = await OrganizationRepository(session).prune_orphans()
            await session.commit()

        if stats.deleted or stats.organizations_deleted:
            logger.info(
                f"[{self.job_name}] Removed {stats.deleted} stale animals, "
                f"{stats.organizations_deleted} orphaned organizations"
            )
        else:
            logger.debug(f"[{self.job_name}] Nothing stale before {cutoff.isoformat()}")
        return stats
