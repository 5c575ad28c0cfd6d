"""
Duplicate cleanup.

Shelters sometimes re-list the same animal under a new id. Records sharing
name, species and breed composition are collapsed onto the lowest id.
"""

from collections import defaultdict
from typing import Any

from loguru import logger

from pawreels.datastore.repositories import AnimalRepository
from pawreels.sync.base import SyncJob, SyncStats
from pawreels.sync.documents import breed_key


def find_duplicates(rows: list[tuple[int, str, str, Any]]) -> list[int]:
    """Ids to delete from (id, name, type, breeds) rows: all but the lowest per group."""
    groups: dict[tuple, list[int]] = defaultdict(list)
    for animal_id, name, animal_type, breeds in rows:
        groups[(name, animal_type, breed_key(breeds))].append(animal_id)

    doomed = []
    for ids in groups.values():
        if len(ids) > 1:
            ids.sort()
            doomed.extend(ids[1:])
    return sorted(doomed)


class DuplicateCleanupJob(SyncJob):
    job_name = "dedup"

    async def run(self) -> SyncStats:
        stats = SyncStats(job=self.job_name)

        async with self.session_factory() as session:
            repo = AnimalRepository(session)
            doomed = find_duplicates(await repo.find_name_type_collisions())
            if doomed:
                stats.deleted = await repo.delete_ids(doomed)
            await session.commit()

        if doomed:
            logger.info(f"[{self.job_name}] Removed {stats.deleted} duplicate animals")
        return stats
