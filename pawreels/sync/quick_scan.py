"""
Quick-scan - frequent pass over listings published since the last scan.
"""

from loguru import logger

from pawreels.datastore.repositories import AnimalRepository
from pawreels.services.geocode import Coordinates
from pawreels.sync.base import SCAN_CURSOR_KEY, HubScanner, SyncStats


class QuickScanJob(HubScanner):
    """
    Create or update recently published animals, capped per hub.

    The cursor is read once before the first hub and written once after the
    last one. A run stopped by the budget leaves it untouched, so the next
    run covers the same window again.
    """

    job_name = "quick-scan"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._cursor: str | None = None
        self._started_at: str | None = None

    async def before_run(self, stats: SyncStats) -> bool:
        self._cursor = await self.cache.get(SCAN_CURSOR_KEY)
        if not self._cursor:
            logger.info(f"[{self.job_name}] No scan cursor yet, waiting for discovery")
            return False
        self._started_at = self.scan_stamp()
        logger.debug(f"[{self.job_name}] Scanning listings published after {self._cursor}")
        return True

    async def scan_hub(self, hub: str, origin: Coordinates, stats: SyncStats) -> None:
        cap = self.settings.quick_scan_per_hub
        max_pages = max(1, self.settings.quick_scan_max_pages)
        handled = 0
        page_number = 1

        while handled < cap and page_number <= max_pages:
            if page_number > 1:
                await self.pause()

            page = await self.fetch_page(origin, page_number, sort="recent", after=self._cursor)
            stats.pages += 1
            listings = self.eligible(page.animals)[: cap - handled]

            if listings:
                now = self.now()
                async with self.session_factory() as session:
                    await self.ensure_organizations(session, listings, stats)
                    repo = AnimalRepository(session)
                    for listing in listings:
                        lat, lon = await self.locate(listing, origin)
                        if await repo.upsert(listing.to_fields(lat, lon), now=now):
                            stats.created += 1
                        else:
                            stats.updated += 1
                    await session.commit()
                handled += len(listings)

            if not page.has_more:
                break
            page_number += 1

        if handled:
            logger.info(f"[{self.job_name}] {hub}: {handled} recent animals stored")

    async def after_hubs(self, stats: SyncStats) -> None:
        await self.cache.set(SCAN_CURSOR_KEY, self._started_at)
        logger.info(f"[{self.job_name}] Scan cursor advanced to {self._started_at}")
