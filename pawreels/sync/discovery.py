"""
Discovery - nightly sweep that adds new video-eligible animals around each hub.

Existing records are never modified here; refreshing them is the job of
quick-scan and refresh.
"""

from loguru import logger

from pawreels.datastore.repositories import AnimalRepository
from pawreels.services.geocode import Coordinates
from pawreels.sync.base import SCAN_CURSOR_KEY, HubScanner, SyncStats


class DiscoveryJob(HubScanner):
    """Page each hub by distance and create records that are not stored yet."""

    job_name = "discovery"

    async def scan_hub(self, hub: str, origin: Coordinates, stats: SyncStats) -> None:
        created_before = stats.created
        max_pages = max(1, self.settings.discovery_max_pages)

        for page_number in range(1, max_pages + 1):
            if page_number > 1:
                await self.pause()

            page = await self.fetch_page(origin, page_number, sort="distance")
            stats.pages += 1
            listings = self.eligible(page.animals)

            if listings:
                now = self.now()
                async with self.session_factory() as session:
                    await self.ensure_organizations(session, listings, stats)
                    repo = AnimalRepository(session)
                    known = await repo.existing_ids(l.id for l in listings)
                    for listing in listings:
                        if listing.id in known:
                            continue
                        lat, lon = await self.locate(listing, origin)
                        if await repo.create_if_absent(listing.to_fields(lat, lon), now=now):
                            stats.created += 1
                    await session.commit()

            if not page.has_more:
                break

        logger.info(
            f"[{self.job_name}] {hub}: {stats.created - created_before} new animals"
        )

    async def after_hubs(self, stats: SyncStats) -> None:
        """Give quick-scan a starting point on the first ever run."""
        started = self.scan_stamp()
        if await self.cache.set_if_absent(SCAN_CURSOR_KEY, started):
            logger.info(f"[{self.job_name}] Seeded scan cursor at {started}")
