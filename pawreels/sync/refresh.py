"""
Refresh (deep scan) - keeps stored records from going stale.

Broad pass: page each hub by recency and bump last_seen_at for every stored
id that shows up. Costs one call per page, no matter how many records match.

Targeted pass: records still not seen for at_risk_hours are re-fetched one by
one, a batch at a time. A 404 is the only proof of removal; any other failure
leaves the record for the next run (or for the janitor).
"""

import asyncio
from datetime import timedelta

from loguru import logger

from pawreels.datastore.models import AnimalDB
from pawreels.datastore.repositories import AnimalRepository
from pawreels.services.errors import (
    AuthFailureError,
    BudgetExceededError,
    NotFoundError,
)
from pawreels.services.geocode import Coordinates
from pawreels.sync.base import HubScanner, SyncStats
from pawreels.sync.documents import is_video_eligible, parse_listings


class RefreshJob(HubScanner):
    """Broad touch over every hub, then targeted revalidation of at-risk records."""

    job_name = "refresh"

    async def scan_hub(self, hub: str, origin: Coordinates, stats: SyncStats) -> None:
        touched_before = stats.touched

        for page_number in range(1, max(1, self.settings.refresh_pages) + 1):
            if page_number > 1:
                await self.pause()

            page = await self.fetch_page(origin, page_number, sort="recent")
            stats.pages += 1
            seen_ids = [listing.id for listing in parse_listings(page.animals)]

            if seen_ids:
                async with self.session_factory() as session:
                    stats.touched += await AnimalRepository(session).touch(seen_ids, now=self.now())
                    await session.commit()

            if not page.has_more:
                break

        logger.debug(f"[{self.job_name}] {hub}: touched {stats.touched - touched_before}")

    async def after_hubs(self, stats: SyncStats) -> None:
        await self.revalidate(stats)

    async def revalidate(self, stats: SyncStats) -> None:
        """Targeted pass over at-risk records, bounded per run."""
        cutoff = self.now() - timedelta(hours=self.settings.at_risk_hours)
        batch_size = max(1, self.settings.refresh_batch_size)
        budget_left = self.settings.refresh_max_records
        deferred: set[int] = set()
        batch_number = 0

        while budget_left > 0:
            if batch_number:
                await self.pause()
            batch_number += 1

            async with self.session_factory() as session:
                repo = AnimalRepository(session)
                batch = await repo.find_at_risk(
                    cutoff, min(batch_size, budget_left), exclude_ids=deferred
                )
                if not batch:
                    break
                budget_left -= len(batch)

                stop = await self._revalidate_batch(session, repo, batch, deferred, stats)
                await session.commit()

            if stop:
                stats.budget_exhausted = True
                logger.warning(f"[{self.job_name}] Daily budget spent during revalidation")
                break

        stats.deferred = len(deferred)
        if deferred:
            logger.warning(f"[{self.job_name}] {len(deferred)} at-risk records deferred")

    async def _revalidate_batch(
        self,
        session,
        repo: AnimalRepository,
        batch: list[AnimalDB],
        deferred: set[int],
        stats: SyncStats,
    ) -> bool:
        """Fetch a batch concurrently and apply the outcomes. True when out of budget."""
        results = await asyncio.gather(
            *(self.client.get_animal(animal.id) for animal in batch),
            return_exceptions=True,
        )

        out_of_budget = False
        gone: list[int] = []
        refreshed = []

        for animal, result in zip(batch, results):
            if isinstance(result, NotFoundError):
                gone.append(animal.id)
            elif isinstance(result, BudgetExceededError):
                out_of_budget = True
                deferred.add(animal.id)
            elif isinstance(result, AuthFailureError):
                raise result
            elif isinstance(result, BaseException):
                logger.warning(f"[{self.job_name}] Deferring animal {animal.id}: {result}")
                deferred.add(animal.id)
            else:
                parsed = parse_listings([result])
                if parsed and is_video_eligible(parsed[0], self.settings.blocked_video_hosts):
                    refreshed.append((animal, parsed[0]))
                else:
                    # Upstream still lists it but the video is gone
                    gone.append(animal.id)

        if refreshed:
            listings = [listing for _, listing in refreshed]
            try:
                await self.ensure_organizations(session, listings, stats)
            except BudgetExceededError:
                out_of_budget = True

        now = self.now()
        for animal, listing in refreshed:
            if (animal.city, animal.state) == listing.address_city_state():
                lat, lon = animal.latitude, animal.longitude
            else:
                previous = None
                if animal.latitude is not None and animal.longitude is not None:
                    previous = Coordinates(animal.latitude, animal.longitude)
                lat, lon = await self.locate(listing, previous)
            await repo.refresh(animal.id, listing.to_fields(lat, lon), now=now)
            stats.updated += 1

        if gone:
            stats.deleted += await repo.delete_ids(gone)
            logger.info(f"[{self.job_name}] Removed {len(gone)} animals gone upstream")

        return out_of_budget
