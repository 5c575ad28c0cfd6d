"""
Geo-tier feed assembler.

A feed is three disjoint tiers concatenated:
1. hyper-local: nearest records within local_radius_km, closest first
2. regional: random sample within regional_radius_km
3. nationwide: random sample of whatever is left, located or not

Radius filtering is a bounding-box prefilter in SQL followed by the exact
great-circle distance in Python.
"""

import random
from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pawreels.datastore.repositories import AnimalRepository
from pawreels.feed.geo import bounding_box, haversine_km
from pawreels.services.geocode import Coordinates
from pawreels.settings import Settings, global_settings


@dataclass
class TieredFeed:
    local: list[int] = field(default_factory=list)
    regional: list[int] = field(default_factory=list)
    nationwide: list[int] = field(default_factory=list)

    @property
    def ids(self) -> list[int]:
        return self.local + self.regional + self.nationwide

    def __len__(self) -> int:
        return len(self.local) + len(self.regional) + len(self.nationwide)


class FeedAssembler:
    """
    Build the ordered candidate list for one session.

    Usage:
        assembler = FeedAssembler(session_factory)
        feed = await assembler.assemble(Coordinates(47.6, -122.3), exclude_ids=seen)
        playlist = feed.ids
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or global_settings
        self._rng = rng or random.Random()

    async def assemble(self, origin: Coordinates, exclude_ids: Iterable[int] = ()) -> TieredFeed:
        excluded = set(exclude_ids)
        settings = self.settings
        feed = TieredFeed()

        async with self.session_factory() as session:
            repo = AnimalRepository(session)

            local = await self._within(repo, origin, settings.local_radius_km, excluded)
            local.sort(key=lambda item: (item[1], item[0]))
            feed.local = [animal_id for animal_id, _ in local[: settings.local_limit]]
            excluded.update(feed.local)

            regional = await self._within(repo, origin, settings.regional_radius_km, excluded)
            regional_ids = [animal_id for animal_id, _ in regional]
            count = min(settings.regional_limit, len(regional_ids))
            feed.regional = self._rng.sample(regional_ids, count)
            excluded.update(feed.regional)

            nationwide = await repo.random_ids(settings.nationwide_limit, exclude_ids=excluded)
            self._rng.shuffle(nationwide)
            feed.nationwide = nationwide

        logger.debug(
            f"Assembled feed around {origin.as_location()}: "
            f"{len(feed.local)} local, {len(feed.regional)} regional, "
            f"{len(feed.nationwide)} nationwide"
        )
        return feed

    @staticmethod
    async def _within(
        repo: AnimalRepository,
        origin: Coordinates,
        radius_km: float,
        excluded: set[int],
    ) -> list[tuple[int, float]]:
        """(id, distance_km) of located records inside radius_km."""
        box = bounding_box(origin.lat, origin.lon, radius_km)
        rows = await repo.coordinates_in_box(
            box.min_lat, box.max_lat, box.min_lon, box.max_lon, exclude_ids=excluded
        )
        hits = []
        for animal_id, lat, lon in rows:
            distance = haversine_km(origin.lat, origin.lon, lat, lon)
            if distance <= radius_km:
                hits.append((animal_id, distance))
        return hits
