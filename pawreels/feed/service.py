"""
FeedService - consumer-path seams used by the HTTP layer.

Start a session, page through it, record what a user has seen, and proxy
browse searches through the shared cache. Upstream and geocoding failures
degrade to empty results; an expired session is the only error a caller is
expected to handle (by starting a new session).
"""

import hashlib
import json
from typing import Any, Iterable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pawreels.datastore.models import AnimalDB
from pawreels.datastore.repositories import (
    AnimalRepository,
    SeenMarkRepository,
    UserRepository,
)
from pawreels.feed.assembler import FeedAssembler
from pawreels.feed.playlist import Page, SessionPlaylistCache
from pawreels.services.cache import SharedCache
from pawreels.services.client import PetfinderClient
from pawreels.services.errors import ServiceError
from pawreels.services.geocode import GeocodeResolver
from pawreels.settings import Settings, global_settings

EMPTY_BROWSE: dict[str, Any] = {"animals": [], "pagination": {}}


def serialize_animal(animal: AnimalDB) -> dict[str, Any]:
    """Feed card for one animal."""
    org = animal.organization
    return {
        "id": animal.id,
        "name": animal.name,
        "url": animal.url,
        "type": animal.type,
        "age": animal.age,
        "gender": animal.gender,
        "size": animal.size,
        "status": animal.status,
        "breeds": animal.breeds,
        "colors": animal.colors,
        "photos": animal.photos,
        "videos": animal.videos,
        "contact": animal.contact,
        "attributes": animal.attributes,
        "environment": animal.environment,
        "city": animal.city,
        "state": animal.state,
        "like_count": animal.like_count,
        "organization": (
            {"id": org.id, "name": org.name, "url": org.url, "email": org.email, "phone": org.phone}
            if org
            else None
        ),
    }


class FeedService:
    """
    Usage:
        service = FeedService(session_factory, cache, geocoder, client)
        first = await service.start_session("Denver, CO", user_uuid)
        second = await service.get_page(first.pagination.session_id, 2, user_uuid)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: SharedCache,
        geocoder: GeocodeResolver,
        client: PetfinderClient,
        settings: Settings | None = None,
        assembler: FeedAssembler | None = None,
    ):
        self.settings = settings or global_settings
        self.session_factory = session_factory
        self.cache = cache
        self.geocoder = geocoder
        self.client = client
        self.assembler = assembler or FeedAssembler(session_factory, self.settings)
        self.playlists = SessionPlaylistCache(cache, ttl=self.settings.session_ttl_seconds)

    async def start_session(
        self,
        location: str,
        user_uuid: str,
        page_size: int | None = None,
    ) -> Page:
        """Assemble a fresh feed for a user at a location and return page 1."""
        page_size = page_size or self.settings.feed_page_size

        try:
            origin = await self.geocoder.resolve(location)
        except ServiceError as e:
            logger.warning(f"Cannot start feed for '{location}': {e}")
            return Page.empty()

        async with self.session_factory() as session:
            user = await UserRepository(session).get_or_create(user_uuid)
            seen = await SeenMarkRepository(session).seen_animal_ids(user.id)
            await session.commit()

        feed = await self.assembler.assemble(origin, exclude_ids=seen)
        try:
            session_id = await self.playlists.create_session(feed.ids)
        except ServiceError as e:
            logger.error(f"Cannot store feed session for '{location}': {e}")
            return Page.empty()
        logger.info(f"Started feed session {session_id} for '{location}' ({len(feed)} items)")

        return await self.get_page(session_id, 1, user_uuid, page_size=page_size)

    async def get_page(
        self,
        session_id: str,
        page: int,
        user_uuid: str | None = None,
        page_size: int | None = None,
    ) -> Page:
        """
        Hydrated page of an existing session, in playlist order.

        Raises:
            SessionExpiredError: The session is unknown or expired
            ValueError: page or page_size below 1
        """
        page_size = page_size or self.settings.feed_page_size
        ids_page = await self.playlists.get_page(session_id, page, page_size)

        async with self.session_factory() as session:
            records = await AnimalRepository(session).get_many(ids_page.items)
            # Records removed since the session started are skipped
            items = [serialize_animal(records[i]) for i in ids_page.items if i in records]
            if user_uuid and items:
                await self._mark_seen(session, user_uuid, [item["id"] for item in items])
            await session.commit()

        return Page(items=items, pagination=ids_page.pagination)

    async def mark_seen(self, user_uuid: str, animal_ids: Iterable[int]) -> int:
        """Record that a user has been shown these animals. Returns new marks."""
        async with self.session_factory() as session:
            inserted = await self._mark_seen(session, user_uuid, list(animal_ids))
            await session.commit()
        return inserted

    @staticmethod
    async def _mark_seen(session: AsyncSession, user_uuid: str, animal_ids: list[int]) -> int:
        user = await UserRepository(session).get_or_create(user_uuid)
        return await SeenMarkRepository(session).mark_seen(user.id, animal_ids)

    @staticmethod
    def browse_key(params: dict[str, Any]) -> str:
        canonical = json.dumps(
            {k: params[k] for k in sorted(params) if params[k] is not None},
            sort_keys=True,
            default=str,
        )
        return f"browse:{hashlib.sha256(canonical.encode()).hexdigest()[:32]}"

    async def browse(self, params: dict[str, Any]) -> dict[str, Any]:
        """Cached pass-through search. Empty result set when upstream fails."""
        key = self.browse_key(params)
        cached = await self.cache.get_json(key)
        if cached is not None:
            return cached

        try:
            data = await self.client.search_raw(params)
        except ServiceError as e:
            logger.warning(f"Browse search failed: {e}")
            return dict(EMPTY_BROWSE)

        await self.cache.set_json(key, data, ttl=self.settings.browse_cache_ttl_seconds)
        return data
