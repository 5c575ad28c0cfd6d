"""
Shared hub loop for the sync jobs.

Hubs are walked sequentially so every job draws on the daily budget in a
predictable order. A failing hub is logged and skipped; an exhausted budget
ends the run early without failing it.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pawreels.datastore.models import utcnow
from pawreels.datastore.repositories import OrganizationRepository
from pawreels.services.cache import SharedCache
from pawreels.services.client import PetfinderClient, SearchPage
from pawreels.services.errors import (
    AuthFailureError,
    BudgetExceededError,
    GeocodeNotFoundError,
    NotFoundError,
    ServiceError,
)
from pawreels.services.geocode import Coordinates, GeocodeResolver
from pawreels.settings import Settings, global_settings
from pawreels.sync.documents import (
    Listing,
    OrganizationDoc,
    is_video_eligible,
    parse_listings,
)

SCAN_CURSOR_KEY = "sync:last-scan"


@dataclass
class SyncStats:
    """Outcome of one job run."""

    job: str
    hubs_processed: int = 0
    hubs_failed: int = 0
    pages: int = 0
    created: int = 0
    updated: int = 0
    touched: int = 0
    deleted: int = 0
    deferred: int = 0
    organizations_created: int = 0
    organizations_deleted: int = 0
    budget_exhausted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        parts = [
            f"{name}={value}"
            for name, value in self.to_dict().items()
            if name != "job" and value
        ]
        return f"[{self.job}] run complete: {', '.join(parts) or 'no changes'}"


class SyncJob:
    """Common wiring for every sync job."""

    job_name = "sync"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings or global_settings
        self._clock = clock
        self._sleep = sleep

    def now(self) -> datetime:
        return self._clock()

    def scan_stamp(self) -> str:
        """The job clock as a UTC ISO string, the scan cursor format."""
        now = self.now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc).isoformat(timespec="seconds")

    async def pause(self) -> None:
        """Fixed pacing delay between upstream calls."""
        if self.settings.pacing_seconds > 0:
            await self._sleep(self.settings.pacing_seconds)

    async def run(self) -> SyncStats:
        raise NotImplementedError


class HubScanner(SyncJob):
    """
    Base for jobs that page the listings API around each hub.

    Subclasses implement scan_hub and optionally before_run / after_hubs:
        before_run  -> False skips the run entirely
        scan_hub    -> one hub, own session, commits per page
        after_hubs  -> only called when every hub was visited (no budget stop)
    """

    def __init__(
        self,
        client: PetfinderClient,
        geocoder: GeocodeResolver,
        cache: SharedCache,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(session_factory, settings, clock, sleep)
        self.client = client
        self.geocoder = geocoder
        self.cache = cache

    @property
    def hubs(self) -> list[str]:
        return self.settings.hubs

    async def before_run(self, stats: SyncStats) -> bool:
        return True

    async def scan_hub(self, hub: str, origin: Coordinates, stats: SyncStats) -> None:
        raise NotImplementedError

    async def after_hubs(self, stats: SyncStats) -> None:
        return None

    async def run(self) -> SyncStats:
        stats = SyncStats(job=self.job_name)
        logger.info(f"[{self.job_name}] Starting run over {len(self.hubs)} hubs...")

        if not await self.before_run(stats):
            return stats

        for index, hub in enumerate(self.hubs):
            if index:
                await self.pause()
            try:
                origin = await self.resolve_hub(hub)
                if origin is None:
                    stats.hubs_failed += 1
                    continue
                await self.scan_hub(hub, origin, stats)
                stats.hubs_processed += 1
            except BudgetExceededError as e:
                stats.budget_exhausted = True
                logger.warning(f"[{self.job_name}] {e}. Halting, will resume next run.")
                break
            except AuthFailureError:
                raise
            except GeocodeNotFoundError as e:
                stats.hubs_failed += 1
                logger.warning(f"[{self.job_name}] Skipping hub {hub}: {e}")
            except Exception as e:
                stats.hubs_failed += 1
                logger.error(f"[{self.job_name}] Failed to process hub {hub}: {e}")

        if not stats.budget_exhausted:
            try:
                await self.after_hubs(stats)
            except BudgetExceededError as e:
                stats.budget_exhausted = True
                logger.warning(f"[{self.job_name}] {e}. Halting, will resume next run.")

        logger.info(stats.summary())
        return stats

    # ── Helpers shared by the hub jobs ────────────────────────────────────────

    async def resolve_hub(self, hub: str) -> Coordinates | None:
        """
        Hub coordinates, or None when the geocoding quota is spent.

        The geocoder runs on its own budget; running out of it only costs the
        hubs that are not cached yet.
        """
        try:
            return await self.geocoder.resolve(hub)
        except BudgetExceededError as e:
            logger.warning(f"[{self.job_name}] Skipping hub {hub}: {e}")
            return None

    async def fetch_page(
        self,
        origin: Coordinates,
        page: int,
        sort: str,
        after: str | None = None,
    ) -> SearchPage:
        return await self.client.search_animals(
            origin.as_location(),
            distance=self.settings.scan_radius_miles,
            sort=sort,
            page=page,
            limit=self.settings.page_limit,
            after=after,
        )

    def eligible(self, raw_animals: list[dict[str, Any]]) -> list[Listing]:
        """Parsed listings that have a playable, non-blocked video."""
        blocked = self.settings.blocked_video_hosts
        return [
            listing
            for listing in parse_listings(raw_animals)
            if is_video_eligible(listing, blocked)
        ]

    async def ensure_organizations(
        self,
        session: AsyncSession,
        listings: list[Listing],
        stats: SyncStats,
    ) -> None:
        """Fetch and store organizations referenced for the first time."""
        org_ids = {l.organization_id for l in listings if l.organization_id}
        if not org_ids:
            return

        repo = OrganizationRepository(session)
        missing = sorted(org_ids - await repo.existing_ids(org_ids))
        try:
            for org_id in missing:
                try:
                    org = await self.client.get_organization(org_id)
                except (BudgetExceededError, AuthFailureError):
                    raise
                except NotFoundError:
                    logger.warning(f"[{self.job_name}] Organization {org_id} not found upstream")
                    continue
                except ServiceError as e:
                    logger.error(f"[{self.job_name}] Failed to fetch organization {org_id}: {e}")
                    continue
                try:
                    doc = OrganizationDoc.model_validate(
                        {k: v for k, v in {**org, "id": org_id}.items() if v is not None}
                    )
                except ValueError as e:
                    logger.error(f"[{self.job_name}] Unusable organization {org_id}: {e}")
                    continue
                await repo.upsert(doc.to_fields())
                stats.organizations_created += 1
        finally:
            # Listings must not point at organizations we could not store
            stored = await repo.existing_ids(org_ids)
            for listing in listings:
                if listing.organization_id and listing.organization_id not in stored:
                    listing.organization_id = None

    async def locate(
        self,
        listing: Listing,
        fallback: Coordinates | None,
    ) -> tuple[float | None, float | None]:
        """Coordinates of the listing's own city, else the fallback point."""
        city, state = listing.address_city_state()
        if city:
            place = f"{city}, {state}" if state else city
            try:
                coords = await self.geocoder.resolve(place)
                return coords.lat, coords.lon
            except ServiceError as e:
                logger.debug(f"[{self.job_name}] Using fallback location for {listing.id}: {e}")
        if fallback is None:
            return None, None
        return fallback.lat, fallback.lon
