"""
pawreels entrypoint.
Boots the store and shared cache, wires the upstream clients and runs the
sync scheduler.
"""

import asyncio

from loguru import logger

from pawreels.datastore.engine import close_db, get_session_factory, init_db
from pawreels.scheduler import SyncScheduler
from pawreels.services import (
    CallGovernor,
    GeocodeResolver,
    OpenCageClient,
    PetfinderClient,
    RedisCache,
    RetryPolicy,
    create_cache,
)
from pawreels.settings import global_settings
from pawreels.sync import (
    DiscoveryJob,
    DuplicateCleanupJob,
    JanitorJob,
    QuickScanJob,
    RefreshJob,
)


async def main() -> None:
    """Main function."""
    logger.info("Starting pawreels sync worker...")
    settings = global_settings

    cache = create_cache(settings.redis_url, debug=settings.cache_debug)
    retry = RetryPolicy(attempts=settings.retry_attempts, base_delay=settings.retry_base_delay)
    petfinder_governor = CallGovernor(
        cache, service_id="petfinder", daily_limit=settings.api_daily_limit, retry_policy=retry
    )
    geocode_governor = CallGovernor(
        cache,
        service_id="opencage",
        daily_limit=settings.geocode_daily_limit,
        retry_policy=retry,
        scope="geocode",
    )
    client = PetfinderClient(
        cache,
        petfinder_governor,
        settings.petfinder_client_id,
        settings.petfinder_client_secret,
        base_url=settings.petfinder_base_url,
        timeout=settings.petfinder_timeout,
        token_expiry_margin=settings.token_expiry_margin,
        token_lock_ttl=settings.token_lock_ttl,
        token_retry_delay=settings.token_retry_delay,
    )
    opencage = OpenCageClient(settings.opencage_api_key, base_url=settings.opencage_base_url)
    geocoder = GeocodeResolver(
        cache, geocode_governor, opencage, ttl=settings.geocode_ttl_days * 86400
    )
    scheduler: SyncScheduler | None = None

    try:
        if not client.is_configured():
            logger.warning("PETFINDER_CLIENT_ID / PETFINDER_CLIENT_SECRET not set")
        if not opencage.is_configured():
            logger.warning("OPENCAGE_API_KEY not set, hub geocoding will fail")

        if isinstance(cache, RedisCache):
            await cache.ping()

        logger.info("Initializing database...")
        await init_db()
        logger.info("Database initialized successfully")

        session_factory = get_session_factory()
        hub_args = (client, geocoder, cache, session_factory)
        scheduler = SyncScheduler(
            discovery=DiscoveryJob(*hub_args),
            quick_scan=QuickScanJob(*hub_args),
            refresh=RefreshJob(*hub_args),
            janitor=JanitorJob(session_factory),
            dedup=DuplicateCleanupJob(session_factory),
        )

        logger.info("Starting sync scheduler...")
        scheduler.start()

        logger.info("Performing initial discovery...")
        await scheduler.run_now("discovery")

        logger.info("pawreels is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        if scheduler is not None:
            logger.info("Stopping sync scheduler...")
            scheduler.stop()

        await client.close()
        await opencage.close()
        await cache.close()

        logger.info("Closing database connections...")
        await close_db()

        logger.info("pawreels stopped")


if __name__ == "__main__":
    asyncio.run(main())
