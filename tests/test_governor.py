import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeClock, no_sleep
from pawreels.services.cache import MemoryCache
from pawreels.services.errors import (
    BudgetExceededError,
    NotFoundError,
    TransportError,
)
from pawreels.services.governor import CallGovernor, CircuitState, RetryPolicy


def _governor(cache, clock, limit, **kwargs):
    return CallGovernor(
        cache,
        "petfinder",
        limit,
        clock=lambda: datetime.fromtimestamp(clock(), timezone.utc),
        sleep=no_sleep,
        **kwargs,
    )


def test_daily_limit_blocks_then_resets_after_a_day():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=5)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return "ok"

        for _ in range(5):
            assert await governor.guarded_call(fetch) == "ok"

        with pytest.raises(BudgetExceededError) as exc:
            await governor.guarded_call(fetch)
        assert exc.value.count == 5
        assert exc.value.limit == 5
        assert calls == 5
        assert await governor.state() == CircuitState.OPEN

        clock.advance(24 * 60 * 60)
        assert await governor.guarded_call(fetch) == "ok"
        assert calls == 6
        assert await governor.get_count() == 1

    asyncio.run(scenario())


def test_counter_expiry_set_on_first_increment_only():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=10)

        async def fetch():
            return 1

        await governor.guarded_call(fetch)
        key = governor.counter_key()
        first_ttl = await cache.ttl(key)
        assert first_ttl == pytest.approx(86400)

        clock.advance(100)
        await governor.guarded_call(fetch)
        # second success must not push the expiry out
        assert await cache.ttl(key) == pytest.approx(86400 - 100)

    asyncio.run(scenario())


def test_failed_calls_are_not_counted():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=10)

        async def missing():
            raise NotFoundError("petfinder", "animal:1")

        with pytest.raises(NotFoundError):
            await governor.guarded_call(missing)
        assert await governor.get_count() == 0

    asyncio.run(scenario())


def test_transport_errors_are_retried_with_backoff():
    clock = FakeClock()
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = CallGovernor(
            cache,
            "petfinder",
            10,
            retry_policy=RetryPolicy(attempts=3, base_delay=2.0, multiplier=2.0),
            sleep=record_sleep,
        )
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise TransportError("HTTP 503", service_id="petfinder")
            return "ok"

        assert await governor.guarded_call(flaky) == "ok"
        assert attempts == 3
        assert delays == [2.0, 4.0]
        assert await governor.get_count() == 1

    asyncio.run(scenario())


def test_retry_gives_up_after_configured_attempts():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=10, retry_policy=RetryPolicy(attempts=2, base_delay=0))
        attempts = 0

        async def down():
            nonlocal attempts
            attempts += 1
            raise TransportError("connection refused", service_id="petfinder")

        with pytest.raises(TransportError):
            await governor.guarded_call(down)
        assert attempts == 2
        assert await governor.get_count() == 0

    asyncio.run(scenario())


def test_scoped_counter_does_not_share_the_listings_quota():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        listings = _governor(cache, clock, limit=1)
        geocoder = _governor(cache, clock, limit=5, scope="geocode")

        async def fetch():
            return True

        await listings.guarded_call(fetch)
        assert await geocoder.guarded_call(fetch) is True
        assert geocoder.counter_key().startswith("callcount:geocode:")
        assert not listings.counter_key().startswith("callcount:geocode:")

        status = await listings.get_status()
        assert status["remaining"] == 0
        assert status["state"] == "OPEN"

    asyncio.run(scenario())


def test_overlapping_calls_never_exceed_the_limit():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=3)
        executed = 0

        async def slow_fetch():
            nonlocal executed
            executed += 1
            await asyncio.sleep(0.01)
            return "ok"

        results = await asyncio.gather(
            *(governor.guarded_call(slow_fetch) for _ in range(8)),
            return_exceptions=True,
        )

        assert executed == 3
        assert results.count("ok") == 3
        assert sum(isinstance(r, BudgetExceededError) for r in results) == 5
        assert await governor.get_count() == 3

    asyncio.run(scenario())


def test_failed_call_hands_its_slot_back():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        governor = _governor(cache, clock, limit=1, retry_policy=RetryPolicy(attempts=1))

        async def missing():
            await asyncio.sleep(0.01)
            raise NotFoundError("petfinder", "animal:1")

        async def fetch():
            return "ok"

        with pytest.raises(NotFoundError):
            await governor.guarded_call(missing)
        assert await governor.guarded_call(fetch) == "ok"
        with pytest.raises(BudgetExceededError):
            await governor.guarded_call(fetch)

    asyncio.run(scenario())
