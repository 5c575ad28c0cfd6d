import asyncio

import pytest

from conftest import FakeClock, no_sleep
from pawreels.services.cache import MemoryCache
from pawreels.services.errors import (
    AuthFailureError,
    BudgetExceededError,
    ServiceError,
)
from pawreels.services.governor import CallGovernor, RetryPolicy
from pawreels.services.tokens import TOKEN_KEY, TOKEN_LOCK_KEY, TokenManager


def _manager(cache, exchange, daily_limit=100, **kwargs):
    governor = CallGovernor(
        cache, "petfinder", daily_limit, retry_policy=RetryPolicy(attempts=1), sleep=no_sleep
    )
    return TokenManager(cache, governor, exchange=exchange, **kwargs)


def test_concurrent_callers_share_one_exchange():
    async def scenario():
        cache = MemoryCache()
        exchanges = 0

        async def exchange():
            nonlocal exchanges
            exchanges += 1
            await asyncio.sleep(0.05)
            return f"tok-{exchanges}", 3600

        tokens = _manager(cache, exchange, retry_delay=0.01)
        results = await asyncio.gather(*(tokens.get_token() for _ in range(10)))

        assert exchanges == 1
        assert set(results) == {"tok-1"}
        assert await cache.get(TOKEN_LOCK_KEY) is None

    asyncio.run(scenario())


def test_token_ttl_is_expiry_minus_margin():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)

        async def exchange():
            return "abc", 3600

        tokens = _manager(cache, exchange, expiry_margin=60)
        assert await tokens.get_token() == "abc"
        assert await cache.ttl(TOKEN_KEY) == pytest.approx(3540)

        # served from cache until it lapses
        assert await tokens.get_token() == "abc"
        assert tokens.exchange_count == 1

        clock.advance(3541)
        assert await tokens.get_token() == "abc"
        assert tokens.exchange_count == 2

    asyncio.run(scenario())


def test_failed_exchange_releases_lock_and_raises_auth_failure():
    async def scenario():
        cache = MemoryCache()

        async def exchange():
            raise ServiceError("HTTP 400: invalid_client", service_id="petfinder")

        tokens = _manager(cache, exchange)
        with pytest.raises(AuthFailureError):
            await tokens.get_token()
        assert await cache.get(TOKEN_LOCK_KEY) is None
        assert await cache.get(TOKEN_KEY) is None

    asyncio.run(scenario())


def test_exchange_is_blocked_when_budget_is_spent():
    async def scenario():
        cache = MemoryCache()
        called = False

        async def exchange():
            nonlocal called
            called = True
            return "abc", 3600

        tokens = _manager(cache, exchange, daily_limit=0)
        with pytest.raises(BudgetExceededError):
            await tokens.get_token()
        assert called is False

    asyncio.run(scenario())


def test_waiter_gives_up_when_lock_is_never_released():
    async def scenario():
        cache = MemoryCache()
        await cache.set_if_absent(TOKEN_LOCK_KEY, "1")

        async def exchange():
            return "abc", 3600

        tokens = _manager(cache, exchange, retry_delay=0.01, max_wait=0.05)
        with pytest.raises(AuthFailureError):
            await tokens.get_token()
        assert tokens.exchange_count == 0

    asyncio.run(scenario())


def test_invalidate_forces_a_new_exchange():
    async def scenario():
        cache = MemoryCache()

        async def exchange():
            return "abc", 3600

        tokens = _manager(cache, exchange)
        await tokens.get_token()
        await tokens.invalidate()
        await tokens.get_token()
        assert tokens.exchange_count == 2

    asyncio.run(scenario())
