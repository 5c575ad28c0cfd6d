import asyncio

import pytest

from conftest import FakeClock
from pawreels.services.cache import MemoryCache, create_cache
from pawreels.services.errors import CacheError


def test_set_if_absent_respects_ttl():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        assert await cache.set_if_absent("token:lock", "1", ttl=10) is True
        assert await cache.set_if_absent("token:lock", "1", ttl=10) is False

        clock.advance(10)
        assert await cache.set_if_absent("token:lock", "2", ttl=10) is True
        assert await cache.get("token:lock") == "2"

    asyncio.run(scenario())


def test_incr_creates_counter_and_rejects_non_integers():
    async def scenario():
        cache = MemoryCache()
        assert await cache.incr("callcount:2026-01-01") == 1
        assert await cache.incr("callcount:2026-01-01") == 2
        assert await cache.incr("callcount:2026-01-01", -1) == 1

        await cache.set("token", "abc")
        with pytest.raises(CacheError):
            await cache.incr("token")

    asyncio.run(scenario())


def test_get_json_drops_corrupt_values():
    async def scenario():
        cache = MemoryCache()
        await cache.set("session:abc", "[1, 2")
        assert await cache.get_json("session:abc") is None
        assert await cache.get("session:abc") is None

        await cache.set_json("session:def", [3, 1])
        assert await cache.get_json("session:def") == [3, 1]

    asyncio.run(scenario())


def test_cleanup_and_stats():
    clock = FakeClock()

    async def scenario():
        cache = MemoryCache(clock=clock)
        await cache.set("a", "1", ttl=5)
        await cache.set("b", "2")
        await cache.get("b")
        await cache.get("missing")

        clock.advance(6)
        assert await cache.cleanup_expired() == 1

        stats = cache.get_stats()
        assert stats.size == 1
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.to_dict()["hit_rate"] == "50.00%"

    asyncio.run(scenario())


def test_create_cache_without_url_is_in_process():
    assert isinstance(create_cache(""), MemoryCache)
