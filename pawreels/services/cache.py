"""
Shared cache - keyed store with per-key TTL and single-key atomic operations.

Backends:
- RedisCache: redis.asyncio, shared by every worker and API instance
- MemoryCache: in-process dict with TTL, for single-process runs and tests

Every piece of cross-instance state (credential token, token lock, daily call
counter, geocode results, session playlists) lives here as an explicit key,
so workers stay stateless.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from pawreels.services.errors import CacheError


class SharedCache(ABC):
    """
    Minimal atomic key-value interface.

    Values are strings; use get_json/set_json for structured documents.
    TTLs are whole seconds.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Atomically set key only if it does not exist. True if set."""
        ...

    @abstractmethod
    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomically add amount to an integer key, creating it at 0 first."""
        ...

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    async def close(self) -> None:
        return None

    async def get_json(self, key: str) -> Any | None:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping undecodable cache value at {key}: {e}")
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self.set(key, json.dumps(value, separators=(",", ":")), ttl)


@dataclass
class CacheEntry:
    """A single in-process cache entry."""

    value: str
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class MemoryCache(SharedCache):
    """
    In-process cache with TTL.

    All operations hold one asyncio.Lock, which makes set_if_absent and incr
    atomic for every coroutine in the process. The clock is injectable so
    tests can move time forward.

    Usage:
        cache = MemoryCache()
        await cache.set("token", "abc", ttl=3540)
        if await cache.set_if_absent("token:lock", "1", ttl=10):
            ...
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    def _live(self, key: str) -> CacheEntry | None:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._memory[key]
            self._log(f"EXPIRED: {key[:50]}")
            return None
        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl is not None else None

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            self._memory[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))
            self._stats.writes += 1
            self._log(f"SET: {key[:50]} (TTL: {ttl}s)")

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._memory[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))
            self._stats.writes += 1
            self._log(f"SETNX: {key[:50]} (TTL: {ttl}s)")
            return True

    async def incr(self, key: str, amount: int = 1) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = CacheEntry(value="0", expires_at=None)
                self._memory[key] = entry
            try:
                entry.value = str(int(entry.value) + amount)
            except ValueError as e:
                raise CacheError(f"Value at {key} is not an integer") from e
            return int(entry.value)

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._expiry(ttl)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if self._live(key) is None:
                return False
            del self._memory[key]
            self._log(f"DELETE: {key[:50]}")
            return True

    async def ttl(self, key: str) -> float | None:
        """Seconds left on a key, None when missing or persistent."""
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return entry.expires_at - self._clock()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired:
                del self._memory[key]
            if expired:
                self._log(f"CLEANUP: {len(expired)} expired entries removed")
            return len(expired)

    def get_stats(self) -> CacheStats:
        self._stats.size = len(self._memory)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[MemoryCache] {message}")


class RedisCache(SharedCache):
    """Redis-backed shared cache (SET NX EX, INCR, EXPIRE)."""

    def __init__(self, url: str, debug: bool = False):
        self._redis = aioredis.Redis.from_url(url, decode_responses=True)
        self._debug = debug

    async def ping(self) -> None:
        try:
            await self._redis.ping()
        except RedisError as e:
            raise CacheError(f"Redis unreachable: {e}") from e
        logger.info("Redis connected")

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise CacheError(f"GET {key} failed: {e}") from e

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl)
        except RedisError as e:
            raise CacheError(f"SET {key} failed: {e}") from e
        self._log(f"SET: {key[:50]} (TTL: {ttl}s)")

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        try:
            return bool(await self._redis.set(key, value, ex=ttl, nx=True))
        except RedisError as e:
            raise CacheError(f"SET NX {key} failed: {e}") from e

    async def incr(self, key: str, amount: int = 1) -> int:
        try:
            return int(await self._redis.incr(key, amount))
        except RedisError as e:
            raise CacheError(f"INCR {key} failed: {e}") from e

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._redis.expire(key, ttl))
        except RedisError as e:
            raise CacheError(f"EXPIRE {key} failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as e:
            raise CacheError(f"DEL {key} failed: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RedisCache] {message}")


def create_cache(redis_url: str = "", debug: bool = False) -> SharedCache:
    """Pick the Redis backend when a URL is configured."""
    if redis_url:
        return RedisCache(redis_url, debug=debug)
    logger.warning("REDIS_URL not set, using in-process cache (single worker only)")
    return MemoryCache(debug=debug)
