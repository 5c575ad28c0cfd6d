"""
CallGovernor - Daily call budget and breaker for every upstream request.

The breaker opens on a counted threshold, not on error rate:

States:
- CLOSED: today's count is below the daily limit, requests pass through
- OPEN: the limit is reached, requests fail fast with BudgetExceededError

Transitions:
- CLOSED → OPEN: when a claimed call brings the count to the limit
- OPEN → CLOSED: when the UTC date rolls over (new counter key)

The counter lives in the shared cache under callcount:<utc-date>, so every
worker instance draws on the same quota. A call claims its slot (INCR) before
it goes out, so concurrent callers can never overshoot the limit; a failed call
hands the slot back.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from pawreels.services.cache import SharedCache
from pawreels.services.errors import BudgetExceededError, TransportError

T = TypeVar("T")

COUNTER_TTL_SECONDS = 86400


class CircuitState(str, Enum):
    """Budget breaker states."""

    CLOSED = "CLOSED"  # Budget left
    OPEN = "OPEN"  # Budget spent for today


@dataclass
class RetryPolicy:
    """Retry policy for transport failures."""

    attempts: int = 3  # Total attempts including the first
    base_delay: float = 2.0  # Seconds before the first retry
    multiplier: float = 2.0  # Backoff factor per retry
    jitter: float = 0.0  # Max random seconds added to each delay

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry number N (1-based)."""
        delay = self.base_delay * (self.multiplier ** (retry_number - 1))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay


class CallGovernor:
    """
    Budget guard for one upstream quota.

    Usage:
        governor = CallGovernor(cache, service_id="petfinder", daily_limit=989)

        data = await governor.guarded_call(lambda: client.fetch_page(...))
    """

    def __init__(
        self,
        cache: SharedCache,
        service_id: str,
        daily_limit: int,
        retry_policy: RetryPolicy | None = None,
        scope: str | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cache = cache
        self.service_id = service_id
        self.daily_limit = daily_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self._scope = scope
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def counter_key(self) -> str:
        """Cache key of today's (UTC) counter."""
        today = self._clock().astimezone(timezone.utc).date().isoformat()
        if self._scope:
            return f"callcount:{self._scope}:{today}"
        return f"callcount:{today}"

    async def get_count(self) -> int:
        raw = await self.cache.get(self.counter_key())
        return int(raw) if raw else 0

    async def state(self) -> CircuitState:
        if await self.get_count() >= self.daily_limit:
            return CircuitState.OPEN
        return CircuitState.CLOSED

    async def _reserve(self, key: str, label: str) -> int:
        """Claim one slot of the day's budget before the call goes out."""
        count = await self.cache.incr(key)
        if count == 1:
            await self.cache.expire(key, COUNTER_TTL_SECONDS)
        if count > self.daily_limit:
            await self.cache.incr(key, -1)
            logger.warning(
                f"Call governor '{self.service_id}': daily limit of "
                f"{self.daily_limit} reached, blocking {label}"
            )
            raise BudgetExceededError(self.service_id, count - 1, self.daily_limit)
        return count

    async def _release(self, key: str) -> None:
        """Hand back a slot claimed by a call that failed."""
        await self.cache.incr(key, -1)

    async def guarded_call(
        self,
        fn: Callable[[], Awaitable[T]],
        label: str = "request",
        retry: bool = True,
    ) -> T:
        """
        Run fn under the daily budget.

        Args:
            fn: Zero-argument coroutine factory performing exactly one upstream call
            label: Short description used in log lines
            retry: Retry TransportError with backoff (a fresh slot is claimed every attempt)

        Raises:
            BudgetExceededError: If the limit is reached (fn is never invoked)
            TransportError: If every attempt failed at the transport level
            ServiceError: Any other upstream failure, surfaced immediately
        """
        attempts = max(1, self.retry_policy.attempts) if retry else 1

        for attempt in range(1, attempts + 1):
            key = self.counter_key()
            count = await self._reserve(key, label)
            try:
                result = await fn()
            except TransportError as e:
                await self._release(key)
                if attempt >= attempts:
                    logger.error(
                        f"{self.service_id} {label} failed after {attempts} attempts: {e}"
                    )
                    raise
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"{self.service_id} {label} failed ({e}), retrying in "
                    f"{delay:.1f}s (attempt {attempt}/{attempts})"
                )
                await self._sleep(delay)
                continue
            except BaseException:
                await self._release(key)
                raise

            logger.debug(
                f"Call governor '{self.service_id}': daily count is now "
                f"{count}/{self.daily_limit}"
            )
            return result

        # Unreachable: the loop either returns or raises
        raise RuntimeError("guarded_call exhausted without result")

    async def get_status(self) -> dict[str, Any]:
        """Get current budget status as dictionary."""
        count = await self.get_count()
        return {
            "service_id": self.service_id,
            "date": self._clock().astimezone(timezone.utc).date().isoformat(),
            "key": self.counter_key(),
            "count": count,
            "limit": self.daily_limit,
            "remaining": max(0, self.daily_limit - count),
            "state": (
                CircuitState.OPEN if count >= self.daily_limit else CircuitState.CLOSED
            ).value,
        }
