"""
TokenManager - one credential exchange at a time across every worker.

The bearer token is a single shared-cache slot. Refresh is guarded by a
set-if-absent lock with a short TTL; the lock's self-expiry stands in for
deadlock recovery if a holder dies mid-exchange.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

from loguru import logger

from pawreels.services.cache import SharedCache
from pawreels.services.errors import (
    AuthFailureError,
    BudgetExceededError,
    ServiceError,
)
from pawreels.services.governor import CallGovernor

TOKEN_KEY = "token"
TOKEN_LOCK_KEY = "token:lock"

# (access_token, expires_in seconds)
ExchangeFn = Callable[[], Awaitable[tuple[str, int]]]


class TokenManager:
    """
    Cached OAuth2 client-credentials token.

    Usage:
        tokens = TokenManager(cache, governor, exchange=client.request_token)
        bearer = await tokens.get_token()
    """

    def __init__(
        self,
        cache: SharedCache,
        governor: CallGovernor,
        exchange: ExchangeFn,
        expiry_margin: int = 60,
        lock_ttl: int = 10,
        retry_delay: float = 2.0,
        max_wait: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cache = cache
        self.governor = governor
        self._exchange = exchange
        self.expiry_margin = expiry_margin
        self.lock_ttl = lock_ttl
        self.retry_delay = retry_delay
        self.max_wait = max_wait if max_wait is not None else lock_ttl * 3
        self._sleep = sleep
        self.exchange_count = 0

    async def get_token(self) -> str:
        """Return a live token, refreshing it under the shared lock if needed."""
        token = await self.cache.get(TOKEN_KEY)
        if token:
            return token

        deadline = time.monotonic() + self.max_wait
        while True:
            if await self.cache.set_if_absent(TOKEN_LOCK_KEY, "1", self.lock_ttl):
                try:
                    # Another holder may have filled the slot before we got the lock
                    token = await self.cache.get(TOKEN_KEY)
                    if token:
                        return token
                    return await self._refresh()
                finally:
                    await self.cache.delete(TOKEN_LOCK_KEY)

            await self._sleep(self.retry_delay)
            token = await self.cache.get(TOKEN_KEY)
            if token:
                return token
            if time.monotonic() >= deadline:
                raise AuthFailureError(
                    "Timed out waiting for a concurrent token refresh",
                    service_id=self.governor.service_id,
                )

    async def _refresh(self) -> str:
        logger.info("No valid token, exchanging client credentials...")
        self.exchange_count += 1
        try:
            access_token, expires_in = await self.governor.guarded_call(
                self._exchange, label="token exchange"
            )
        except (AuthFailureError, BudgetExceededError):
            raise
        except ServiceError as e:
            raise AuthFailureError(
                f"Credential exchange failed: {e}",
                service_id=self.governor.service_id,
            ) from e

        if not access_token:
            raise AuthFailureError(
                "Credential exchange returned no access token",
                service_id=self.governor.service_id,
            )

        ttl = max(1, int(expires_in) - self.expiry_margin)
        await self.cache.set(TOKEN_KEY, access_token, ttl=ttl)
        logger.info(f"Cached new token for {ttl}s")
        return access_token

    async def invalidate(self) -> None:
        """Drop the cached token (upstream rejected it)."""
        if await self.cache.delete(TOKEN_KEY):
            logger.warning("Cached token invalidated")
