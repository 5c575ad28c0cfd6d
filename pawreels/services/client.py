"""
PetfinderClient - async HTTP client for the upstream listings API.

Every network call goes through the CallGovernor: the token exchange (via
TokenManager), paginated search, and per-id animal/organization detail.
HTTP failures are mapped onto the service error taxonomy:

- timeout / connection error / 5xx / 429 → TransportError (retried by governor)
- 404 → NotFoundError (a business signal for per-id fetches)
- 401 / 403 → AuthFailureError (cached token is dropped)
- other 4xx → ServiceError
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from pawreels.services.cache import SharedCache
from pawreels.services.errors import (
    AuthFailureError,
    NotFoundError,
    RequestTimeoutError,
    ServiceError,
    TransportError,
)
from pawreels.services.governor import CallGovernor
from pawreels.services.tokens import TokenManager


@dataclass
class SearchPage:
    """One page of the upstream animal search."""

    animals: list[dict[str, Any]]
    current_page: int
    total_pages: int
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_more(self) -> bool:
        return self.current_page < self.total_pages


class PetfinderClient:
    """
    Petfinder v2 client.

    Usage:
        client = PetfinderClient(cache, governor, client_id, client_secret)
        page = await client.search_animals("47.6,-122.3", distance=150, sort="distance")
        animal = await client.get_animal(12345)
    """

    SERVICE_ID = "petfinder"

    def __init__(
        self,
        cache: SharedCache,
        governor: CallGovernor,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api.petfinder.com/v2",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        token_expiry_margin: int = 60,
        token_lock_ttl: int = 10,
        token_retry_delay: float = 2.0,
    ):
        self.governor = governor
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._http_client = http_client
        self.tokens = TokenManager(
            cache,
            governor,
            exchange=self._request_token,
            expiry_margin=token_expiry_margin,
            lock_ttl=token_lock_ttl,
            retry_delay=token_retry_delay,
        )

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def _execute_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        resource: str | None = None,
    ) -> dict[str, Any]:
        """Execute the actual HTTP request."""
        client = await self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                data=data,
                headers=headers,
            )
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.SERVICE_ID, self._timeout) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = f"HTTP {status}: {e.response.text[:200]}"
            if status == 404:
                raise NotFoundError(self.SERVICE_ID, resource or url) from e
            if status in (401, 403):
                raise AuthFailureError(detail, service_id=self.SERVICE_ID) from e
            if status == 429 or status >= 500:
                raise TransportError(detail, service_id=self.SERVICE_ID) from e
            raise ServiceError(detail, service_id=self.SERVICE_ID) from e

        except httpx.RequestError as e:
            raise TransportError(str(e), service_id=self.SERVICE_ID) from e

    async def _request_token(self) -> tuple[str, int]:
        """Raw client-credentials exchange. Call only through TokenManager."""
        data = await self._execute_request(
            "POST",
            f"{self.base_url}/oauth2/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
            resource="oauth2/token",
        )
        return data.get("access_token", ""), int(data.get("expires_in", 0))

    async def _authorized_get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        resource: str | None = None,
        label: str = "request",
    ) -> dict[str, Any]:
        token = await self.tokens.get_token()
        headers = {"Authorization": f"Bearer {token}"}

        async def do_request() -> dict[str, Any]:
            return await self._execute_request(
                "GET",
                f"{self.base_url}{path}",
                params=params,
                headers=headers,
                resource=resource,
            )

        try:
            return await self.governor.guarded_call(do_request, label=label)
        except AuthFailureError:
            await self.tokens.invalidate()
            raise

    async def search_animals(
        self,
        location: str,
        distance: int,
        sort: str = "distance",
        page: int = 1,
        limit: int = 100,
        after: str | None = None,
    ) -> SearchPage:
        """
        Fetch one page of animals around a location.

        Args:
            location: "lat,lon" or a place name
            distance: Radius in miles
            sort: "distance" or "recent"
            page: 1-based page number
            limit: Page size (upstream maximum is 100)
            after: ISO-8601 timestamp; only animals published after it
        """
        params: dict[str, Any] = {
            "location": location,
            "distance": distance,
            "sort": sort,
            "page": page,
            "limit": limit,
        }
        if after:
            params["after"] = after

        data = await self._authorized_get("/animals", params=params, label="search")
        return self._to_page(data, page)

    async def search_raw(self, params: dict[str, Any]) -> dict[str, Any]:
        """Pass-through search used by the browse proxy."""
        return await self._authorized_get("/animals", params=params, label="browse")

    async def get_animal(self, animal_id: int) -> dict[str, Any]:
        """Fetch one animal. Raises NotFoundError when upstream removed it."""
        data = await self._authorized_get(
            f"/animals/{animal_id}",
            resource=f"animal:{animal_id}",
            label=f"animal {animal_id}",
        )
        return data.get("animal") or {}

    async def get_organization(self, org_id: str) -> dict[str, Any]:
        data = await self._authorized_get(
            f"/organizations/{org_id}",
            resource=f"organization:{org_id}",
            label=f"organization {org_id}",
        )
        return data.get("organization") or {}

    @staticmethod
    def _to_page(data: dict[str, Any], requested_page: int) -> SearchPage:
        pagination = data.get("pagination") or {}
        return SearchPage(
            animals=data.get("animals") or [],
            current_page=int(pagination.get("current_page") or requested_page),
            total_pages=int(pagination.get("total_pages") or 0),
            raw=data,
        )

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("PetfinderClient closed")

    async def __aenter__(self) -> "PetfinderClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
