"""
Geocoding - place name to coordinates, cache-first.

OpenCageClient is the thin network wrapper; GeocodeResolver puts the shared
cache in front of it and routes misses through a CallGovernor.
"""

import re
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from pawreels.services.cache import SharedCache
from pawreels.services.errors import (
    GeocodeNotFoundError,
    RequestTimeoutError,
    ServiceError,
    TransportError,
)
from pawreels.services.governor import CallGovernor

GEOCODE_TTL_SECONDS = 60 * 60 * 24 * 30

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class Coordinates:
    """A point on the globe, in degrees."""

    lat: float
    lon: float

    def as_location(self) -> str:
        """Upstream 'lat,lon' location parameter."""
        return f"{self.lat},{self.lon}"


def normalize_place(place: str) -> str:
    """'Salt Lake City, UT' -> 'saltlakecityut'."""
    return _NON_ALNUM.sub("", place.lower())


class OpenCageClient:
    """Forward geocoding through the OpenCage REST API."""

    SERVICE_ID = "opencage"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.opencagedata.com/geocode/v1",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._http_client

    async def geocode(self, place: str) -> Coordinates | None:
        """First-best match for a place name, None when nothing matched."""
        client = await self._get_http_client()
        try:
            response = await client.get(
                f"{self.base_url}/json",
                params={"q": place, "key": self._api_key, "limit": 1, "no_annotations": 1},
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.SERVICE_ID, self._timeout) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = f"HTTP {status}: {e.response.text[:200]}"
            if status == 429 or status >= 500:
                raise TransportError(detail, service_id=self.SERVICE_ID) from e
            raise ServiceError(detail, service_id=self.SERVICE_ID) from e
        except httpx.RequestError as e:
            raise TransportError(str(e), service_id=self.SERVICE_ID) from e

        results = data.get("results") or []
        if not results:
            return None
        geometry = results[0].get("geometry") or {}
        if "lat" not in geometry or "lng" not in geometry:
            return None
        return Coordinates(lat=float(geometry["lat"]), lon=float(geometry["lng"]))

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class GeocodeResolver:
    """
    Cache-first resolver.

    Usage:
        resolver = GeocodeResolver(cache, governor, OpenCageClient(api_key))
        coords = await resolver.resolve("Denver, CO")
    """

    def __init__(
        self,
        cache: SharedCache,
        governor: CallGovernor,
        client: OpenCageClient,
        ttl: int = GEOCODE_TTL_SECONDS,
    ):
        self.cache = cache
        self.governor = governor
        self.client = client
        self.ttl = ttl

    @staticmethod
    def cache_key(place: str) -> str:
        return f"geocode:{normalize_place(place)}"

    async def resolve(self, place: str) -> Coordinates:
        """
        Resolve a place name.

        Raises:
            GeocodeNotFoundError: Empty place name or no geocoder result
            BudgetExceededError: Geocoder quota spent for today
            TransportError: Geocoder unreachable after retries
        """
        if not normalize_place(place):
            raise GeocodeNotFoundError(place)

        key = self.cache_key(place)
        cached = await self.cache.get_json(key)
        if cached:
            return Coordinates(lat=float(cached["lat"]), lon=float(cached["lon"]))

        logger.info(f"Geocoding '{place}' (cache miss)")
        coords = await self.governor.guarded_call(
            lambda: self.client.geocode(place), label=f"geocode {place}"
        )
        if coords is None:
            logger.warning(f"No geocoding result for '{place}'")
            raise GeocodeNotFoundError(place)

        await self.cache.set_json(key, {"lat": coords.lat, "lon": coords.lon}, ttl=self.ttl)
        return coords
