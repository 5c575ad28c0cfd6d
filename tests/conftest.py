from __future__ import annotations

import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from pawreels.datastore.engine import build_engine, build_session_factory, create_schema
from pawreels.services.cache import MemoryCache
from pawreels.services.client import PetfinderClient
from pawreels.services.geocode import GeocodeResolver, OpenCageClient
from pawreels.services.governor import CallGovernor, RetryPolicy
from pawreels.settings import Settings

PETFINDER_URL = "https://petfinder.test/v2"
OPENCAGE_URL = "https://opencage.test/geocode/v1"


class FakeClock:
    """Mutable epoch-seconds clock for MemoryCache."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "hubs": ["Denver, CO"],
        "pacing_seconds": 0,
        "retry_base_delay": 0,
        "blocked_video_hosts": ["youtube", "vimeo", "facebook"],
    }
    values.update(overrides)
    return Settings(**values)


def video(src: str = "https://cdn.example.org/clip.mp4") -> list[dict[str, str]]:
    return [{"embed": f'<iframe src="{src}" width="600"></iframe>'}]


def animal_doc(
    animal_id: int,
    name: str = "Rex",
    animal_type: str = "Dog",
    breeds: dict[str, Any] | None = None,
    videos: list[Any] | None = None,
    city: str | None = "Denver",
    state: str | None = "CO",
    organization_id: str | None = "CO01",
) -> dict[str, Any]:
    return {
        "id": animal_id,
        "name": name,
        "type": animal_type,
        "url": f"https://petfinder.test/animal/{animal_id}",
        "age": "Young",
        "gender": "Male",
        "size": "Medium",
        "status": "adoptable",
        "breeds": breeds if breeds is not None else {"primary": "Labrador", "mixed": False},
        "colors": {},
        "photos": [],
        "videos": video() if videos is None else videos,
        "contact": {"address": {"city": city, "state": state}},
        "organization_id": organization_id,
    }


@dataclass
class FakePetfinder:
    """In-memory stand-in for the listings API, served through httpx.MockTransport."""

    pages: list[list[dict[str, Any]]] = field(default_factory=list)
    details: dict[int, dict[str, Any]] = field(default_factory=dict)
    detail_errors: dict[int, int] = field(default_factory=dict)
    organizations: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    search_params: list[dict[str, str]] = field(default_factory=list)
    token_requests: int = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(f"{request.method} {path}")

        if path.endswith("/oauth2/token"):
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

        if request.headers.get("Authorization") != "Bearer tok-1":
            return httpx.Response(401, json={"detail": "unauthorized"})

        if path.endswith("/animals"):
            params = dict(request.url.params)
            self.search_params.append(params)
            page = int(params.get("page", 1))
            animals = self.pages[page - 1] if 0 < page <= len(self.pages) else []
            return httpx.Response(
                200,
                json={
                    "animals": animals,
                    "pagination": {"current_page": page, "total_pages": len(self.pages)},
                },
            )

        match = re.search(r"/animals/(\d+)$", path)
        if match:
            animal_id = int(match.group(1))
            if animal_id in self.detail_errors:
                return httpx.Response(self.detail_errors[animal_id], json={})
            if animal_id not in self.details:
                return httpx.Response(404, json={"title": "Not Found"})
            return httpx.Response(200, json={"animal": self.details[animal_id]})

        match = re.search(r"/organizations/([^/]+)$", path)
        if match:
            org_id = match.group(1)
            if org_id not in self.organizations:
                return httpx.Response(404, json={})
            return httpx.Response(200, json={"organization": self.organizations[org_id]})

        return httpx.Response(404, json={})


def opencage_handler(places: dict[str, tuple[float, float]]):
    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q", "")
        if query in places:
            lat, lon = places[query]
            return httpx.Response(200, json={"results": [{"geometry": {"lat": lat, "lng": lon}}]})
        return httpx.Response(200, json={"results": []})

    return handler


@dataclass
class Stack:
    cache: MemoryCache
    governor: CallGovernor
    client: PetfinderClient
    geocoder: GeocodeResolver
    upstream: FakePetfinder


def make_stack(
    upstream: FakePetfinder,
    places: dict[str, tuple[float, float]] | None = None,
    cache: MemoryCache | None = None,
    daily_limit: int = 989,
    geocode_limit: int = 2500,
) -> Stack:
    cache = cache or MemoryCache()
    retry = RetryPolicy(attempts=2, base_delay=0)
    governor = CallGovernor(
        cache, "petfinder", daily_limit, retry_policy=retry, sleep=no_sleep
    )
    client = PetfinderClient(
        cache,
        governor,
        "id",
        "secret",
        base_url=PETFINDER_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
        token_retry_delay=0,
    )
    geocode_governor = CallGovernor(
        cache, "opencage", geocode_limit, retry_policy=retry, scope="geocode", sleep=no_sleep
    )
    opencage = OpenCageClient(
        "key",
        base_url=OPENCAGE_URL,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(
                opencage_handler(
                    places if places is not None else {"Denver, CO": (39.7392, -104.9903)}
                )
            )
        ),
    )
    geocoder = GeocodeResolver(cache, geocode_governor, opencage)
    return Stack(cache, governor, client, geocoder, upstream)


@asynccontextmanager
async def memory_store():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def store():
    return memory_store
