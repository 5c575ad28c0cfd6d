import asyncio

import httpx
import pytest

from conftest import FakePetfinder, animal_doc, make_stack
from pawreels.services.errors import (
    AuthFailureError,
    NotFoundError,
    TransportError,
)
from pawreels.services.tokens import TOKEN_KEY


def test_search_fetches_token_once_and_counts_every_call():
    upstream = FakePetfinder(pages=[[animal_doc(1), animal_doc(2)]])

    async def scenario():
        stack = make_stack(upstream)
        page = await stack.client.search_animals("39.7,-104.9", distance=150, sort="recent")
        again = await stack.client.search_animals("39.7,-104.9", distance=150, page=1)

        assert [a["id"] for a in page.animals] == [1, 2]
        assert page.total_pages == 1
        assert page.has_more is False
        assert again.current_page == 1
        assert upstream.token_requests == 1
        # token exchange + two searches
        assert await stack.governor.get_count() == 3
        assert upstream.search_params[0]["sort"] == "recent"
        assert "after" not in upstream.search_params[0]

    asyncio.run(scenario())


def test_detail_404_maps_to_not_found():
    upstream = FakePetfinder(details={7: animal_doc(7)})

    async def scenario():
        stack = make_stack(upstream)
        assert (await stack.client.get_animal(7))["id"] == 7
        with pytest.raises(NotFoundError):
            await stack.client.get_animal(8)

    asyncio.run(scenario())


def test_server_errors_are_retried_then_surface_as_transport_errors():
    upstream = FakePetfinder(detail_errors={9: 503})

    async def scenario():
        stack = make_stack(upstream)
        with pytest.raises(TransportError):
            await stack.client.get_animal(9)
        # make_stack retries twice
        assert upstream.calls.count("GET /v2/animals/9") == 2

    asyncio.run(scenario())


def test_rejected_token_is_dropped_from_cache():
    upstream = FakePetfinder()

    async def scenario():
        stack = make_stack(upstream)
        await stack.cache.set(TOKEN_KEY, "stale-token", ttl=600)
        with pytest.raises(AuthFailureError):
            await stack.client.get_animal(1)
        assert await stack.cache.get(TOKEN_KEY) is None

        # next call exchanges credentials again
        upstream.details[1] = animal_doc(1)
        assert (await stack.client.get_animal(1))["id"] == 1
        assert upstream.token_requests == 1

    asyncio.run(scenario())


def test_timeout_maps_to_request_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
        raise httpx.ReadTimeout("timed out", request=request)

    async def scenario():
        stack = make_stack(FakePetfinder())
        stack.client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as exc:
            await stack.client.get_organization("CO01")
        assert "timed out" in str(exc.value)

    asyncio.run(scenario())
