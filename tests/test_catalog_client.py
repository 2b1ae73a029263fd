"""Tests for the TMDB catalog client and its fallback dataset."""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from seriesclub.config import Settings
from seriesclub.services.catalog import CatalogClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_client(
    handler: Callable[[httpx.Request], httpx.Response], **overrides: Any
) -> CatalogClient:
    base = {"TMDB_API_KEY": "tmdb-key"}
    base.update(overrides)
    settings = Settings(_env_file=None, **base)  # type: ignore[arg-type]
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=str(settings.tmdb_api_url),
    )
    return CatalogClient(settings, http_client)


@pytest.mark.anyio("asyncio")
async def test_get_show_parses_tmdb_payload() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "id": 42,
                "name": "The Answer",
                "poster_path": "/answer.jpg",
                "first_air_date": "2020-02-02",
                "genres": [{"id": 18, "name": "Drama"}],
                "vote_average": 7.9,
            },
        )

    client = build_client(handler)
    show = await client.get_show(42)

    assert show is not None
    assert show.title == "The Answer"
    assert show.genres[0].name == "Drama"
    assert show.poster_url() == "https://image.tmdb.org/t/p/w500/answer.jpg"
    assert requests[0].url.path.endswith("/tv/42")
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["language"] == "en-US"


@pytest.mark.anyio("asyncio")
async def test_get_show_returns_none_when_catalog_has_no_match() -> None:
    client = build_client(lambda request: httpx.Response(404, json={"success": False}))

    assert await client.get_show(1396) is None


@pytest.mark.anyio("asyncio")
async def test_get_show_falls_back_on_server_error() -> None:
    client = build_client(lambda request: httpx.Response(503, text="unavailable"))

    show = await client.get_show(1396)

    assert show is not None
    assert show.title == "Breaking Bad"


@pytest.mark.anyio("asyncio")
async def test_get_show_falls_back_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = build_client(handler)

    show = await client.get_show(66732)
    assert show is not None
    assert show.title == "Stranger Things"
    assert await client.get_show(999_999) is None


@pytest.mark.anyio("asyncio")
async def test_missing_api_key_serves_fallback_without_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("No request expected without an API key")

    client = build_client(handler, TMDB_API_KEY="")

    assert client.uses_fallback_only
    results = await client.search_shows("thrones")
    assert [show.id for show in results] == [1399]


@pytest.mark.anyio("asyncio")
async def test_search_shows_skips_malformed_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["query"] == "friends"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"id": 1668, "name": "Friends"},
                    {"name": "Missing id"},
                    "garbage",
                ]
            },
        )

    client = build_client(handler)
    results = await client.search_shows("  friends ")

    assert [show.title for show in results] == ["Friends"]


@pytest.mark.anyio("asyncio")
async def test_blank_search_returns_nothing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("Blank queries must not hit the catalog")

    client = build_client(handler)

    assert await client.search_shows("   ") == []
