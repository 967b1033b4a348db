from __future__ import annotations

import asyncio

import httpx
import pytest

from adapters.http_client import build_async_client
from adapters.wallpaper_sources import WallhavenSource, build_source
from core.domain.errors import AuthError, NetworkError, RateLimitError
from core.domain.models import SearchQuery, Source


def _collect(settings, handler, query: SearchQuery, *, api_key: str | None = None) -> list:
    async def scenario():
        async with build_async_client(settings, transport=httpx.MockTransport(handler)) as client:
            source = WallhavenSource(client, settings=settings, api_key=api_key)
            return [candidate async for candidate in source.search(query)]

    return asyncio.run(scenario())


def test_search_maps_items_and_params(settings, wallhaven_page, make_json_response):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return make_json_response(wallhaven_page(["abc123", "def456"]))

    query = SearchQuery(query="nature", resolution="2560x1440", sorting="toplist")
    candidates = _collect(settings, handler, query)

    assert [c.id for c in candidates] == ["abc123", "def456"]
    first = candidates[0]
    assert first.source is Source.WALLHAVEN
    assert first.url == "https://w.wallhaven.cc/full/ab/wallhaven-abc123.jpg"
    assert first.thumbnail_url == "https://th.wallhaven.cc/small/ab/abc123.jpg"
    assert first.filename == "wallow-wallhaven-abc123.jpg"

    params = seen[0].url.params
    assert seen[0].url.path == "/api/v1/search"
    assert params["q"] == "nature"
    assert params["resolutions"] == "2560x1440"
    assert params["sorting"] == "toplist"
    assert params["categories"] == "111"
    assert params["purity"] == "100"
    assert params["page"] == "1"
    assert "apikey" not in params


def test_search_pages_until_last_page_and_echoes_seed(settings, wallhaven_page, make_json_response):
    pages: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        pages.append(params)
        if params["page"] == "1":
            return make_json_response(wallhaven_page(["aaa111"], page=1, last_page=2, seed="XyZ123"))
        return make_json_response(wallhaven_page(["bbb222"], page=2, last_page=2, seed="XyZ123"))

    candidates = _collect(settings, handler, SearchQuery(sorting="random"))

    assert [c.id for c in candidates] == ["aaa111", "bbb222"]
    assert [p["page"] for p in pages] == ["1", "2"]
    assert "seed" not in pages[0]
    assert pages[1]["seed"] == "XyZ123"


def test_search_stops_on_empty_page(settings, make_json_response):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return make_json_response({"data": [], "meta": {"current_page": 1, "last_page": 9}})

    assert _collect(settings, handler, SearchQuery()) == []
    assert calls == 1


def test_nsfw_without_key_fails_before_any_request(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(AuthError):
        _collect(settings, handler, SearchQuery(purity="111"))


def test_api_key_is_sent_when_configured(settings, wallhaven_page, make_json_response):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return make_json_response(wallhaven_page(["abc123"]))

    _collect(settings, handler, SearchQuery(purity="111"), api_key="secret")
    assert seen[0].url.params["apikey"] == "secret"


def test_rate_limit_is_retried_once(settings, wallhaven_page, make_json_response):
    statuses = iter([429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status == 429:
            return httpx.Response(429, headers={"retry-after": "0"})
        return make_json_response(wallhaven_page(["abc123"]))

    candidates = _collect(settings, handler, SearchQuery())
    assert [c.id for c in candidates] == ["abc123"]


def test_repeated_rate_limit_raises(settings):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429, headers={"retry-after": "0"})

    with pytest.raises(RateLimitError):
        _collect(settings, handler, SearchQuery())
    assert calls == 2


def test_malformed_payload_is_permanent(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>maintenance</html>")

    with pytest.raises(NetworkError) as excinfo:
        _collect(settings, handler, SearchQuery())
    assert excinfo.value.transient is False


def test_explicit_key_wins_over_settings(settings):
    settings_with_key = settings.model_copy(update={"wallhaven_api_key": "from-config"})

    async def scenario():
        async with build_async_client(settings_with_key) as client:
            return build_source(Source.WALLHAVEN, client, settings=settings_with_key, api_key="from-flag")

    source = asyncio.run(scenario())
    assert source._api_key == "from-flag"


@pytest.mark.parametrize(
    ("sorting", "expected"),
    [("latest", "date_added"), ("relevant", "relevance"), ("TopList", "toplist"), ("newest-first", "date_added")],
)
def test_sorting_is_normalized_for_wallhaven(sorting, expected, settings, wallhaven_page, make_json_response):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return make_json_response(wallhaven_page(["abc123"]))

    _collect(settings, handler, SearchQuery(sorting=sorting))

    assert seen[0].url.params["sorting"] == expected
