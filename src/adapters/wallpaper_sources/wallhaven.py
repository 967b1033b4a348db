"""Wallpaper source: Wallhaven.

- Public search API (`/api/v1/search`), 24 results per page.
- The API key is optional: it unlocks NSFW purity and relaxes rate limits.
- Random sorting returns a `seed` that must be echoed on later pages,
  otherwise every page is a fresh random draw.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from pathlib import PurePosixPath
from typing import Any, AsyncIterator
from urllib.parse import urlparse

import httpx

from adapters.http_client import get_json, stream_download
from core.config import AppSettings
from core.domain.errors import AuthError, NetworkError
from core.domain.models import SearchQuery, Source, WallpaperCandidate
from core.interfaces.source import ByteStream, WallpaperSource

logger = logging.getLogger(__name__)

WALLHAVEN_SORTINGS = frozenset({"date_added", "relevance", "random", "views", "favorites", "toplist", "hot"})
_SORTING_ALIASES = {"latest": "date_added", "relevant": "relevance"}


def normalize_sorting(value: str) -> str:
    sorting = value.strip().lower()
    sorting = _SORTING_ALIASES.get(sorting, sorting)
    if sorting not in WALLHAVEN_SORTINGS:
        logger.warning("unknown wallhaven sorting %r, using date_added", value)
        return "date_added"
    return sorting


class WallhavenSource(WallpaperSource):
    """Search and download wallpapers from wallhaven.cc."""

    source = Source.WALLHAVEN
    _base_url = "https://wallhaven.cc/api/v1"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        settings: AppSettings | None = None,
        api_key: str | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or AppSettings()
        self._api_key = api_key

    def _params(self, query: SearchQuery, page: int, seed: str | None) -> dict[str, str]:
        params: dict[str, str] = {
            "categories": query.categories,
            "purity": query.purity,
            "sorting": normalize_sorting(query.sorting),
            "page": str(page),
        }
        if query.query:
            params["q"] = query.query
        if query.resolution:
            params["resolutions"] = query.resolution
        if seed:
            params["seed"] = seed
        if self._api_key:
            params["apikey"] = self._api_key
        return params

    async def search(self, query: SearchQuery) -> AsyncIterator[WallpaperCandidate]:
        if query.wants_nsfw and not self._api_key:
            raise AuthError(
                "Wallhaven NSFW purity requires an API key "
                f"(set {Source.WALLHAVEN.env_var} or pass --api-key)."
            )

        page = query.page
        seed: str | None = None
        while True:
            payload = await get_json(
                self._client,
                f"{self._base_url}/search",
                settings=self._settings,
                params=self._params(query, page, seed),
            )
            data, meta = _split_payload(payload)
            logger.debug("wallhaven page %s: %s results", page, len(data))

            for item in data:
                candidate = _to_candidate(item)
                if candidate is not None:
                    yield candidate

            last_page = meta.get("last_page")
            seed = meta.get("seed") or seed
            if not data or not isinstance(last_page, int) or page >= last_page:
                return
            page += 1

    def fetch(self, candidate: WallpaperCandidate) -> AbstractAsyncContextManager[ByteStream]:
        return stream_download(self._client, candidate.url, settings=self._settings)


def _split_payload(payload: object) -> tuple[list[Any], dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise NetworkError("Malformed Wallhaven search response.", transient=False)
    meta = payload.get("meta")
    return payload["data"], meta if isinstance(meta, dict) else {}


def _to_candidate(item: object) -> WallpaperCandidate | None:
    if not isinstance(item, dict):
        return None
    wallpaper_id = item.get("id")
    path = item.get("path")
    if not isinstance(wallpaper_id, str) or not isinstance(path, str):
        return None

    thumbs = item.get("thumbs") if isinstance(item.get("thumbs"), dict) else {}
    suffix = PurePosixPath(urlparse(path).path).suffix or ".jpg"
    return WallpaperCandidate(
        id=wallpaper_id,
        url=path,
        thumbnail_url=thumbs.get("small") or thumbs.get("large"),
        resolution=str(item.get("resolution") or ""),
        source=Source.WALLHAVEN,
        file_extension=suffix,
    )
