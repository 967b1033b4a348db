"""Wallpaper source: Unsplash.

- Authenticated with `Authorization: Client-ID <access key>`; the key is
  mandatory, so a missing key fails at construction.
- API guidelines require hitting `links.download_location` before every
  download; the response carries the signed URL to fetch.
- Unsplash has no purity filter: the safety option is ignored and the
  search keeps `content_filter=low`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from adapters.http_client import get_json, stream_download
from core.config import AppSettings
from core.domain.errors import AuthError, NetworkError
from core.domain.models import SearchQuery, Source, WallpaperCandidate, parse_resolution
from core.interfaces.source import ByteStream, WallpaperSource

logger = logging.getLogger(__name__)

_PER_PAGE = 30
_IMAGE_PARAMS = ("fm", "w", "h", "fit", "cs", "q")


def _order_by(sorting: str) -> str:
    # Unsplash only knows relevant/latest.
    return "latest" if sorting in ("latest", "date_added") else "relevant"


class UnsplashSource(WallpaperSource):
    """Search and download photos from api.unsplash.com."""

    source = Source.UNSPLASH
    _base_url = "https://api.unsplash.com"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        settings: AppSettings | None = None,
        access_key: str | None = None,
    ) -> None:
        if not access_key:
            raise AuthError(
                "Unsplash requires an access key "
                f"(set {Source.UNSPLASH.env_var}, WALLOW_UNSPLASH_ACCESS_KEY or pass --api-key)."
            )
        self._client = client
        self._settings = settings or AppSettings()
        self._access_key = access_key

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Client-ID {self._access_key}", "Accept-Version": "v1"}

    async def search(self, query: SearchQuery) -> AsyncIterator[WallpaperCandidate]:
        if query.purity != "100":
            logger.debug("unsplash ignores the purity filter (%s)", query.purity)

        width, height = parse_resolution(query.resolution)
        page = query.page
        while True:
            payload = await get_json(
                self._client,
                f"{self._base_url}/search/photos",
                settings=self._settings,
                headers=self._auth_headers,
                params={
                    # Search requires a query; fall back to a generic keyword.
                    "query": query.query or "wallpaper",
                    "page": str(page),
                    "per_page": str(_PER_PAGE),
                    "order_by": _order_by(query.sorting),
                    "orientation": "landscape",
                    "content_filter": "low",
                },
            )
            results, total_pages = _split_payload(payload)
            logger.debug("unsplash page %s/%s: %s results", page, total_pages, len(results))

            for item in results:
                candidate = _to_candidate(item, width=width, height=height)
                if candidate is not None:
                    yield candidate

            if not results or page >= total_pages:
                return
            page += 1

    @asynccontextmanager
    async def fetch(self, candidate: WallpaperCandidate) -> AsyncIterator[ByteStream]:
        url = candidate.url
        if candidate.download_location:
            tracked = await get_json(
                self._client,
                candidate.download_location,
                settings=self._settings,
                headers=self._auth_headers,
            )
            if not isinstance(tracked, dict) or not isinstance(tracked.get("url"), str):
                raise NetworkError("Malformed Unsplash download_location response.", transient=False)
            # Keep the requested format and crop on the signed URL.
            requested = httpx.URL(candidate.url).params
            image_params = {key: requested[key] for key in _IMAGE_PARAMS if key in requested}
            try:
                url = str(httpx.URL(tracked["url"]).copy_merge_params(image_params))
            except httpx.InvalidURL as exc:
                raise NetworkError(f"Invalid Unsplash download URL ({exc})", transient=False) from exc

        async with stream_download(self._client, url, settings=self._settings) as stream:
            yield stream


def _split_payload(payload: object) -> tuple[list[Any], int]:
    if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
        raise NetworkError("Malformed Unsplash search response.", transient=False)
    total_pages = payload.get("total_pages")
    return payload["results"], total_pages if isinstance(total_pages, int) else 0


def _to_candidate(item: object, *, width: int, height: int) -> WallpaperCandidate | None:
    if not isinstance(item, dict):
        return None
    photo_id = item.get("id")
    urls = item.get("urls") if isinstance(item.get("urls"), dict) else {}
    links = item.get("links") if isinstance(item.get("links"), dict) else {}
    raw = urls.get("raw")
    if not isinstance(photo_id, str) or not isinstance(raw, str):
        return None

    separator = "&" if "?" in raw else "?"
    if width > 0 and height > 0:
        url = f"{raw}{separator}fm=jpg&w={width}&h={height}&fit=crop&cs=srgb"
    else:
        url = f"{raw}{separator}fm=jpg&q=85"

    return WallpaperCandidate(
        id=photo_id,
        url=url,
        thumbnail_url=urls.get("thumb") or urls.get("small"),
        resolution=f"{item.get('width', 0)}x{item.get('height', 0)}",
        source=Source.UNSPLASH,
        file_extension=".jpg",
        download_location=links.get("download_location"),
    )
