"""Wallpaper sources (concrete providers).

The set of providers is closed: `build_source` matches over `Source`, and a
new provider is added by extending the enum and this function.
"""

from __future__ import annotations

import httpx

from adapters.wallpaper_sources.unsplash import UnsplashSource
from adapters.wallpaper_sources.wallhaven import WallhavenSource
from core.config import AppSettings
from core.domain.models import Source
from core.interfaces.source import WallpaperSource


def build_source(
    source: Source,
    client: httpx.AsyncClient,
    *,
    settings: AppSettings,
    api_key: str | None = None,
) -> WallpaperSource:
    """Instantiate the provider for `source`.

    `api_key` is an explicit per-invocation credential; it wins over the
    environment and the stored configuration.
    """

    key = settings.api_key_for(source, api_key)
    if source is Source.UNSPLASH:
        return UnsplashSource(client, settings=settings, access_key=key)
    if source is Source.WALLHAVEN:
        return WallhavenSource(client, settings=settings, api_key=key)
    raise ValueError(f"Unsupported source: {source}")


__all__ = [
    "UnsplashSource",
    "WallhavenSource",
    "build_source",
]
