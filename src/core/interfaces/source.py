"""Wallpaper source contract.

Each provider (Wallhaven, Unsplash, ...) implements `WallpaperSource`
structurally; the orchestrator only depends on this protocol.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, runtime_checkable

from core.domain.models import SearchQuery, Source, WallpaperCandidate


@dataclass(frozen=True)
class ByteStream:
    """Body of a download: chunks plus the length the server declared, if any."""

    chunks: AsyncIterator[bytes]
    content_length: int | None = None


@runtime_checkable
class WallpaperSource(Protocol):
    """Minimal contract for a wallpaper provider.

    Design rules:
    - `search` is an async generator: one page is requested per advance and
      the sequence ends when the provider reports no further pages. Calling
      `search` again restarts from `query.page`.
    - `fetch` opens the full-resolution body of one candidate as a stream.
    - Provider failures are raised as `core.domain.errors` types.
    """

    source: Source

    def search(self, query: SearchQuery) -> AsyncIterator[WallpaperCandidate]:
        ...

    def fetch(self, candidate: WallpaperCandidate) -> AbstractAsyncContextManager[ByteStream]:
        ...
