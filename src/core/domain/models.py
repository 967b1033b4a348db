"""Domain models (Pydantic v2).

These models describe *what* a wallpaper, a search or a schedule is, not
*how* it is obtained. Provider payloads are normalized into them by the
adapters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

FILENAME_PREFIX = "wallow-"


class Source(str, Enum):
    """Closed set of supported wallpaper providers."""

    WALLHAVEN = "wallhaven"
    UNSPLASH = "unsplash"

    @property
    def requires_key(self) -> bool:
        """Unsplash refuses anonymous calls; Wallhaven only uses the key for NSFW and rate relief."""

        return self is Source.UNSPLASH

    @property
    def env_var(self) -> str:
        return "UNSPLASH_ACCESS_KEY" if self is Source.UNSPLASH else "WALLHAVEN_API_KEY"


class SearchQuery(BaseModel):
    """Immutable search request, built once per search call."""

    model_config = ConfigDict(frozen=True)

    query: str | None = Field(
        default=None,
        description="Free-text keywords (e.g. 'nature').",
    )
    resolution: str | None = Field(
        default=None,
        description="Resolution filter in WIDTHxHEIGHT form.",
    )
    categories: str = Field(
        default="111",
        pattern=r"^[01]{3}$",
        description="Wallhaven category bits: general/anime/people.",
    )
    purity: str = Field(
        default="100",
        pattern=r"^[01]{3}$",
        description="Safety filter bits: sfw/sketchy/nsfw. Ignored by providers without one.",
    )
    sorting: str = Field(
        default="date_added",
        min_length=1,
        description="Sort order (date_added/relevance/random/views/favorites/toplist/latest).",
    )
    page: int = Field(
        default=1,
        ge=1,
        description="First page to request.",
    )

    @property
    def wants_nsfw(self) -> bool:
        return self.purity[2] == "1"


def parse_resolution(value: str | None) -> tuple[int, int]:
    """Parse 'WxH' into integers; (0, 0) when absent or malformed."""

    if not value:
        return 0, 0
    match = re.fullmatch(r"\s*(\d+)\s*[xX]\s*(\d+)\s*", value)
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


class WallpaperCandidate(BaseModel):
    """One searchable media item before download."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Provider-assigned id.")
    url: str = Field(..., min_length=1, description="Full-resolution download URL.")
    thumbnail_url: str | None = Field(default=None, description="Small preview URL.")
    resolution: str = Field(default="", description="WIDTHxHEIGHT as reported by the provider.")
    source: Source
    file_extension: str = Field(default=".jpg", pattern=r"^\.[A-Za-z0-9]+$")
    download_location: str | None = Field(
        default=None,
        description="Provider tracking endpoint that must be hit before downloading (Unsplash).",
    )

    @property
    def dedup_key(self) -> tuple[str, str]:
        return self.source.value, self.id

    @property
    def stem(self) -> str:
        safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", self.id)
        return f"{FILENAME_PREFIX}{self.source.value}-{safe_id}"

    @property
    def filename(self) -> str:
        return f"{self.stem}{self.file_extension.lower()}"


class DownloadState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class DownloadTask:
    """Lifecycle of a single candidate download."""

    candidate: WallpaperCandidate
    destination: Path
    state: DownloadState = DownloadState.PENDING
    attempts: int = 0
    error: Exception | None = None


class FetchStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class FetchReport:
    """Outcome of a fetch batch."""

    source: Source
    requested: int
    committed: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failed: list[DownloadTask] = field(default_factory=list)
    interrupted_by: Exception | None = None

    @property
    def first_failure(self) -> DownloadTask | None:
        return self.failed[0] if self.failed else None

    @property
    def status(self) -> FetchStatus:
        if not self.committed and not self.skipped:
            return FetchStatus.FAILED
        if len(self.committed) >= self.requested:
            return FetchStatus.SUCCESS
        return FetchStatus.PARTIAL


class ConvertedArtifact(BaseModel):
    """Files produced by one theme conversion into one output directory."""

    theme: str = Field(..., min_length=1)
    output_dir: Path
    paths: list[Path] = Field(default_factory=list)


class TerminalCapability(str, Enum):
    """Image protocol used for fzf previews, highest fidelity first."""

    KITTY_GRAPHICS = "kitty_graphics"
    ITERM2_INLINE = "iterm2_inline"
    WEZTERM_VIA_CHAFA = "wezterm_via_chafa"
    GENERIC_CHAFA = "generic_chafa"
    NONE = "none"


SCHEDULE_SENTINEL = "# wallow:schedule"


class ScheduleEntry(BaseModel):
    """The single crontab line wallow manages."""

    model_config = ConfigDict(frozen=True)

    cron_expression: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    sentinel: str = SCHEDULE_SENTINEL

    def render(self) -> str:
        return f"{self.cron_expression} {self.command} {self.sentinel}"

    @classmethod
    def parse(cls, line: str, *, sentinel: str = SCHEDULE_SENTINEL) -> "ScheduleEntry | None":
        """Rebuild an entry from a crontab line bearing the sentinel."""

        if sentinel not in line:
            return None
        body = line.replace(sentinel, "").strip()
        parts = body.split()
        if not parts:
            return None
        width = 1 if parts[0].startswith("@") else 5
        if len(parts) <= width:
            return None
        return cls(
            cron_expression=" ".join(parts[:width]),
            command=" ".join(parts[width:]),
            sentinel=sentinel,
        )
