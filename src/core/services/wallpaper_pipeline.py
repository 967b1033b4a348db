"""Fetch -> convert -> apply orchestration.

The CLI's `run` command and the scheduled `schedule --run` both delegate
here, so a scheduled run behaves exactly like an interactive one. Printing
stays in the CLI; this module only reports through return values, hooks and
logging.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import httpx

from adapters.desktop_setter import set_wallpaper
from adapters.theme_converter import ThemeConverter
from core.config import AppSettings
from core.domain.models import FILENAME_PREFIX, ConvertedArtifact, FetchReport, SearchQuery, Source
from core.services.fetch_pipeline import PARTIAL_SUFFIX, FetchHooks, fetch_wallpapers

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp"})


@dataclass
class RunRequest:
    """Parameters of one fetch/convert/apply run."""

    source: Source
    query: SearchQuery
    theme: str | None = None
    apply: bool = True
    api_key: str | None = None


@dataclass
class RunResult:
    report: FetchReport
    original: Path
    artifacts: list[ConvertedArtifact] = field(default_factory=list)
    applied: Path | None = None


async def run_pipeline(
    request: RunRequest,
    *,
    settings: AppSettings,
    converter: ThemeConverter | None = None,
    apply_wallpaper: Callable[[Path], None] = set_wallpaper,
    hooks: FetchHooks | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunResult:
    """Fetch one wallpaper, convert it when a theme is set, then apply it.

    A `ConversionError` propagates unchanged: the original stays on disk and
    nothing is applied. The theme defaults to `settings.default_theme`.
    """

    report = await fetch_wallpapers(
        settings=settings,
        source=request.source,
        query=request.query,
        count=1,
        api_key=request.api_key,
        hooks=hooks,
        transport=transport,
    )
    original = (report.committed or report.skipped)[0]
    result = RunResult(report=report, original=original)

    theme = request.theme or settings.default_theme
    target = original
    if theme:
        converter = converter or ThemeConverter()
        result.artifacts = converter.convert(original, theme, settings.output_dirs)
        target = result.artifacts[0].paths[0]

    if request.apply:
        apply_wallpaper(target)
        result.applied = target
        logger.info("applied %s", target)
    return result


def _image_files(directory: Path) -> Iterable[Path]:
    if not directory.is_dir():
        return []
    return (
        path
        for path in directory.iterdir()
        if path.is_file()
        and not path.name.startswith(".")
        and path.suffix.lower() in IMAGE_EXTENSIONS
    )


def collect_images(settings: AppSettings) -> list[Path]:
    """Images in the wallpaper and converted directories, newest first."""

    seen: set[Path] = set()
    images: list[Path] = []
    for directory in [settings.wallpaper_path, *settings.output_dirs]:
        for path in _image_files(directory):
            if path not in seen:
                seen.add(path)
                images.append(path)
    images.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return images


def clean(settings: AppSettings) -> list[Path]:
    """Delete wallow's own files (and leftover partial downloads); returns what was removed."""

    removed: list[Path] = []
    for directory in [settings.wallpaper_path, *settings.output_dirs]:
        if not directory.is_dir():
            continue
        for path in directory.iterdir():
            if not path.is_file():
                continue
            owned = path.name.startswith(FILENAME_PREFIX)
            leftover = path.name.startswith(f".{FILENAME_PREFIX}") and path.name.endswith(PARTIAL_SUFFIX)
            if owned or leftover:
                path.unlink(missing_ok=True)
                removed.append(path)
    logger.info("removed %s files", len(removed))
    return removed
