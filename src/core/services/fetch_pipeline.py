"""Concurrent fetch orchestration.

`FetchOrchestrator` pulls candidates from a `WallpaperSource`, dispatches
them to a bounded pool of asyncio download tasks and commits each file with
an atomic rename. Per-candidate failures are recorded in the `FetchReport`;
they never abort the batch.

Invariants:
- a download is only dispatched while `committed + in_flight < count`, so
  the committed count never overshoots the target;
- a file becomes visible under its final name only after its full body was
  received (and matched the declared length);
- temporary files live in the destination directory and are removed on
  failure and on cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx

from adapters.http_client import build_async_client, request_error
from adapters.wallpaper_sources import build_source
from core.config import AppSettings
from core.domain.errors import FetchFailedError, NetworkError, WallowError
from core.domain.models import (
    DownloadState,
    DownloadTask,
    FetchReport,
    FetchStatus,
    SearchQuery,
    Source,
    WallpaperCandidate,
)
from core.interfaces.source import WallpaperSource

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass
class FetchHooks:
    """Optional callbacks for UI layers (progress lines, spinners)."""

    committed: Callable[[DownloadTask], None] | None = None
    skipped: Callable[[Path], None] | None = None
    failed: Callable[[DownloadTask], None] | None = None


def find_existing(dest_dir: Path, candidate: WallpaperCandidate) -> Path | None:
    """Return an already committed file for the candidate's (source, id)."""

    for path in dest_dir.glob(f"{candidate.stem}.*"):
        if path.is_file() and not path.name.endswith(PARTIAL_SUFFIX):
            return path
    return None


def build_query(
    settings: AppSettings,
    *,
    query: str | None = None,
    resolution: str | None = None,
    categories: str | None = None,
    purity: str | None = None,
    sorting: str | None = None,
) -> SearchQuery:
    """Merge per-invocation options over the configured search defaults."""

    return SearchQuery(
        query=query or settings.search_query,
        resolution=resolution or settings.search_resolution,
        categories=categories or settings.search_categories,
        purity=purity or settings.search_purity,
        sorting=sorting or settings.search_sorting,
    )


class FetchOrchestrator:
    def __init__(
        self,
        provider: WallpaperSource,
        dest_dir: Path,
        *,
        concurrency: int = 4,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        hooks: FetchHooks | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._provider = provider
        self._dest_dir = dest_dir
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._hooks = hooks or FetchHooks()

    async def fetch(self, query: SearchQuery, count: int) -> FetchReport:
        """Download until `count` files are committed or candidates run out."""

        if count < 1:
            raise ValueError("count must be >= 1")

        self._dest_dir.mkdir(parents=True, exist_ok=True)
        report = FetchReport(source=self._provider.source, requested=count)
        seen: set[tuple[str, str]] = set()
        in_flight: set[asyncio.Task[None]] = set()
        changed = asyncio.Condition()
        active = 0

        def has_room() -> bool:
            done = len(report.committed)
            return done >= count or (active < self._concurrency and done + active < count)

        async def run(task: DownloadTask) -> None:
            nonlocal active
            try:
                await self._download_with_retry(task)
                if task.state is DownloadState.COMMITTED:
                    report.committed.append(task.destination)
                    if self._hooks.committed:
                        self._hooks.committed(task)
                else:
                    report.failed.append(task)
                    if self._hooks.failed:
                        self._hooks.failed(task)
            finally:
                async with changed:
                    active -= 1
                    changed.notify_all()

        try:
            try:
                async with contextlib.aclosing(self._provider.search(query)) as candidates:
                    async for candidate in candidates:
                        async with changed:
                            await changed.wait_for(has_room)
                        if len(report.committed) >= count:
                            break

                        if candidate.dedup_key in seen:
                            continue
                        seen.add(candidate.dedup_key)

                        existing = find_existing(self._dest_dir, candidate)
                        if existing is not None:
                            logger.debug("skip %s: already at %s", candidate.dedup_key, existing)
                            report.skipped.append(existing)
                            if self._hooks.skipped:
                                self._hooks.skipped(existing)
                            continue

                        task = DownloadTask(
                            candidate=candidate,
                            destination=self._dest_dir / candidate.filename,
                        )
                        active += 1
                        worker = asyncio.create_task(run(task))
                        in_flight.add(worker)
                        worker.add_done_callback(in_flight.discard)
            except WallowError as exc:
                # Search died mid-sequence: keep what the workers deliver.
                if not in_flight and not report.committed and not report.skipped:
                    raise
                logger.warning("search stopped early: %s", exc)
                report.interrupted_by = exc

            if in_flight:
                await asyncio.gather(*list(in_flight))
        except BaseException:
            for worker in in_flight:
                worker.cancel()
            await asyncio.gather(*list(in_flight), return_exceptions=True)
            raise

        logger.info(
            "%s: committed=%s skipped=%s failed=%s",
            report.source.value,
            len(report.committed),
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def _download_with_retry(self, task: DownloadTask) -> None:
        for attempt in range(1, self._max_attempts + 1):
            task.attempts = attempt
            task.state = DownloadState.IN_FLIGHT
            try:
                await self._download_once(task)
            except NetworkError as exc:
                task.error = exc
                if not exc.transient or attempt >= self._max_attempts:
                    break
                delay = self._backoff_seconds * (2 ** (attempt - 1))
                logger.info(
                    "retrying %s in %.2fs (attempt %s/%s): %s",
                    task.candidate.id,
                    delay,
                    attempt + 1,
                    self._max_attempts,
                    exc,
                )
                await asyncio.sleep(delay)
            except (WallowError, OSError) as exc:
                task.error = exc
                break
            else:
                task.state = DownloadState.COMMITTED
                task.error = None
                return
        task.state = DownloadState.FAILED
        logger.warning("download failed for %s: %s", task.candidate.id, task.error)

    async def _download_once(self, task: DownloadTask) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{task.destination.name}.",
            suffix=PARTIAL_SUFFIX,
            dir=self._dest_dir,
        )
        tmp_path = Path(tmp_name)
        try:
            received = 0
            with os.fdopen(fd, "wb") as handle:
                try:
                    async with self._provider.fetch(task.candidate) as stream:
                        async for chunk in stream.chunks:
                            handle.write(chunk)
                            received += len(chunk)
                        declared = stream.content_length
                except httpx.HTTPError as exc:
                    raise request_error(exc, task.candidate.url) from exc
                handle.flush()
                os.fsync(handle.fileno())

            if declared is not None and received != declared:
                raise NetworkError(
                    f"Truncated body for {task.candidate.id}: {received}/{declared} bytes",
                    transient=True,
                )
            if received == 0:
                raise NetworkError(f"Empty body for {task.candidate.id}", transient=False)

            os.replace(tmp_path, task.destination)
        finally:
            tmp_path.unlink(missing_ok=True)


async def fetch_wallpapers(
    *,
    settings: AppSettings,
    source: Source,
    query: SearchQuery,
    count: int,
    api_key: str | None = None,
    dest_dir: Path | None = None,
    hooks: FetchHooks | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FetchReport:
    """Build the provider and run one fetch batch.

    Raises `AuthError` before any request when a mandatory key is missing,
    and `FetchFailedError` when nothing was committed or already present.
    """

    dest_dir = dest_dir or settings.wallpaper_path
    async with build_async_client(settings, transport=transport) as client:
        provider = build_source(source, client, settings=settings, api_key=api_key)
        orchestrator = FetchOrchestrator(
            provider,
            dest_dir,
            concurrency=settings.fetch_concurrency,
            max_attempts=settings.fetch_max_attempts,
            backoff_seconds=settings.fetch_backoff_seconds,
            hooks=hooks,
        )
        report = await orchestrator.fetch(query, count)

    if report.status is FetchStatus.FAILED:
        first = report.first_failure
        cause = first.error if first else report.interrupted_by
        if cause is None:
            raise FetchFailedError(f"No wallpapers found on {source.value} for this search.")
        raise FetchFailedError(f"No wallpaper could be downloaded: {cause}", cause=cause)
    return report
