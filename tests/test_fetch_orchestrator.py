from __future__ import annotations

import asyncio
import os
from collections import Counter
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import pytest

from core.domain.errors import FetchFailedError, NetworkError, RateLimitError
from core.domain.models import DownloadState, FetchStatus, SearchQuery, Source, WallpaperCandidate
from core.interfaces.source import ByteStream, WallpaperSource
from core.services.fetch_pipeline import FetchOrchestrator, fetch_wallpapers


def _candidate(wid: str) -> WallpaperCandidate:
    return WallpaperCandidate(id=wid, url=f"https://example.test/{wid}.jpg", source=Source.WALLHAVEN)


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class FakeProvider:
    """Scripted provider: each id maps to a list of per-attempt outcomes.

    An outcome is bytes (body), a `(bytes, declared_length)` tuple or an
    exception raised when the download is opened.
    """

    source = Source.WALLHAVEN

    def __init__(self, ids: list[str], outcomes: dict[str, list] | None = None, delay: float = 0.0) -> None:
        self.ids = ids
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls: Counter[str] = Counter()
        self.active = 0
        self.max_active = 0

    async def search(self, query: SearchQuery):
        for wid in self.ids:
            yield _candidate(wid)

    @asynccontextmanager
    async def fetch(self, candidate: WallpaperCandidate):
        self.calls[candidate.id] += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.outcomes.get(candidate.id, [])
            attempt = self.calls[candidate.id] - 1
            outcome = script[attempt] if attempt < len(script) else f"image-{candidate.id}".encode()
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, tuple):
                body, declared = outcome
            else:
                body, declared = outcome, len(outcome)
            yield ByteStream(chunks=_chunks(body[:3], body[3:]), content_length=declared)
        finally:
            self.active -= 1


def _fetch(provider, dest: Path, count: int, **kwargs):
    kwargs.setdefault("backoff_seconds", 0)
    orchestrator = FetchOrchestrator(provider, dest, **kwargs)
    return asyncio.run(orchestrator.fetch(SearchQuery(), count))


def test_fake_provider_satisfies_protocol():
    assert isinstance(FakeProvider([]), WallpaperSource)


def test_commits_exactly_count_distinct_files(tmp_path):
    provider = FakeProvider([f"id{i}" for i in range(10)])

    report = _fetch(provider, tmp_path, 3, concurrency=4)

    assert report.status is FetchStatus.SUCCESS
    assert len(report.committed) == 3
    assert len({p.name for p in report.committed}) == 3
    assert sum(provider.calls.values()) == 3
    assert sorted(os.listdir(tmp_path)) == sorted(p.name for p in report.committed)
    for path in report.committed:
        assert path.read_bytes() == f"image-{path.stem.rsplit('-', 1)[1]}".encode()


def test_existing_files_are_skipped_not_failed(tmp_path):
    (tmp_path / "wallow-wallhaven-a.jpg").write_bytes(b"old")
    provider = FakeProvider(["a", "b", "c", "d"])

    report = _fetch(provider, tmp_path, 3)

    assert report.failed == []
    assert [p.name for p in report.skipped] == ["wallow-wallhaven-a.jpg"]
    assert len(report.committed) == 3
    assert "a" not in provider.calls
    assert (tmp_path / "wallow-wallhaven-a.jpg").read_bytes() == b"old"


def test_duplicate_candidates_are_downloaded_once(tmp_path):
    provider = FakeProvider(["a", "a", "b"])

    report = _fetch(provider, tmp_path, 5)

    assert provider.calls == Counter({"a": 1, "b": 1})
    assert len(report.committed) == 2
    assert report.status is FetchStatus.PARTIAL


def test_permanent_failure_is_recorded_without_retry(tmp_path):
    not_found = NetworkError("HTTP 404", transient=False, status_code=404)
    provider = FakeProvider(["a", "b", "c"], {"b": [not_found]})

    report = _fetch(provider, tmp_path, 3)

    assert len(report.committed) == 2
    assert report.status is FetchStatus.PARTIAL
    (failed,) = report.failed
    assert failed.candidate.id == "b"
    assert failed.state is DownloadState.FAILED
    assert failed.attempts == 1
    assert provider.calls["b"] == 1
    assert os.listdir(tmp_path) and not any(name.endswith(".part") for name in os.listdir(tmp_path))


def test_transient_failure_is_retried(tmp_path):
    reset = NetworkError("connection reset", transient=True)
    provider = FakeProvider(["a"], {"a": [reset, reset]})

    report = _fetch(provider, tmp_path, 1, max_attempts=3)

    assert report.status is FetchStatus.SUCCESS
    assert provider.calls["a"] == 3


def test_transient_failure_gives_up_after_max_attempts(tmp_path):
    reset = NetworkError("connection reset", transient=True)
    provider = FakeProvider(["a"], {"a": [reset, reset, reset]})

    report = _fetch(provider, tmp_path, 1, max_attempts=2)

    assert report.status is FetchStatus.FAILED
    assert report.failed[0].attempts == 2
    assert provider.calls["a"] == 2


def test_truncated_body_never_becomes_visible(tmp_path):
    provider = FakeProvider(["a"], {"a": [(b"short", 100), (b"short", 100)]})

    report = _fetch(provider, tmp_path, 1, max_attempts=2)

    assert report.committed == []
    assert report.failed[0].attempts == 2
    assert os.listdir(tmp_path) == []


def test_concurrency_is_bounded(tmp_path):
    provider = FakeProvider([f"id{i}" for i in range(8)], delay=0.01)

    report = _fetch(provider, tmp_path, 8, concurrency=2)

    assert len(report.committed) == 8
    assert provider.max_active <= 2


def test_failures_are_replaced_by_later_candidates(tmp_path):
    gone = NetworkError("HTTP 404", transient=False, status_code=404)
    provider = FakeProvider(["a", "b", "c", "d"], {"a": [gone]})

    report = _fetch(provider, tmp_path, 3, concurrency=1)

    assert report.status is FetchStatus.SUCCESS
    assert sorted(p.name for p in report.committed) == [
        "wallow-wallhaven-b.jpg",
        "wallow-wallhaven-c.jpg",
        "wallow-wallhaven-d.jpg",
    ]


def test_cancellation_removes_temporary_files(tmp_path):
    class HangingProvider(FakeProvider):
        @asynccontextmanager
        async def fetch(self, candidate):
            async def body():
                yield b"partial"
                self.started.set()
                await asyncio.Event().wait()

            yield ByteStream(chunks=body(), content_length=None)

    async def scenario():
        provider = HangingProvider(["a", "b"])
        provider.started = asyncio.Event()
        orchestrator = FetchOrchestrator(provider, tmp_path, concurrency=2)
        task = asyncio.create_task(orchestrator.fetch(SearchQuery(), 2))
        await provider.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert os.listdir(tmp_path) == []


def test_http_batch_with_one_not_found(settings, wallhaven_page, make_json_response):
    requests: Counter[str] = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            return make_json_response(wallhaven_page(["aaa111", "bbb222", "ccc333"]))
        requests[request.url.path] += 1
        if "bbb222" in request.url.path:
            return httpx.Response(404)
        return httpx.Response(200, content=b"\xff\xd8" + request.url.path.encode())

    report = asyncio.run(
        fetch_wallpapers(
            settings=settings,
            source=Source.WALLHAVEN,
            query=SearchQuery(query="nature"),
            count=3,
            transport=httpx.MockTransport(handler),
        )
    )

    assert report.status is FetchStatus.PARTIAL
    assert sorted(p.name for p in report.committed) == [
        "wallow-wallhaven-aaa111.jpg",
        "wallow-wallhaven-ccc333.jpg",
    ]
    assert report.failed[0].error.status_code == 404
    assert requests["/full/bb/wallhaven-bbb222.jpg"] == 1


def test_http_batch_all_succeed(settings, wallhaven_page, make_json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            return make_json_response(wallhaven_page(["aaa111", "bbb222", "ccc333"]))
        return httpx.Response(200, content=b"img")

    report = asyncio.run(
        fetch_wallpapers(
            settings=settings,
            source=Source.WALLHAVEN,
            query=SearchQuery(query="nature"),
            count=3,
            transport=httpx.MockTransport(handler),
        )
    )

    assert report.status is FetchStatus.SUCCESS
    assert report.failed == []
    assert sorted(os.listdir(settings.wallpaper_path)) == [
        "wallow-wallhaven-aaa111.jpg",
        "wallow-wallhaven-bbb222.jpg",
        "wallow-wallhaven-ccc333.jpg",
    ]


def test_nothing_downloaded_raises_with_cause_exit_code(settings, wallhaven_page, make_json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            return make_json_response(wallhaven_page(["aaa111"]))
        return httpx.Response(404)

    with pytest.raises(FetchFailedError) as excinfo:
        asyncio.run(
            fetch_wallpapers(
                settings=settings,
                source=Source.WALLHAVEN,
                query=SearchQuery(),
                count=1,
                transport=httpx.MockTransport(handler),
            )
        )
    assert int(excinfo.value.exit_code) == 4


def test_empty_search_raises(settings, make_json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        return make_json_response({"data": [], "meta": {"last_page": 1}})

    with pytest.raises(FetchFailedError, match="No wallpapers found"):
        asyncio.run(
            fetch_wallpapers(
                settings=settings,
                source=Source.WALLHAVEN,
                query=SearchQuery(query="zzzz"),
                count=1,
                transport=httpx.MockTransport(handler),
            )
        )


def _broken_gzip(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"plain bytes", headers={"content-encoding": "gzip"})


def _redirect_loop(request: httpx.Request) -> httpx.Response:
    return httpx.Response(302, headers={"location": str(request.url)})


@pytest.mark.parametrize("bad_response", [_broken_gzip, _redirect_loop], ids=["undecodable", "redirect-loop"])
def test_malformed_download_is_a_permanent_failure(bad_response, settings, wallhaven_page, make_json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            return make_json_response(wallhaven_page(["aaa111", "bbb222", "ccc333"]))
        if "bbb222" in request.url.path:
            return bad_response(request)
        return httpx.Response(200, content=b"img")

    report = asyncio.run(
        fetch_wallpapers(
            settings=settings,
            source=Source.WALLHAVEN,
            query=SearchQuery(query="nature"),
            count=3,
            transport=httpx.MockTransport(handler),
        )
    )

    assert report.status is FetchStatus.PARTIAL
    assert sorted(p.name for p in report.committed) == [
        "wallow-wallhaven-aaa111.jpg",
        "wallow-wallhaven-ccc333.jpg",
    ]
    (failed,) = report.failed
    assert failed.candidate.id == "bbb222"
    assert isinstance(failed.error, NetworkError)
    assert failed.error.transient is False
    assert failed.attempts == 1
    assert not any(name.endswith(".part") for name in os.listdir(settings.wallpaper_path))


def test_rate_limited_download_fails_that_candidate_only(settings, wallhaven_page, make_json_response):
    requests: Counter[str] = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            return make_json_response(wallhaven_page(["aaa111", "bbb222", "ccc333"]))
        requests[request.url.path] += 1
        if "bbb222" in request.url.path:
            return httpx.Response(429)
        return httpx.Response(200, content=b"img")

    report = asyncio.run(
        fetch_wallpapers(
            settings=settings,
            source=Source.WALLHAVEN,
            query=SearchQuery(query="nature"),
            count=3,
            transport=httpx.MockTransport(handler),
        )
    )

    assert len(report.committed) == 2
    (failed,) = report.failed
    assert isinstance(failed.error, RateLimitError)
    assert failed.attempts == 1
    # One backoff retry in the HTTP layer, none in the orchestrator.
    assert requests["/full/bb/wallhaven-bbb222.jpg"] == 2


def test_search_failure_mid_batch_keeps_in_flight_downloads(settings, wallhaven_page, make_json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wallhaven.cc":
            if request.url.params["page"] == "1":
                return make_json_response(wallhaven_page(["aaa111", "bbb222"], page=1, last_page=2))
            return httpx.Response(500)
        return httpx.Response(200, content=b"img")

    report = asyncio.run(
        fetch_wallpapers(
            settings=settings,
            source=Source.WALLHAVEN,
            query=SearchQuery(query="nature"),
            count=4,
            transport=httpx.MockTransport(handler),
        )
    )

    assert report.status is FetchStatus.PARTIAL
    assert sorted(p.name for p in report.committed) == [
        "wallow-wallhaven-aaa111.jpg",
        "wallow-wallhaven-bbb222.jpg",
    ]
    assert isinstance(report.interrupted_by, NetworkError)
    assert report.interrupted_by.status_code == 500
