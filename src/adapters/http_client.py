"""httpx wrapper.

Standardizes timeouts, headers, status-code mapping and the rate-limit
backoff so every wallpaper source behaves the same way. Tests swap the
transport through `transport=` instead of patching httpx.
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from core.config import AppSettings
from core.domain.errors import AuthError, NetworkError, RateLimitError
from core.interfaces.source import ByteStream

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = frozenset({403, 429})


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with safe defaults."""

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json, image/*;q=0.9, */*;q=0.8",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def check_status(response: httpx.Response) -> None:
    """Map an HTTP error status to the wallow error taxonomy."""

    status = response.status_code
    if status < 400:
        return
    url = response.request.url
    if status == 401:
        raise AuthError(f"Credential rejected by {url.host} (HTTP 401).")
    if status in RATE_LIMIT_STATUSES:
        raise RateLimitError(f"Rate limited by {url.host} (HTTP {status}).")
    if status >= 500:
        raise NetworkError(f"HTTP {status} from {url}", transient=True, status_code=status)
    raise NetworkError(f"HTTP {status} from {url}", transient=False, status_code=status)


def request_error(exc: httpx.HTTPError, url: httpx.URL | str, *, reading: bool = False) -> NetworkError:
    """Map an httpx failure to `NetworkError`.

    Timeouts and dropped connections are transient. Undecodable bodies,
    redirect loops and anything else httpx rejects are permanent.
    """

    if isinstance(exc, httpx.TimeoutException):
        where = "while reading " if reading else ""
        return NetworkError(f"Timed out {where}{url}", transient=True)
    if isinstance(exc, httpx.DecodingError):
        return NetworkError(f"Undecodable body from {url} ({exc})", transient=False)
    if isinstance(exc, httpx.TooManyRedirects):
        return NetworkError(f"Redirect loop at {url}", transient=False)
    if isinstance(exc, httpx.UnsupportedProtocol):
        return NetworkError(f"Unsupported URL {url} ({exc})", transient=False)
    if isinstance(exc, httpx.TransportError):
        what = "Connection dropped while reading" if reading else "Connection failed:"
        return NetworkError(f"{what} {url} ({exc})", transient=True)
    return NetworkError(f"Request to {url} failed ({exc})", transient=False)


def _build_request(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Request:
    try:
        return client.build_request("GET", url, params=params, headers=headers)
    except httpx.InvalidURL as exc:
        raise NetworkError(f"Invalid URL {url!r} ({exc})", transient=False) from exc


async def send_with_backoff(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    settings: AppSettings,
    stream: bool = False,
) -> httpx.Response:
    """Send `request`, retrying once after a 429/403.

    Returns a successful response (the caller closes it when `stream=True`).
    httpx failures become `NetworkError` (see `request_error`); a second
    429/403 becomes `RateLimitError`.
    """

    for attempt in range(2):
        try:
            response = await client.send(request, stream=stream)
        except httpx.HTTPError as exc:
            raise request_error(exc, request.url) from exc

        if response.status_code in RATE_LIMIT_STATUSES and attempt == 0:
            retry_after = _retry_after_seconds(response)
            await response.aclose()
            base = retry_after if retry_after is not None else settings.rate_limit_backoff_seconds
            delay = min(base, settings.rate_limit_backoff_max_seconds)
            logger.warning(
                "HTTP %s from %s, retrying once in %.1fs",
                response.status_code,
                request.url.host,
                delay,
            )
            jitter = random.uniform(0.0, 0.25) if delay else 0.0
            await asyncio.sleep(delay + jitter)
            continue

        if response.status_code >= 400:
            await response.aclose()
        check_status(response)
        return response

    raise AssertionError("unreachable")  # pragma: no cover


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    settings: AppSettings,
    params: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
) -> object:
    """GET `url` and decode JSON; malformed bodies are permanent failures."""

    request = _build_request(client, url, params=params, headers=headers)
    response = await send_with_backoff(client, request, settings=settings)
    try:
        return response.json()
    except ValueError as exc:
        raise NetworkError(f"Malformed JSON from {request.url.host}", transient=False) from exc


@asynccontextmanager
async def stream_download(
    client: httpx.AsyncClient,
    url: str,
    *,
    settings: AppSettings,
    headers: dict[str, str] | None = None,
) -> AsyncIterator[ByteStream]:
    """Open `url` as a `ByteStream`.

    The declared length is only reported when the body is not
    content-encoded, since decoded chunks would not match it.
    """

    request = _build_request(client, url, headers=headers)
    response = await send_with_backoff(client, request, settings=settings, stream=True)
    try:
        declared: int | None = None
        raw_length = response.headers.get("content-length")
        if raw_length and raw_length.isdigit() and not response.headers.get("content-encoding"):
            declared = int(raw_length)
        yield ByteStream(chunks=_iter_chunks(response, url), content_length=declared)
    finally:
        await response.aclose()


async def _iter_chunks(response: httpx.Response, url: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        raise request_error(exc, url, reading=True) from exc
