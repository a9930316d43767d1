"""Bounded retrieval of a remote media prefix.

A ranged GET is tried first. Servers that reject the range get a second,
plain GET whose body is cut at the same byte ceiling. Each attempt runs
under its own wall-clock timeout.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import unquote, urlsplit

import httpx

from ..config import settings
from ..errors import DownloadError, InvalidInputError, UnreachableError
from .url_guard import ensure_admitted

logger = logging.getLogger(__name__)

_CONTENT_RANGE_RE = re.compile(r"bytes\s+\d+-\d+/(\d+|\*)", re.IGNORECASE)
_DISPOSITION_EXT_RE = re.compile(r"filename\*\s*=\s*([^;]+)", re.IGNORECASE)
_DISPOSITION_RE = re.compile(r'filename\s*=\s*("([^"]*)"|[^;]+)', re.IGNORECASE)


@dataclass(frozen=True)
class FetchRequest:
    """Parameters of one bounded fetch."""
    url: str
    byte_ceiling: int
    timeout_ms: int

    def __post_init__(self):
        if self.byte_ceiling <= 0:
            raise ValueError("byte_ceiling must be positive")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


@dataclass
class FetchResult:
    """Bytes received from the remote resource, in stream order."""
    buffer: bytes
    filename: str
    total_size_known: Optional[int]
    is_partial: bool
    status_code: int = 200
    used_range: bool = True


@dataclass
class _Attempt:
    status_code: int
    reason: str
    headers: httpx.Headers
    body: bytes = b""
    stream_ended: bool = True

    @property
    def delivered(self) -> bool:
        return self.status_code == 206 or 200 <= self.status_code < 300


def _total_size(status_code: int, headers: httpx.Headers, byte_ceiling: int) -> Optional[int]:
    """Total resource size from Content-Range, else Content-Length."""
    content_range = headers.get("content-range")
    if content_range:
        match = _CONTENT_RANGE_RE.search(content_range)
        if match and match.group(1) != "*":
            return int(match.group(1))
    content_length = (headers.get("content-length") or "").strip()
    if not content_length.isdigit():
        return None
    total = int(content_length)
    # On a 206 Content-Length is the part length unless it exceeds the range asked for
    if status_code == 206 and total <= byte_ceiling:
        return None
    return total


def _strip_path(name: str) -> str:
    return name.replace("\\", "/").rsplit("/", 1)[-1].strip()


def _filename_from_disposition(value: Optional[str]) -> Optional[str]:
    if not value:
        return None

    match = _DISPOSITION_EXT_RE.search(value)
    if match:
        raw = match.group(1).strip().strip('"')
        charset, sep, encoded = raw.partition("''")
        if sep:
            try:
                name = unquote(encoded, encoding=charset or "utf-8", errors="replace")
            except LookupError:
                name = unquote(encoded)
        else:
            name = unquote(raw)
        name = _strip_path(name)
        if name:
            return name

    match = _DISPOSITION_RE.search(value)
    if match:
        raw = match.group(2) if match.group(2) is not None else match.group(1)
        name = _strip_path(unquote(raw.strip().strip("'\"")))
        if name:
            return name
    return None


def _filename_from_url(url: str) -> str:
    path = urlsplit(url).path
    name = unquote(path.split("/")[-1]) if path else ""
    return name.strip() or "unknown"


async def _read_bounded(response: httpx.Response, budget: int) -> Tuple[bytes, bool]:
    """
    Pull at most ``budget`` bytes from a streamed response.

    Returns:
        (body, stream_ended) - ``stream_ended`` is False when reading
        stopped because the budget ran out.
    """
    chunks = []
    remaining = budget
    async for chunk in response.aiter_bytes():
        if len(chunk) > remaining:
            chunk = chunk[:remaining]
        chunks.append(chunk)
        remaining -= len(chunk)
        if remaining <= 0:
            break
    else:
        return b"".join(chunks), True
    return b"".join(chunks), False


async def _admit_request(request: httpx.Request) -> None:
    # Runs for the first request and for every redirect hop
    ensure_admitted(str(request.url))


class BoundedFetcher:
    """Fetches at most ``byte_ceiling`` bytes of a remote resource."""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent or settings.FETCH_USER_AGENT
        self._transport = transport

    def _client(self, timeout_seconds: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": self.user_agent, "Accept-Encoding": "identity"},
            event_hooks={"request": [_admit_request]},
        )

    async def fetch(
        self,
        url: str,
        byte_ceiling: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> FetchResult:
        """
        Download a bounded prefix of ``url``.

        Args:
            url: Admitted http(s) URL
            byte_ceiling: Maximum number of bytes to keep
            timeout_ms: Wall-clock budget for each attempt

        Returns:
            FetchResult with ``len(buffer) <= byte_ceiling``

        Raises:
            DownloadError: timeout, upstream status, transport failure or empty body
            UnreachableError: DNS failure or connection refused
        """
        request = FetchRequest(
            url=url,
            byte_ceiling=byte_ceiling if byte_ceiling is not None else settings.FETCH_BYTE_CEILING,
            timeout_ms=timeout_ms if timeout_ms is not None else settings.FETCH_TIMEOUT_MS,
        )
        timeout_seconds = request.timeout_ms / 1000.0
        logger.info("Starting download from %s (max %d bytes)", request.url, request.byte_ceiling)

        try:
            async with self._client(timeout_seconds) as client:
                return await self._fetch(client, request, timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("Download from %s timed out after %.3gs", request.url, timeout_seconds)
            raise DownloadError(
                f"Download timed out after {timeout_seconds:g} seconds - "
                "file may be too large or connection too slow",
                kind="timeout",
            ) from exc
        except httpx.ConnectError as exc:
            logger.warning("Could not connect to %s: %s", request.url, exc)
            raise UnreachableError(str(exc)) from exc
        except httpx.InvalidURL as exc:
            raise InvalidInputError("Invalid URL") from exc
        except httpx.HTTPError as exc:
            logger.error("Download error for %s: %s", request.url, exc)
            raise DownloadError(f"Download failed: {exc}", kind="network") from exc

    async def _fetch(
        self, client: httpx.AsyncClient, request: FetchRequest, timeout_seconds: float
    ) -> FetchResult:
        attempt = await asyncio.wait_for(
            self._attempt(client, request, ranged=True), timeout=timeout_seconds
        )
        used_range = True
        if not attempt.delivered:
            logger.info(
                "Range request failed with HTTP %d, trying full request", attempt.status_code
            )
            used_range = False
            attempt = await asyncio.wait_for(
                self._attempt(client, request, ranged=False), timeout=timeout_seconds
            )
            if not attempt.delivered:
                raise DownloadError(
                    f"Download failed: HTTP {attempt.status_code}: {attempt.reason}",
                    kind="upstream",
                    status=attempt.status_code,
                )

        if not attempt.body:
            raise DownloadError("Download failed: No data received from the URL", kind="empty")

        total = _total_size(attempt.status_code, attempt.headers, request.byte_ceiling)
        if total is not None:
            is_partial = len(attempt.body) < total
        else:
            is_partial = not attempt.stream_ended

        filename = (
            _filename_from_disposition(attempt.headers.get("content-disposition"))
            or _filename_from_url(request.url)
        )
        logger.info(
            "Downloaded %d bytes from %s (total=%s, partial=%s)",
            len(attempt.body), request.url, total, is_partial,
        )
        return FetchResult(
            buffer=attempt.body,
            filename=filename,
            total_size_known=total,
            is_partial=is_partial,
            status_code=attempt.status_code,
            used_range=used_range,
        )

    async def _attempt(
        self, client: httpx.AsyncClient, request: FetchRequest, ranged: bool
    ) -> _Attempt:
        headers = {"Range": f"bytes=0-{request.byte_ceiling - 1}"} if ranged else {}
        async with client.stream("GET", request.url, headers=headers) as response:
            logger.debug(
                "HTTP %d (content-length=%s, accept-ranges=%s)",
                response.status_code,
                response.headers.get("content-length"),
                response.headers.get("accept-ranges"),
            )
            attempt = _Attempt(
                status_code=response.status_code,
                reason=response.reason_phrase,
                headers=response.headers,
            )
            if attempt.delivered:
                attempt.body, attempt.stream_ended = await _read_bounded(
                    response, request.byte_ceiling
                )
            return attempt
