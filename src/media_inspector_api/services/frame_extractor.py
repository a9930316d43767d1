"""Still-frame extraction with ffmpeg, run concurrently over a sample plan."""
from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
import secrets
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar, Union

from ..config import settings
from ..errors import ExtractionError, SamplingError
from ..utils import format_timestamp
from .sampler import SamplePlan

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

# ffmpeg may only read the source over these protocols
_PROTOCOL_WHITELIST = "http,https,tcp,tls,crypto"
_LOCAL_PROTOCOL_WHITELIST = "file"

DEFAULT_QSCALE = 2


@dataclass
class ThumbnailResult:
    index: int
    timestampSeconds: float
    timestamp: str
    imageData: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ThumbnailPair:
    index: int
    timestampSeconds: float
    timestamp: str
    imageA: str
    imageB: str

    def to_dict(self) -> dict:
        return asdict(self)


def quality_to_qscale(quality: Optional[int]) -> int:
    """Map a 1-100 JPEG quality onto ffmpeg's -q:v scale (1 best, 31 worst)."""
    if quality is None:
        return DEFAULT_QSCALE
    return int(max(1, min(31, round(31 - quality / 3.22))))


def _ensure_remote_source(source: Union[str, bytes, bytearray, None]) -> str:
    if not isinstance(source, str) or not source.lower().startswith(("http://", "https://")):
        raise ExtractionError(
            "Thumbnail generation requires a URL; uploaded buffers are not supported",
            kind="unsupported-source",
        )
    return source


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()


class FFmpegFrameExtractor:
    """Runs ffmpeg to probe durations and grab single JPEG frames."""

    def __init__(
        self,
        ffmpeg_bin: Optional[str] = None,
        temp_dir: Optional[str] = None,
        width: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.temp_dir = temp_dir or settings.TEMP_DIR
        self.width = width if width is not None else settings.THUMBNAIL_WIDTH
        if timeout_seconds is None:
            timeout_seconds = settings.EXTRACTION_TIMEOUT_SECONDS
        self.timeout_seconds = timeout_seconds or None

    async def _run(self, args: List[str]) -> Tuple[int, bytes]:
        """Run ffmpeg with ``args``; returns (exit code, stderr)."""
        proc = await asyncio.create_subprocess_exec(
            self.ffmpeg_bin,
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ExtractionError(
                f"ffmpeg did not finish within {self.timeout_seconds:g} seconds", kind="timeout"
            ) from exc
        finally:
            # Also reached on cancellation
            await _kill(proc)
        return proc.returncode, stderr or b""

    async def probe_duration(self, source: str) -> float:
        """
        Read the duration ffmpeg reports for ``source``.

        ffmpeg exits non-zero here since no output is given; only the
        ``Duration:`` line on stderr matters.

        Raises:
            SamplingError: no duration could be read
        """
        source = _ensure_remote_source(source)
        try:
            _, stderr = await self._run(
                ["-hide_banner", "-protocol_whitelist", _PROTOCOL_WHITELIST, "-i", source]
            )
        except FileNotFoundError as exc:
            raise ExtractionError(f"ffmpeg not found: {self.ffmpeg_bin}") from exc

        match = _DURATION_RE.search(stderr.decode("utf-8", errors="replace"))
        if not match:
            logger.warning("No duration in ffmpeg output for %s", source)
            raise SamplingError("Could not determine video duration")

        hours, minutes, seconds = match.groups()
        duration = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        logger.info("Duration of %s: %.2fs", source, duration)
        return duration

    async def extract_frame(self, source: str, seconds: float, quality: Optional[int] = None) -> bytes:
        """
        Grab one JPEG frame of a remote source at ``seconds``.

        The frame is written to a uniquely named file in ``temp_dir`` which
        is always removed before returning.

        Raises:
            ExtractionError: ffmpeg failed, timed out or wrote nothing
        """
        source = _ensure_remote_source(source)
        return await self._grab(source, seconds, quality, _PROTOCOL_WHITELIST)

    async def extract_frame_from_bytes(
        self, data: bytes, seconds: float, quality: Optional[int] = None
    ) -> bytes:
        """Grab one JPEG frame of an uploaded file, spooled to ``temp_dir``."""
        if not data:
            raise ExtractionError("Uploaded file is empty", kind="unsupported-source")
        input_path = os.path.join(self.temp_dir, f"upload_{secrets.token_hex(16)}")
        try:
            await asyncio.to_thread(_write_file, input_path, data)
            return await self._grab(input_path, seconds, quality, _LOCAL_PROTOCOL_WHITELIST)
        finally:
            await asyncio.to_thread(_remove_file, input_path)

    async def _grab(
        self, source: str, seconds: float, quality: Optional[int], protocol_whitelist: str
    ) -> bytes:
        output_path = os.path.join(self.temp_dir, f"thumb_{secrets.token_hex(16)}.jpg")
        args = [
            "-hide_banner", "-loglevel", "error", "-y",
            "-protocol_whitelist", protocol_whitelist,
            "-ss", f"{max(0.0, seconds):.3f}",
            "-i", source,
            "-frames:v", "1",
            "-vf", f"scale={self.width}:-2",
            "-q:v", str(quality_to_qscale(quality)),
            output_path,
        ]
        try:
            try:
                returncode, stderr = await self._run(args)
            except FileNotFoundError as exc:
                raise ExtractionError(f"ffmpeg not found: {self.ffmpeg_bin}") from exc

            if returncode != 0:
                message = stderr.decode("utf-8", errors="replace").strip()
                logger.error("ffmpeg failed at %.2fs (exit %s): %s", seconds, returncode, message[-500:])
                raise ExtractionError(f"ffmpeg exited with code {returncode}")

            data = await asyncio.to_thread(_read_file, output_path)
            if not data:
                raise ExtractionError(f"ffmpeg produced no frame at {seconds:.2f}s")
            return data
        finally:
            await asyncio.to_thread(_remove_file, output_path)


def _read_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return b""


def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove temp file %s: %s", path, exc)


async def gather_or_cancel(*aws: Awaitable[T]) -> List[T]:
    """Await all of ``aws``; if one fails, cancel and await the rest before re-raising."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _run_pool(
    count: int, job: Callable[[int], Awaitable[T]], concurrency: int
) -> List[T]:
    """
    Run ``job(i)`` for every index with at most ``concurrency`` in flight.

    Results are stored by index. The first failure cancels the remaining
    workers and is re-raised.
    """
    results: List[Optional[T]] = [None] * count
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < count:
            i = next_index
            next_index += 1
            results[i] = await job(i)

    workers = [asyncio.create_task(worker()) for _ in range(max(1, min(concurrency, count)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]


async def extract_all(
    extractor: FFmpegFrameExtractor,
    source: str,
    plan: SamplePlan,
    concurrency: Optional[int] = None,
    quality: Optional[int] = None,
) -> List[ThumbnailResult]:
    """Extract one thumbnail per plan timestamp, ordered by plan index."""
    source = _ensure_remote_source(source)

    async def job(i: int) -> ThumbnailResult:
        ts = plan.timestamps[i]
        image = await extractor.extract_frame(source, ts, quality)
        return ThumbnailResult(
            index=i + 1,
            timestampSeconds=ts,
            timestamp=format_timestamp(ts),
            imageData=base64.b64encode(image).decode("ascii"),
        )

    results = await _run_pool(len(plan.timestamps), job, concurrency or settings.EXTRACTION_CONCURRENCY)
    logger.info("Extracted %d thumbnails (%s)", len(results), plan.mode)
    return results


async def extract_pairs(
    extractor: FFmpegFrameExtractor,
    source_a: str,
    source_b: str,
    plan: SamplePlan,
    concurrency: Optional[int] = None,
    quality: Optional[int] = None,
) -> List[ThumbnailPair]:
    """Extract the same timestamps from two sources; a pair needs both frames."""
    source_a = _ensure_remote_source(source_a)
    source_b = _ensure_remote_source(source_b)

    async def job(i: int) -> ThumbnailPair:
        ts = plan.timestamps[i]
        image_a, image_b = await gather_or_cancel(
            extractor.extract_frame(source_a, ts, quality),
            extractor.extract_frame(source_b, ts, quality),
        )
        return ThumbnailPair(
            index=i + 1,
            timestampSeconds=ts,
            timestamp=format_timestamp(ts),
            imageA=base64.b64encode(image_a).decode("ascii"),
            imageB=base64.b64encode(image_b).decode("ascii"),
        )

    pairs = await _run_pool(len(plan.timestamps), job, concurrency or settings.EXTRACTION_CONCURRENCY)
    logger.info("Extracted %d thumbnail pairs (%s)", len(pairs), plan.mode)
    return pairs
