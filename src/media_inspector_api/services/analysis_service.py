"""MediaInfo adapter: runs the metadata engine over an in-memory buffer."""
from __future__ import annotations

import io
import json
import logging
import os
from typing import Any, Callable, Iterable, Optional

from pymediainfo import MediaInfo

from ..errors import AnalysisError

logger = logging.getLogger(__name__)

SizeFn = Callable[[], int]
ReadChunkFn = Callable[[int, int], bytes]


class BufferSource:
    """Exposes a byte buffer as ``size()`` / ``read_chunk(offset, length)``."""

    def __init__(self, buffer: bytes):
        self._buffer = buffer

    def size(self) -> int:
        return len(self._buffer)

    def read_chunk(self, offset: int, length: int) -> bytes:
        # Requests past the end are clamped, never raised
        if offset < 0 or length <= 0 or offset >= len(self._buffer):
            return b""
        return self._buffer[offset:offset + length]


class _ChunkReader(io.RawIOBase):
    """Seekable file object over a size/read_chunk pair, as pymediainfo expects."""

    def __init__(self, size_fn: SizeFn, read_chunk_fn: ReadChunkFn):
        super().__init__()
        self._size = size_fn()
        self._read_chunk = read_chunk_fn
        self._pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = self._size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        self._pos = max(0, pos)
        return self._pos

    def readinto(self, b) -> int:
        data = self._read_chunk(self._pos, len(b))
        n = len(data)
        b[:n] = data
        self._pos += n
        return n


class PyMediaInfoEngine:
    """One MediaInfo session, producing the JSON report."""

    def __init__(self, library_file: Optional[str] = None):
        self.library_file = library_file
        self._reader: Optional[_ChunkReader] = None

    def analyze_data(self, size_fn: SizeFn, read_chunk_fn: ReadChunkFn) -> Any:
        self._reader = _ChunkReader(size_fn, read_chunk_fn)
        return MediaInfo.parse(self._reader, library_file=self.library_file, output="JSON")

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


EngineFactory = Callable[[Optional[str]], Any]


def locate_library(paths: Iterable[str]) -> Optional[str]:
    """First existing path in ``paths``; None lets pymediainfo use its default lookup."""
    for path in paths:
        if path and os.path.isfile(path):
            return path
    return None


class MediaInfoAnalyzer:
    """Produces a track report for a media buffer."""

    def __init__(
        self,
        library_search_paths: Iterable[str] = (),
        engine_factory: Optional[EngineFactory] = None,
    ):
        self.library_file = locate_library(library_search_paths)
        self._engine_factory = engine_factory or PyMediaInfoEngine
        if self.library_file:
            logger.info("Using MediaInfo library at %s", self.library_file)

    def analyze(self, buffer: bytes) -> dict:
        """
        Run MediaInfo over ``buffer``.

        Raises:
            AnalysisError: empty buffer, or the engine produced no usable report
        """
        if not buffer:
            raise AnalysisError("Empty or invalid buffer provided")

        source = BufferSource(buffer)
        engine = self._engine_factory(self.library_file)
        try:
            result = engine.analyze_data(source.size, source.read_chunk)
        except AnalysisError:
            raise
        except Exception as exc:
            logger.error("MediaInfo analysis failed: %s", exc)
            raise AnalysisError(f"MediaInfo analysis failed: {exc}") from exc
        finally:
            engine.close()

        if not result:
            raise AnalysisError("MediaInfo returned no data")

        if isinstance(result, (str, bytes)):
            try:
                result = json.loads(result)
            except ValueError as exc:
                raise AnalysisError(f"MediaInfo returned invalid JSON: {exc}") from exc

        media = result.get("media") if isinstance(result, dict) else None
        if not isinstance(media, dict) or not isinstance(media.get("track"), list):
            raise AnalysisError("MediaInfo report has no track list")

        logger.info("MediaInfo found %d tracks in %d bytes", len(media["track"]), len(buffer))
        return result
