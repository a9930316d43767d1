"""
Test fixtures for media-inspector-api.

Provides fakes for the external collaborators (network, MediaInfo, ffmpeg)
so tests run fast, deterministic and offline.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

# Make src/ importable so tests can do `import media_inspector_api...`
for p in {ROOT, SRC}:
    p_str = str(p)
    if p_str not in sys.path:
        sys.path.insert(0, p_str)

from media_inspector_api.api.routes import get_analyzer, get_fetcher, get_frame_extractor
from media_inspector_api.main import app
from media_inspector_api.services.fetcher import BoundedFetcher


GENERAL_REPORT: Dict[str, Any] = {
    "media": {
        "@ref": "",
        "track": [
            {"@type": "General", "Format": "MPEG-4", "Duration": "600.000"},
            {"@type": "Video", "Format": "AVC", "Width": "1920", "Height": "1080"},
        ],
    }
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


class FakeAnalyzer:
    """Stands in for MediaInfoAnalyzer."""

    def __init__(self, report: Optional[Dict[str, Any]] = None):
        self.report = report if report is not None else GENERAL_REPORT
        self.buffers: List[bytes] = []

    def analyze(self, buffer: bytes) -> Dict[str, Any]:
        self.buffers.append(buffer)
        return self.report


class FakeExtractor:
    """Stands in for FFmpegFrameExtractor; frames are ``frame-<seconds>`` bytes."""

    def __init__(self, durations: Optional[Dict[str, float]] = None, default_duration: float = 40.0,
                 delays: Optional[Dict[float, float]] = None):
        self.durations = durations or {}
        self.default_duration = default_duration
        self.delays = delays or {}
        self.probed: List[str] = []
        self.extracted: List[tuple] = []
        self.uploads: List[tuple] = []

    async def probe_duration(self, source: str) -> float:
        self.probed.append(source)
        return self.durations.get(source, self.default_duration)

    async def extract_frame(self, source: str, seconds: float, quality: Optional[int] = None) -> bytes:
        await asyncio.sleep(self.delays.get(seconds, 0))
        self.extracted.append((source, seconds, quality))
        return f"frame-{seconds}".encode()

    async def extract_frame_from_bytes(self, data: bytes, seconds: float,
                                       quality: Optional[int] = None) -> bytes:
        self.uploads.append((data, seconds, quality))
        return f"upload-frame-{seconds}".encode()


def make_fetcher(handler: Callable[[httpx.Request], Any]) -> BoundedFetcher:
    return BoundedFetcher(transport=RecordingTransport(handler))


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def client(fake_analyzer, fake_extractor) -> TestClient:
    """Per-test FastAPI TestClient with MediaInfo and ffmpeg replaced by fakes."""
    app.dependency_overrides[get_analyzer] = lambda: fake_analyzer
    app.dependency_overrides[get_frame_extractor] = lambda: fake_extractor
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def use_transport(client):
    """Route the fetcher through a RecordingTransport built from ``handler``."""

    def install(handler: Callable[[httpx.Request], Any]) -> RecordingTransport:
        transport = RecordingTransport(handler)
        app.dependency_overrides[get_fetcher] = lambda: BoundedFetcher(transport=transport)
        return transport

    return install
