"""Tests for thumbnail generation through /analyze and /thumbnail."""

import asyncio
import base64

import pytest

from media_inspector_api.api.routes import get_frame_extractor
from media_inspector_api.errors import SamplingError
from media_inspector_api.main import app

from conftest import FakeExtractor

VIDEO = "https://media.example.com/movie.mp4"
OTHER = "https://media.example.com/movie-reencoded.mp4"


def test_timeline_thumbnails(client, fake_extractor):
    response = client.post(
        "/analyze",
        json={"action": "generateThumbnails", "url": VIDEO, "count": 3, "mode": "timeline"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 3
    assert body["mode"] == "timeline"
    assert [t["index"] for t in body["thumbnails"]] == [1, 2, 3]
    assert [t["timestampSeconds"] for t in body["thumbnails"]] == [10.0, 20.0, 30.0]
    assert body["thumbnails"][0]["timestamp"] == "00:00:10.00"
    assert base64.b64decode(body["thumbnails"][0]["imageData"]) == b"frame-10.0"
    assert fake_extractor.probed == [VIDEO]


def test_default_mode_is_random_with_default_count(client):
    response = client.post("/analyze", json={"action": "generateThumbnails", "url": VIDEO})

    body = response.json()
    assert response.status_code == 200
    assert body["mode"] == "random"
    assert body["count"] == 5
    stamps = [t["timestampSeconds"] for t in body["thumbnails"]]
    assert stamps == sorted(stamps)


def test_custom_timestamps_imply_explicit_mode(client):
    response = client.post(
        "/analyze",
        json={"action": "generateThumbnails", "url": VIDEO, "customTimestamps": [12, 99, 3]},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["mode"] == "explicit"
    assert [t["timestampSeconds"] for t in body["thumbnails"]] == [12.0, 3.0]


def test_count_is_clamped(client):
    response = client.post(
        "/analyze",
        json={"action": "generateThumbnails", "url": VIDEO, "count": 50, "mode": "timeline"},
    )
    assert response.json()["count"] == 8


def test_denied_url_never_reaches_ffmpeg(client, fake_extractor):
    response = client.post(
        "/analyze", json={"action": "generateThumbnails", "url": "http://192.168.1.20/cam.mp4"}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "URL not allowed"}
    assert fake_extractor.probed == []
    assert fake_extractor.extracted == []


def test_uploaded_buffer_is_unsupported(client):
    response = client.post(
        "/analyze", json={"action": "generateThumbnails", "fileBuffer": "AAAAGGZ0eXA="}
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Thumbnail generation failed"


def test_invalid_mode(client):
    response = client.post(
        "/analyze", json={"action": "generateThumbnails", "url": VIDEO, "mode": "scenes"}
    )
    assert response.status_code == 400


def test_invalid_count_type(client):
    response = client.post(
        "/analyze", json={"action": "generateThumbnails", "url": VIDEO, "count": "many"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_explicit_timestamps_out_of_range(client):
    response = client.post(
        "/analyze",
        json={"action": "generateThumbnails", "url": VIDEO, "mode": "explicit", "customTimestamps": [100]},
    )
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Thumbnail generation failed"
    assert "No valid timestamps" in body["message"]


class TestCompare:
    @pytest.fixture
    def extractor(self, client):
        fake = FakeExtractor(durations={VIDEO: 100.0, OTHER: 40.0})
        app.dependency_overrides[get_frame_extractor] = lambda: fake
        return fake

    def test_pairs_use_shorter_duration(self, client, extractor):
        response = client.post(
            "/analyze",
            json={"action": "compareThumbnails", "urlA": VIDEO, "urlB": OTHER, "count": 3, "mode": "timeline"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 3
        assert [p["timestampSeconds"] for p in body["pairs"]] == [10.0, 20.0, 30.0]
        assert set(body["pairs"][0]) == {"index", "timestampSeconds", "timestamp", "imageA", "imageB"}
        assert sorted(extractor.probed) == sorted([VIDEO, OTHER])

    def test_both_urls_required(self, client, extractor):
        response = client.post("/analyze", json={"action": "compareThumbnails", "urlA": VIDEO})
        assert response.status_code == 400

    def test_either_url_denied(self, client, extractor):
        response = client.post(
            "/analyze",
            json={"action": "compareThumbnails", "urlA": VIDEO, "urlB": "http://[::1]/x.mp4"},
        )
        assert response.status_code == 400
        assert extractor.probed == []


class TestSingleThumbnail:
    def test_info(self, client):
        response = client.get("/thumbnail")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_returns_jpeg_attachment(self, client, fake_extractor):
        response = client.post("/thumbnail", json={"url": VIDEO, "timestamp": 7.5, "quality": 80})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["content-disposition"] == 'attachment; filename="thumbnail.jpg"'
        assert response.content == b"frame-7.5"
        assert fake_extractor.extracted == [(VIDEO, 7.5, 80)]

    def test_defaults(self, client, fake_extractor):
        client.post("/thumbnail", json={"url": VIDEO})
        assert fake_extractor.extracted == [(VIDEO, 0.0, 90)]

    @pytest.mark.parametrize("payload", [{"url": VIDEO, "quality": 0}, {"url": VIDEO, "timestamp": -1}])
    def test_out_of_range_parameters(self, client, payload):
        response = client.post("/thumbnail", json=payload)
        assert response.status_code == 400

    def test_denied_url(self, client, fake_extractor):
        response = client.post("/thumbnail", json={"url": "http://localhost:8000/a.mp4"})
        assert response.status_code == 400
        assert fake_extractor.extracted == []

    def test_upload_returns_jpeg(self, client, fake_extractor):
        response = client.post(
            "/thumbnail",
            files={"file": ("clip.mp4", b"uploaded video", "video/mp4")},
            data={"timestamp": "7.5", "quality": "80"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["content-disposition"] == 'attachment; filename="thumbnail.jpg"'
        assert response.content == b"upload-frame-7.5"
        assert fake_extractor.uploads == [(b"uploaded video", 7.5, 80)]
        assert fake_extractor.extracted == []

    def test_upload_defaults(self, client, fake_extractor):
        client.post("/thumbnail", files={"file": ("clip.mp4", b"uploaded video", "video/mp4")})
        assert fake_extractor.uploads == [(b"uploaded video", 0.0, 90)]

    def test_upload_without_file(self, client, fake_extractor):
        response = client.post("/thumbnail", files={"timestamp": (None, "1")})

        assert response.status_code == 400
        assert response.json() == {"error": "No file uploaded"}
        assert fake_extractor.uploads == []

    def test_upload_with_invalid_quality(self, client, fake_extractor):
        response = client.post(
            "/thumbnail",
            files={"file": ("clip.mp4", b"uploaded video", "video/mp4")},
            data={"quality": "500"},
        )

        assert response.status_code == 400
        assert fake_extractor.uploads == []


def test_compare_failure_cancels_other_duration_lookup(client):
    cancelled = []

    class OneSideFails(FakeExtractor):
        async def probe_duration(self, source):
            if source == VIDEO:
                raise SamplingError("Could not determine video duration")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(source)
                raise
            return 40.0

    app.dependency_overrides[get_frame_extractor] = lambda: OneSideFails()
    response = client.post(
        "/analyze", json={"action": "compareThumbnails", "urlA": VIDEO, "urlB": OTHER}
    )

    assert response.status_code == 500
    assert cancelled == [OTHER]
