"""Configuration settings for the media inspector API."""
import os
import tempfile
from typing import List


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """Application settings."""

    VERSION: str = "1.0.0"

    # Remote fetch
    FETCH_BYTE_CEILING: int = 5 * 1024 * 1024
    FETCH_TIMEOUT_MS: int = 45000
    FETCH_USER_AGENT: str = "Mozilla/5.0 (compatible; MediaInfo-Bot/1.0)"
    UPLOAD_BYTE_CEILING: int = 100 * 1024 * 1024

    # Thumbnails
    THUMBNAIL_DEFAULT_COUNT: int = 5
    THUMBNAIL_MAX_COUNT: int = 8
    THUMBNAIL_WIDTH: int = 320
    EXTRACTION_CONCURRENCY: int = 3
    EXTRACTION_TIMEOUT_SECONDS: int = 60
    FFMPEG_BIN: str = "ffmpeg"
    TEMP_DIR: str = ""

    # MediaInfo library candidates, searched in order
    MEDIAINFO_LIBRARY_PATHS: List[str] = []

    CORS_ALLOW_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    def __init__(self):
        self.FETCH_BYTE_CEILING = max(1, _int_env("FETCH_BYTE_CEILING", self.FETCH_BYTE_CEILING))
        self.FETCH_TIMEOUT_MS = max(1, _int_env("FETCH_TIMEOUT_MS", self.FETCH_TIMEOUT_MS))
        self.FETCH_USER_AGENT = os.getenv("FETCH_USER_AGENT", self.FETCH_USER_AGENT)
        self.UPLOAD_BYTE_CEILING = max(1, _int_env("UPLOAD_BYTE_CEILING", self.UPLOAD_BYTE_CEILING))

        self.THUMBNAIL_DEFAULT_COUNT = _int_env("THUMBNAIL_DEFAULT_COUNT", self.THUMBNAIL_DEFAULT_COUNT)
        self.THUMBNAIL_MAX_COUNT = max(1, _int_env("THUMBNAIL_MAX_COUNT", self.THUMBNAIL_MAX_COUNT))
        self.THUMBNAIL_WIDTH = _int_env("THUMBNAIL_WIDTH", self.THUMBNAIL_WIDTH)
        self.EXTRACTION_CONCURRENCY = max(1, _int_env("EXTRACTION_CONCURRENCY", self.EXTRACTION_CONCURRENCY))
        self.EXTRACTION_TIMEOUT_SECONDS = max(0, _int_env("EXTRACTION_TIMEOUT_SECONDS", self.EXTRACTION_TIMEOUT_SECONDS))
        self.FFMPEG_BIN = os.getenv("FFMPEG_BIN", self.FFMPEG_BIN)
        self.TEMP_DIR = os.getenv("TEMP_DIR") or tempfile.gettempdir()

        raw_paths = os.getenv("MEDIAINFO_LIBRARY_PATHS", "")
        self.MEDIAINFO_LIBRARY_PATHS = [p for p in raw_paths.split(os.pathsep) if p.strip()]

        origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
        self.CORS_ALLOW_ORIGINS = [o.strip() for o in origins.split(",") if o.strip()] or ["*"]
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", self.LOG_LEVEL).upper()


settings = Settings()
