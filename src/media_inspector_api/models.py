"""Request and response models for the media inspector API."""
from typing import List, Optional

from pydantic import BaseModel, Field


class AnalyzeUrlRequest(BaseModel):
    """JSON body of a plain analysis request."""
    url: Optional[str] = None

    class Config:
        extra = "ignore"


class ThumbnailRequest(BaseModel):
    """Body of ``action=generateThumbnails``."""
    url: Optional[str] = None
    fileBuffer: Optional[str] = None  # base64 upload, not an extraction source
    count: Optional[int] = None
    mode: Optional[str] = None
    customTimestamps: Optional[List[float]] = None

    class Config:
        extra = "ignore"


class CompareThumbnailsRequest(BaseModel):
    """Body of ``action=compareThumbnails``."""
    urlA: Optional[str] = None
    urlB: Optional[str] = None
    count: Optional[int] = None
    mode: Optional[str] = None
    customTimestamps: Optional[List[float]] = None

    class Config:
        extra = "ignore"


class SingleThumbnailRequest(BaseModel):
    """Body of ``POST /thumbnail``."""
    url: Optional[str] = None
    timestamp: float = Field(default=0.0, ge=0)
    quality: int = Field(default=90, ge=1, le=100)

    class Config:
        extra = "ignore"


class FileInfo(BaseModel):
    """Describes the bytes that were handed to the analysis engine."""
    filename: str
    size: int
    sizeFormatted: str
    type: str  # 'url' or 'upload'
    isPartial: bool
    url: Optional[str] = None
    downloadedSize: Optional[int] = None
