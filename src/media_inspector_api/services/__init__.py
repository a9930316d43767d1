"""Services behind the media inspector routes."""
from .analysis_service import MediaInfoAnalyzer
from .fetcher import BoundedFetcher, FetchRequest, FetchResult
from .frame_extractor import FFmpegFrameExtractor, extract_all, extract_pairs
from .url_guard import admit, ensure_admitted

__all__ = [
    "BoundedFetcher",
    "FFmpegFrameExtractor",
    "FetchRequest",
    "FetchResult",
    "MediaInfoAnalyzer",
    "admit",
    "ensure_admitted",
    "extract_all",
    "extract_pairs",
]
