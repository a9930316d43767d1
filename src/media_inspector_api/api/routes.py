"""API routes for media analysis and thumbnails."""

import asyncio
import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError
from starlette.datastructures import UploadFile

from media_inspector_api.config import settings
from media_inspector_api.errors import ExtractionError, InvalidInputError
from media_inspector_api.models import (
    AnalyzeUrlRequest,
    CompareThumbnailsRequest,
    FileInfo,
    SingleThumbnailRequest,
    ThumbnailRequest,
)
from media_inspector_api.services.analysis_service import MediaInfoAnalyzer
from media_inspector_api.services.fetcher import BoundedFetcher
from media_inspector_api.services.frame_extractor import (
    FFmpegFrameExtractor,
    extract_all,
    extract_pairs,
    gather_or_cancel,
)
from media_inspector_api.services.sampler import normalize_mode, plan, plan_comparison
from media_inspector_api.services.url_guard import ensure_admitted
from media_inspector_api.utils import format_bytes

logger = logging.getLogger(__name__)

router = APIRouter()

ModelT = TypeVar("ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_fetcher() -> BoundedFetcher:
    return BoundedFetcher()


@lru_cache(maxsize=1)
def get_analyzer() -> MediaInfoAnalyzer:
    # Library location is resolved once per process
    return MediaInfoAnalyzer(settings.MEDIAINFO_LIBRARY_PATHS)


def get_frame_extractor() -> FFmpegFrameExtractor:
    return FFmpegFrameExtractor()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


async def _read_json(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        raise InvalidInputError("Empty request body")
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise InvalidInputError("Invalid JSON in request body", details=str(e)) from e
    if not isinstance(body, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return body


def _parse(model: Type[ModelT], body: Dict[str, Any]) -> ModelT:
    try:
        return model(**body)
    except ValidationError as e:
        errors = e.errors()
        field = ".".join(str(p) for p in errors[0]["loc"]) if errors else ""
        message = errors[0]["msg"] if errors else str(e)
        raise InvalidInputError("Invalid request body", details=f"{field}: {message}") from e


def _first_upload(form) -> Optional[UploadFile]:
    return next(
        (value for _, value in form.multi_items() if isinstance(value, UploadFile)),
        None,
    )


# ---------------------------------------------------------------------------
# /analyze
# ---------------------------------------------------------------------------


@router.get("/analyze")
async def analyze_info():
    """Health/info for the analysis endpoint."""
    return {
        "status": "ok",
        "message": "MediaInfo API is running",
        "version": settings.VERSION,
        "endpoints": {
            "POST /analyze": "Analyze a media file from {url} or a multipart file upload",
            "POST /analyze action=generateThumbnails": "Extract thumbnails from {url}",
            "POST /analyze action=compareThumbnails": "Extract matching thumbnails from {urlA, urlB}",
            "POST /thumbnail": "Extract a single JPEG frame from {url, timestamp, quality} or a multipart file upload",
        },
    }


@router.options("/analyze")
async def analyze_preflight():
    return Response(status_code=200)


@router.post("/analyze")
async def analyze(
    request: Request,
    fetcher: BoundedFetcher = Depends(get_fetcher),
    analyzer: MediaInfoAnalyzer = Depends(get_analyzer),
    extractor: FFmpegFrameExtractor = Depends(get_frame_extractor),
):
    """
    Analyze a media file, or extract thumbnails when ``action`` says so.

    Accepts a JSON body ``{url}`` or a multipart upload.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.lower().startswith("multipart/form-data"):
        return await _analyze_upload(request, analyzer)

    body = await _read_json(request)
    action = body.get("action")
    if action == "generateThumbnails":
        return await _generate_thumbnails(_parse(ThumbnailRequest, body), extractor)
    if action == "compareThumbnails":
        return await _compare_thumbnails(_parse(CompareThumbnailsRequest, body), extractor)
    if action:
        raise InvalidInputError(f"Unknown action: {action}")

    req = _parse(AnalyzeUrlRequest, body)
    if not req.url:
        raise InvalidInputError("URL is required")
    url = ensure_admitted(req.url)

    result = await fetcher.fetch(url)
    report = await asyncio.to_thread(analyzer.analyze, result.buffer)

    downloaded = len(result.buffer)
    size = result.total_size_known if result.total_size_known is not None else downloaded
    file_info = FileInfo(
        url=url,
        filename=result.filename,
        size=size,
        sizeFormatted=format_bytes(size),
        downloadedSize=downloaded,
        type="url",
        isPartial=result.is_partial,
    )
    return {
        "success": True,
        "url": url,
        "fileInfo": file_info.model_dump(exclude_none=True),
        "data": report,
    }


async def _analyze_upload(request: Request, analyzer: MediaInfoAnalyzer):
    form = await request.form()
    try:
        upload = _first_upload(form)
        if upload is None:
            raise InvalidInputError("No file provided")

        data = await upload.read(settings.UPLOAD_BYTE_CEILING)
        if not data:
            raise InvalidInputError("Uploaded file is empty")
        size = upload.size if upload.size is not None else len(data)
        filename = upload.filename or "unknown"
    finally:
        await form.close()

    logger.info("Analyzing upload %s (%d of %d bytes)", filename, len(data), size)
    report = await asyncio.to_thread(analyzer.analyze, data)

    file_info = FileInfo(
        filename=filename,
        size=size,
        sizeFormatted=format_bytes(size),
        type="upload",
        isPartial=len(data) < size,
    )
    return {
        "success": True,
        "fileInfo": file_info.model_dump(exclude_none=True),
        "data": report,
    }


async def _generate_thumbnails(req: ThumbnailRequest, extractor: FFmpegFrameExtractor):
    if not req.url:
        if req.fileBuffer:
            raise ExtractionError(
                "Thumbnail generation requires a URL; uploaded buffers are not supported",
                kind="unsupported-source",
            )
        raise InvalidInputError("URL is required")
    url = ensure_admitted(req.url)
    mode = normalize_mode(req.mode, req.customTimestamps)

    duration = await extractor.probe_duration(url)
    sample_plan = plan(duration, req.count, mode, req.customTimestamps)
    thumbnails = await extract_all(extractor, url, sample_plan)
    return {
        "success": True,
        "count": len(thumbnails),
        "mode": sample_plan.mode,
        "duration": duration,
        "thumbnails": [t.to_dict() for t in thumbnails],
    }


async def _compare_thumbnails(req: CompareThumbnailsRequest, extractor: FFmpegFrameExtractor):
    if not req.urlA or not req.urlB:
        raise InvalidInputError("Both urlA and urlB are required")
    url_a = ensure_admitted(req.urlA)
    url_b = ensure_admitted(req.urlB)
    mode = normalize_mode(req.mode, req.customTimestamps)

    duration_a, duration_b = await gather_or_cancel(
        extractor.probe_duration(url_a),
        extractor.probe_duration(url_b),
    )
    sample_plan = plan_comparison(duration_a, duration_b, req.count, mode, req.customTimestamps)
    pairs = await extract_pairs(extractor, url_a, url_b, sample_plan)
    return {
        "success": True,
        "count": len(pairs),
        "mode": sample_plan.mode,
        "durationA": duration_a,
        "durationB": duration_b,
        "pairs": [p.to_dict() for p in pairs],
    }


# ---------------------------------------------------------------------------
# /thumbnail
# ---------------------------------------------------------------------------


@router.get("/thumbnail")
async def thumbnail_info():
    return {
        "status": "ok",
        "message": "Thumbnail API is running",
        "endpoints": {
            "POST /thumbnail": "Extract a single JPEG frame from {url, timestamp, quality} or a multipart file upload",
        },
    }


@router.post("/thumbnail")
async def thumbnail(
    request: Request,
    extractor: FFmpegFrameExtractor = Depends(get_frame_extractor),
):
    """
    Return one JPEG frame of the media at ``url``, or of a multipart upload.

    Uploads carry ``timestamp`` and ``quality`` as form fields.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.lower().startswith("multipart/form-data"):
        image = await _thumbnail_from_upload(request, extractor)
    else:
        req = _parse(SingleThumbnailRequest, await _read_json(request))
        if not req.url:
            raise InvalidInputError("URL is required")
        url = ensure_admitted(req.url)
        image = await extractor.extract_frame(url, req.timestamp, req.quality)

    return Response(
        content=image,
        media_type="image/jpeg",
        headers={"Content-Disposition": 'attachment; filename="thumbnail.jpg"'},
    )


async def _thumbnail_from_upload(request: Request, extractor: FFmpegFrameExtractor) -> bytes:
    form = await request.form()
    try:
        upload = _first_upload(form)
        if upload is None:
            raise InvalidInputError("No file uploaded")
        data = await upload.read(settings.UPLOAD_BYTE_CEILING)
        if not data:
            raise InvalidInputError("Uploaded file is empty")
        fields = {k: v for k, v in form.multi_items() if not isinstance(v, UploadFile) and v != ""}
        req = _parse(SingleThumbnailRequest, fields)
        filename = upload.filename or "unknown"
    finally:
        await form.close()

    logger.info("Thumbnail from upload %s (%d bytes) at %.2fs", filename, len(data), req.timestamp)
    return await extractor.extract_frame_from_bytes(data, req.timestamp, req.quality)


@router.get("/health")
def health():
    """Health check endpoint."""
    return {"ok": True}
