"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and a message that is safe
to show to clients. Internal detail (which SSRF rule matched, raw stderr)
goes to the log, never into ``public_message``.
"""
from __future__ import annotations

from typing import Optional


class MediaInspectorError(RuntimeError):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: str = "", *, details: Optional[str] = None):
        super().__init__(message or self.error)
        self.details = details

    @property
    def public_message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        body = {"error": self.public_message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInputError(MediaInspectorError):
    """Bad URL syntax, missing field or malformed JSON body."""

    status_code = 400
    error = "Invalid request"


class ForbiddenTargetError(MediaInspectorError):
    """The URL points at a loopback/private/link-local target."""

    status_code = 400
    error = "URL not allowed"

    @property
    def public_message(self) -> str:
        # Never echo the matched rule back to the caller.
        return self.error


class UnreachableError(MediaInspectorError):
    """DNS failure or connection refused."""

    status_code = 404
    error = "Unable to connect to the URL. Please check if the URL is accessible."

    @property
    def public_message(self) -> str:
        return self.error


class DownloadError(MediaInspectorError):
    """Remote fetch failed after range and fallback attempts."""

    status_code = 500
    error = "Download failed"

    def __init__(
        self,
        message: str = "",
        *,
        kind: str = "network",
        status: Optional[int] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message, details=details)
        self.kind = kind
        self.status = status


class AnalysisError(MediaInspectorError):
    """The metadata engine produced nothing usable."""

    status_code = 500
    error = "Analysis failed"

    def to_dict(self) -> dict:
        return {"error": self.error, "message": str(self)}


class SamplingError(MediaInspectorError):
    """No sample plan could be built (duration unknown, nothing in range)."""

    status_code = 500
    error = "Thumbnail generation failed"

    def to_dict(self) -> dict:
        return {"error": self.error, "message": str(self)}


class ExtractionError(MediaInspectorError):
    """Frame extraction failed for at least one sample."""

    status_code = 500
    error = "Thumbnail generation failed"

    def __init__(self, message: str = "", *, kind: str = "subprocess", details: Optional[str] = None):
        super().__init__(message, details=details)
        self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.error, "message": str(self)}
