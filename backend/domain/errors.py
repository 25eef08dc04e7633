"""
Error taxonomy for the postcard pipeline.

Every failure that crosses a service boundary is one of these; the API layer
maps them to HTTP status codes and the delivery orchestrator records them on
the failed attempt.
"""
from enum import Enum
from typing import List, Optional, Union


class PostcardError(Exception):
    """Base class for all postcard pipeline failures."""

    def __init__(self, message: str, *, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PostcardError):
    """Required input is missing or exceeds the message policy."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class RenderErrorKind(str, Enum):
    MISSING_ASSET = "missing_asset"
    TIMEOUT = "timeout"
    BROWSER_UNAVAILABLE = "browser_unavailable"


class RenderError(PostcardError):
    """A renderer could not produce a complete image."""

    def __init__(self, kind: RenderErrorKind, message: str, *, details: Optional[str] = None):
        super().__init__(message, details=details)
        self.kind = kind

    def __repr__(self) -> str:
        return f"RenderError(kind={self.kind.value!r}, message={self.message!r})"


class RateLimited(PostcardError):
    """Daily quota exhausted for the sender."""

    def __init__(self, email: str, remaining: Union[int, str] = 0):
        super().__init__(f"Daily postcard limit reached for {email}")
        self.email = email
        self.remaining = remaining


class UploadFailed(PostcardError):
    """The media host rejected or never answered the upload."""


class EmailFailed(PostcardError):
    """The email delivery service rejected or never answered the send."""
