"""
Media hosting client: Cloudinary unsigned uploads.

The rendered postcard is uploaded as a multipart file together with an
unsigned upload preset; Cloudinary answers with a public `secure_url`.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol

import requests

from domain.errors import UploadFailed
from settings import settings

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"


class MediaHost(Protocol):
    def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        ...


class CloudinaryMediaHost:
    def __init__(
        self,
        cloud_name: str,
        upload_preset: str,
        *,
        folder: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        if not cloud_name or not upload_preset:
            raise ValueError("Cloudinary cloud name and upload preset are required")
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.folder = folder
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @property
    def upload_url(self) -> str:
        return f"{CLOUDINARY_API_BASE}/{self.cloud_name}/image/upload"

    def upload(self, data: bytes, filename: Optional[str] = None, mime_type: str = "image/png") -> str:
        filename = filename or f"postcard-{uuid.uuid4().hex[:12]}.png"
        form = {"upload_preset": self.upload_preset}
        if self.folder:
            form["folder"] = self.folder
        try:
            resp = self.session.post(
                self.upload_url,
                data=form,
                files={"file": (filename, data, mime_type)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            self.logger.warning("[media-host] upload of %s failed: %s", filename, exc)
            raise UploadFailed("Image upload failed", details=str(exc)) from exc
        except ValueError as exc:
            raise UploadFailed("Image host returned a non-JSON response", details=str(exc)) from exc

        url = payload.get("secure_url") if isinstance(payload, dict) else None
        if not url:
            raise UploadFailed("Image host response had no secure_url", details=str(payload)[:200])
        self.logger.info("[media-host] uploaded %s (%d bytes) -> %s", filename, len(data), url)
        return url


def build_default_media_host() -> Optional[CloudinaryMediaHost]:
    """The configured Cloudinary client, or None when credentials are not set."""
    if not (settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_UPLOAD_PRESET):
        return None
    return CloudinaryMediaHost(
        settings.CLOUDINARY_CLOUD_NAME,
        settings.CLOUDINARY_UPLOAD_PRESET,
        folder=settings.CLOUDINARY_FOLDER,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
