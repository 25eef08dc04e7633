"""
Resolve raster references into decoded Pillow images.

Image loading happens here, before any compositing starts, so renderers only
ever work on already-decoded bitmaps.
"""
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import requests
from PIL import Image, ImageOps

from domain.errors import RenderError, RenderErrorKind
from domain.models import PostcardSpec, RasterRef
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()


def close_http_session() -> None:
    """Release pooled connections held for remote asset fetches."""
    _session.close()


class AssetLoadError(Exception):
    """A raster reference could not be fetched or decoded."""


@dataclass
class ResolvedAssets:
    stamp: Optional[Image.Image] = None
    photo: Optional[Image.Image] = None
    signature: Optional[Image.Image] = None


def register_heif_opener() -> None:
    """Register the HEIF/HEIC opener with Pillow so iPhone photos decode."""
    from pillow_heif import register_heif_opener as _register

    _register()


def _describe(ref: RasterRef) -> str:
    if isinstance(ref, (bytes, bytearray)):
        return f"<{len(ref)} bytes>"
    if ref.startswith("data:"):
        return ref[:32] + "..."
    return ref


def _decode_data_url(ref: str) -> bytes:
    header, sep, payload = ref.partition(",")
    if not sep:
        raise AssetLoadError("malformed data URL")
    if ";base64" not in header:
        raise AssetLoadError("only base64 data URLs are supported")
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise AssetLoadError(f"invalid base64 payload: {exc}") from exc


def _fetch_url(ref: str) -> bytes:
    try:
        resp = _session.get(ref, timeout=settings.HTTP_TIMEOUT_SECONDS)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise AssetLoadError(f"failed to fetch {ref}: {exc}") from exc
    return resp.content


def read_raster_bytes(ref: RasterRef) -> bytes:
    if isinstance(ref, (bytes, bytearray)):
        return bytes(ref)
    if ref.startswith("data:"):
        return _decode_data_url(ref)
    if ref.startswith(("http://", "https://")):
        return _fetch_url(ref)
    path = Path(ref)
    if not path.is_file():
        raise AssetLoadError(f"no such image file: {ref}")
    return path.read_bytes()


def load_raster(ref: RasterRef) -> Image.Image:
    """Decode a raster reference into an upright RGBA image."""
    data = read_raster_bytes(ref)
    if not data:
        raise AssetLoadError("empty image data")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise AssetLoadError(f"could not decode image: {exc}") from exc
    return img.convert("RGBA")


def invert_rgb(img: Image.Image) -> Image.Image:
    """Negate the color channels, leaving alpha untouched."""
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    arr[..., :3] = 255 - arr[..., :3]
    return Image.fromarray(arr, "RGBA")


def image_to_data_url(img: Image.Image) -> str:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _load_required(ref: Optional[RasterRef], name: str, preview: bool) -> Optional[Image.Image]:
    if not ref:
        if preview:
            return None
        raise RenderError(RenderErrorKind.MISSING_ASSET, f"{name} is required")
    try:
        return load_raster(ref)
    except AssetLoadError as exc:
        if preview:
            logger.warning("[assets] %s failed to load for preview (%s): %s", name, _describe(ref), exc)
            return None
        raise RenderError(
            RenderErrorKind.MISSING_ASSET,
            f"{name} could not be loaded",
            details=str(exc),
        ) from exc


def resolve_assets(spec: PostcardSpec, *, invert_signature: bool, preview: bool = False) -> ResolvedAssets:
    """
    Load every image a render needs.

    A missing or undecodable photo/signature fails the render with
    MISSING_ASSET (preview renders draw placeholders instead). The stamp is
    optional: a broken stamp falls back to its placeholder.
    """
    stamp = None
    if spec.stamp_image:
        try:
            stamp = load_raster(spec.stamp_image)
        except AssetLoadError as exc:
            logger.warning("[assets] stamp image ignored (%s): %s", _describe(spec.stamp_image), exc)

    photo = _load_required(spec.photo_image, "photo_image", preview)
    signature = _load_required(spec.signature_image, "signature_image", preview)
    if signature is not None and invert_signature:
        signature = invert_rgb(signature)
    return ResolvedAssets(stamp=stamp, photo=photo, signature=signature)
