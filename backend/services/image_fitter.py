"""
Aspect-ratio preserving placement of an image inside a frame.

Rects are frame-local: (0, 0) is the frame's top-left corner. Cover
placements deliberately extend past the frame; whatever falls outside is
the crop.
"""
from typing import Optional, Tuple

from domain.models import DrawRect, FitMode


def _has_area(width: float, height: float) -> bool:
    return width > 0 and height > 0


def fit_contain(src_w: float, src_h: float, frame_w: float, frame_h: float) -> Optional[DrawRect]:
    """Scale so the whole image fits, centered; never crops."""
    if not (_has_area(src_w, src_h) and _has_area(frame_w, frame_h)):
        return None
    if frame_w * src_h <= frame_h * src_w:
        # width-bound: the image is relatively wider than the frame
        width = frame_w
        height = min(frame_h, src_h * frame_w / src_w)
    else:
        height = frame_h
        width = min(frame_w, src_w * frame_h / src_h)
    return DrawRect((frame_w - width) / 2, (frame_h - height) / 2, width, height)


def fit_cover(src_w: float, src_h: float, frame_w: float, frame_h: float) -> Optional[DrawRect]:
    """Scale so the image fills the frame, centered; overflow is cropped."""
    if not (_has_area(src_w, src_h) and _has_area(frame_w, frame_h)):
        return None
    if frame_w * src_h >= frame_h * src_w:
        # width-bound: the frame is relatively wider than the image
        width = frame_w
        height = max(frame_h, src_h * frame_w / src_w)
    else:
        height = frame_h
        width = max(frame_w, src_w * frame_h / src_h)
    return DrawRect((frame_w - width) / 2, (frame_h - height) / 2, width, height)


def fit_image(mode: FitMode, src_w: float, src_h: float, frame_w: float, frame_h: float) -> Optional[DrawRect]:
    if mode is FitMode.COVER:
        return fit_cover(src_w, src_h, frame_w, frame_h)
    return fit_contain(src_w, src_h, frame_w, frame_h)


def crop_box_for_cover(
    src_w: int, src_h: int, frame_w: float, frame_h: float
) -> Optional[Tuple[float, float, float, float]]:
    """
    The region of the source image visible through the frame under cover fit,
    as a (left, top, right, bottom) box in source pixels.
    """
    if not (_has_area(src_w, src_h) and _has_area(frame_w, frame_h)):
        return None
    if frame_w * src_h >= frame_h * src_w:
        crop_w = src_w
        crop_h = min(src_h, frame_h * src_w / frame_w)
    else:
        crop_h = src_h
        crop_w = min(src_w, frame_w * src_h / frame_h)
    left = (src_w - crop_w) / 2
    top = (src_h - crop_h) / 2
    return (left, top, src_w - left, src_h - top)
