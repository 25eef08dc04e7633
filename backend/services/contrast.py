"""Pick legible text and separator colors for a postcard background."""
from functools import lru_cache
from typing import Tuple

from domain.models import ContrastResult

BLACK = "#000000"
WHITE = "#FFFFFF"
DARK_SEPARATOR = (170, 170, 170, 0.16)
LIGHT_SEPARATOR = (255, 255, 255, 0.16)
LUMINANCE_THRESHOLD = 0.5


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """Parse '#RRGGBB' (or 'RRGGBB') into an RGB tuple."""
    raw = (value or "").strip().lstrip("#")
    if len(raw) != 6:
        raise ValueError(f"expected a 6-digit hex color, got {value!r}")
    try:
        return (int(raw[0:2], 16), int(raw[2:4], 16), int(raw[4:6], 16))
    except ValueError:
        raise ValueError(f"expected a 6-digit hex color, got {value!r}") from None


def relative_luminance(rgb: Tuple[int, int, int]) -> float:
    r, g, b = rgb
    return (0.299 * r + 0.587 * g + 0.114 * b) / 255.0


@lru_cache(maxsize=256)
def resolve_contrast(background_color: str) -> ContrastResult:
    """
    Black text on light backgrounds, white text on dark ones.

    Luminance exactly at the threshold counts as dark (white text); #808080
    sits just above it (0.502) and resolves to black.
    """
    luminance = relative_luminance(parse_hex_color(background_color))
    if luminance > LUMINANCE_THRESHOLD:
        return ContrastResult(text_color=BLACK, separator_color=DARK_SEPARATOR)
    return ContrastResult(text_color=WHITE, separator_color=LIGHT_SEPARATOR)
