"""
Text flow engine.

Greedy word wrap against a width-measurement capability, plus the font
loading both renderers share so measured widths line up with drawn glyphs.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Callable, List, Optional

from PIL import ImageFont

from domain.errors import ValidationError
from settings import settings

logger = logging.getLogger(__name__)

Measure = Callable[[str], float]

# Looked up by FreeType in the system font directories when no font is configured
_FALLBACK_FONTS = {
    False: ["DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf"],
    True: ["DejaVuSans-Bold.ttf", "Arial Bold.ttf", "LiberationSans-Bold.ttf"],
}


def wrap_text(message: str, max_width: float, measure: Measure) -> List[str]:
    """
    Greedy word wrap.

    Words are accumulated while the joined line still measures within
    max_width; the overflowing word starts the next line. A word wider than
    max_width sits alone on its own line, unsplit. Whitespace runs collapse,
    so " ".join(lines) == " ".join(message.split()).
    """
    lines: List[str] = []
    current = ""
    for word in message.split():
        if not current:
            current = word
            continue
        candidate = f"{current} {word}"
        if measure(candidate) <= max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def check_message_limits(message: str, line_count: int) -> None:
    """Reject messages the form layer should never have let through."""
    max_chars = settings.MAX_MESSAGE_CHARS
    max_lines = settings.MAX_MESSAGE_LINES
    if len(message) > max_chars:
        raise ValidationError(f"Message is limited to {max_chars} characters (got {len(message)})")
    if line_count > max_lines:
        raise ValidationError(f"Message is limited to {max_lines} lines (got {line_count})")


@lru_cache(maxsize=4)
def resolve_font_path(bold: bool = False) -> Optional[str]:
    """Return the first loadable font file for the requested weight, or None."""
    configured = settings.POSTCARD_BOLD_FONT_PATH if bold else settings.POSTCARD_FONT_PATH
    candidates = ([configured] if configured else []) + _FALLBACK_FONTS[bold]
    for candidate in candidates:
        try:
            font = ImageFont.truetype(candidate, 12)
        except OSError:
            continue
        path = getattr(font, "path", None)
        if isinstance(path, str) and Path(path).exists():
            return path
    logger.warning("[text-flow] no TrueType font found for bold=%s; using Pillow's bundled face", bold)
    return None


@lru_cache(maxsize=32)
def load_font(size: float, bold: bool = False) -> ImageFont.FreeTypeFont:
    """Load the postcard face at a pixel size."""
    path = resolve_font_path(bold)
    if path:
        return ImageFont.truetype(path, size)
    return ImageFont.load_default(size=size)


def font_measure(font: ImageFont.FreeTypeFont) -> Measure:
    """Adapt a Pillow font to the wrap engine's width capability."""
    def measure(text: str) -> float:
        return float(font.getlength(text))
    return measure
