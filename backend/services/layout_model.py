"""
Layout model service.

Resolves a PostcardSpec into a PostcardLayout: fixed geometry on the 512x694
logical canvas, wrapped message lines, and the contrast-derived colors.
Nothing here draws; the canvas compositor and the markup renderer both
consume the same layout.
"""
from typing import Optional

from domain.models import DrawRect, PostcardLayout, PostcardSpec, TextBlock
from services.contrast import resolve_contrast
from services.text_flow import Measure, font_measure, load_font, wrap_text

# Logical canvas: front side stacked over back side
CANVAS_WIDTH = 512
SIDE_HEIGHT = 347
CANVAS_HEIGHT = SIDE_HEIGHT * 2
CORNER_RADIUS = 20

SEPARATOR_X = 256
SEPARATOR_TOP = 23.5
SEPARATOR_BOTTOM = 323.5
SEPARATOR_WIDTH = 2

TEXT_X = 30
GREETING_Y = 30
GREETING_FONT_SIZE = 16
MESSAGE_Y = 60
MESSAGE_FONT_SIZE = 14
MESSAGE_LINE_HEIGHT = 20
MESSAGE_WRAP_WIDTH = 180
CLOSING_Y = 300
CLOSING_FONT_SIZE = 14
CLOSING_ICON = DrawRect(30, 298, 16, 16)
CLOSING_TEXT_X = 52

STAMP_FRAME = DrawRect(392, 25, 80, 80)
STAMP_BORDER = 4
# Counter-clockwise tilt, like a hand-stuck stamp
STAMP_ROTATION_DEG = -5.96

SIGNATURE_FRAME = DrawRect(296, 214, 176, 72)

PHOTO_PLACEHOLDER_TEXT = "Your photo will appear here"
SIGNATURE_PLACEHOLDER_TEXT = "Signature"
PLACEHOLDER_FONT_SIZE = 14


def greeting_text(recipient_name: str) -> str:
    return f"Hey {recipient_name}," if recipient_name else "Hey,"


def closing_text(sender_handle: str) -> str:
    return f"Sincerely, @{sender_handle or 'handle'}"


def message_measure() -> Measure:
    return font_measure(load_font(MESSAGE_FONT_SIZE))


def _centered_text(text: str, frame: DrawRect, font_size: float, measure: Measure) -> TextBlock:
    width = measure(text)
    return TextBlock(
        x=frame.x + (frame.width - width) / 2,
        y=frame.y + (frame.height - font_size) / 2,
        text=text,
        font_size=font_size,
    )


def build_layout(spec: PostcardSpec, measure: Optional[Measure] = None) -> PostcardLayout:
    """
    Compute the full postcard layout for a spec.

    Args:
        spec: The postcard content
        measure: Width capability for the message font; defaults to the
            shared postcard face at MESSAGE_FONT_SIZE

    Returns:
        PostcardLayout in logical units
    """
    measure = measure or message_measure()
    contrast = resolve_contrast(spec.background_color)

    lines = wrap_text(spec.message or "", MESSAGE_WRAP_WIDTH, measure)
    message_lines = [
        TextBlock(x=TEXT_X, y=MESSAGE_Y + index * MESSAGE_LINE_HEIGHT, text=line, font_size=MESSAGE_FONT_SIZE)
        for index, line in enumerate(lines)
    ]

    front = DrawRect(0, 0, CANVAS_WIDTH, SIDE_HEIGHT)
    back = DrawRect(0, SIDE_HEIGHT, CANVAS_WIDTH, SIDE_HEIGHT)

    return PostcardLayout(
        canvas_width=CANVAS_WIDTH,
        canvas_height=CANVAS_HEIGHT,
        front=front,
        back=back,
        corner_radius=CORNER_RADIUS,
        background_color=spec.background_color,
        contrast=contrast,
        separator_x=SEPARATOR_X,
        separator_top=SEPARATOR_TOP,
        separator_bottom=SEPARATOR_BOTTOM,
        separator_width=SEPARATOR_WIDTH,
        greeting=TextBlock(
            x=TEXT_X,
            y=GREETING_Y,
            text=greeting_text(spec.recipient_name),
            font_size=GREETING_FONT_SIZE,
            bold=True,
        ),
        message_lines=message_lines,
        closing=TextBlock(x=CLOSING_TEXT_X, y=CLOSING_Y, text=closing_text(spec.sender_handle), font_size=CLOSING_FONT_SIZE),
        closing_icon=CLOSING_ICON,
        stamp_frame=STAMP_FRAME,
        stamp_border=STAMP_BORDER,
        stamp_rotation_deg=STAMP_ROTATION_DEG,
        signature_frame=SIGNATURE_FRAME,
        photo_frame=back,
        photo_placeholder=_centered_text(PHOTO_PLACEHOLDER_TEXT, back, PLACEHOLDER_FONT_SIZE, measure),
        signature_placeholder=_centered_text(SIGNATURE_PLACEHOLDER_TEXT, SIGNATURE_FRAME, PLACEHOLDER_FONT_SIZE, measure),
    )
