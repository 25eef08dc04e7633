"""
In-process postcard compositor.

Paints a PostcardLayout onto a Pillow raster at an integer scale of the
logical canvas. Assets are resolved before painting starts; painting itself
is synchronous and never waits on I/O.
"""
import asyncio
import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageChops, ImageDraw

from domain.models import (
    DrawRect,
    ImageFormat,
    PostcardLayout,
    PostcardSpec,
    RenderedPostcard,
    RenderOptions,
    RendererKind,
    TextBlock,
)
from services.assets import ResolvedAssets, resolve_assets
from services.contrast import parse_hex_color
from services.image_fitter import crop_box_for_cover, fit_contain
from services.layout_model import build_layout
from services.text_flow import Measure, load_font

logger = logging.getLogger(__name__)

STAMP_PAPER = (255, 255, 255, 255)
STAMP_PAPER_EDGE = (0, 0, 0, 30)
STAMP_PLACEHOLDER_FILL = (240, 240, 240, 255)   # #f0f0f0
STAMP_PLACEHOLDER_EDGE = (204, 204, 204, 255)   # #cccccc


def _px(value: float, scale: int) -> int:
    return int(round(value * scale))


def _rgba(hex_color: str, alpha: int = 255) -> Tuple[int, int, int, int]:
    r, g, b = parse_hex_color(hex_color)
    return (r, g, b, alpha)


def _region_base(size: Tuple[int, int], color: Tuple[int, int, int, int], radius: int, top: bool) -> Tuple[Image.Image, Image.Image]:
    """Background fill plus the rounded-corner mask for one side of the card."""
    region = Image.new("RGBA", size, color)
    mask = Image.new("L", size, 0)
    corners = (True, True, False, False) if top else (False, False, True, True)
    ImageDraw.Draw(mask).rounded_rectangle((0, 0, size[0] - 1, size[1] - 1), radius=radius, fill=255, corners=corners)
    return region, mask


def _clip(region: Image.Image, mask: Image.Image) -> Image.Image:
    region.putalpha(ImageChops.multiply(region.getchannel("A"), mask))
    return region


def _draw_text(draw: ImageDraw.ImageDraw, block: TextBlock, color: str, scale: int, origin_y: float = 0) -> None:
    font = load_font(block.font_size * scale, bold=block.bold)
    draw.text((_px(block.x, scale), _px(block.y - origin_y, scale)), block.text, font=font, fill=color, anchor="la")


def _paste_fitted(target: Image.Image, img: Image.Image, frame: DrawRect, scale: int) -> None:
    """Contain-fit img into frame and composite it onto target."""
    rect = fit_contain(img.width, img.height, frame.width * scale, frame.height * scale)
    if rect is None:
        return
    size = (max(1, int(round(rect.width))), max(1, int(round(rect.height))))
    fitted = img.resize(size, resample=Image.Resampling.LANCZOS)
    dest = (_px(frame.x, scale) + int(round(rect.x)), _px(frame.y, scale) + int(round(rect.y)))
    target.alpha_composite(fitted, dest=dest)


def _user_glyph(size: int, color: str) -> Image.Image:
    """Generic head-and-shoulders avatar glyph."""
    glyph = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(glyph)
    fill = _rgba(color)
    head_r = size * 0.22
    cx = size / 2
    draw.ellipse((cx - head_r, size * 0.1, cx + head_r, size * 0.1 + 2 * head_r), fill=fill)
    draw.ellipse((size * 0.12, size * 0.62, size * 0.88, size * 1.38), fill=fill)
    return glyph


def _avatar(img: Image.Image, size: int) -> Image.Image:
    """Cover-fit the stamp photo into a round thumbnail."""
    box = crop_box_for_cover(img.width, img.height, size, size)
    thumb = img.resize((size, size), resample=Image.Resampling.LANCZOS, box=box)
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, size - 1, size - 1), fill=255)
    return _clip(thumb, mask)


def _stamp_tile(layout: PostcardLayout, stamp: Optional[Image.Image], scale: int) -> Image.Image:
    w = _px(layout.stamp_frame.width, scale)
    h = _px(layout.stamp_frame.height, scale)
    tile = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(tile)
    edge = max(1, scale)
    if stamp is None:
        draw.rectangle((0, 0, w - 1, h - 1), fill=STAMP_PLACEHOLDER_FILL, outline=STAMP_PLACEHOLDER_EDGE, width=edge)
        return tile
    draw.rectangle((0, 0, w - 1, h - 1), fill=STAMP_PAPER, outline=STAMP_PAPER_EDGE, width=edge)
    inner = DrawRect(0, 0, layout.stamp_frame.width, layout.stamp_frame.height).inset(layout.stamp_border)
    _paste_fitted(tile, stamp, inner, scale)
    return tile


def _paint_front(layout: PostcardLayout, assets: ResolvedAssets, scale: int) -> Image.Image:
    size = (_px(layout.front.width, scale), _px(layout.front.height, scale))
    region, mask = _region_base(size, _rgba(layout.background_color), _px(layout.corner_radius, scale), top=True)
    text_color = layout.text_color

    overlay = Image.new("RGBA", size, (0, 0, 0, 0))
    ImageDraw.Draw(overlay).line(
        [
            (_px(layout.separator_x, scale), _px(layout.separator_top, scale)),
            (_px(layout.separator_x, scale), _px(layout.separator_bottom, scale)),
        ],
        fill=layout.contrast.separator_rgba8,
        width=_px(layout.separator_width, scale),
    )
    region.alpha_composite(overlay)

    draw = ImageDraw.Draw(region)
    _draw_text(draw, layout.greeting, text_color, scale)
    for line in layout.message_lines:
        _draw_text(draw, line, text_color, scale)

    icon_size = _px(layout.closing_icon.width, scale)
    icon = _avatar(assets.stamp, icon_size) if assets.stamp is not None else _user_glyph(icon_size, text_color)
    region.alpha_composite(icon, dest=(_px(layout.closing_icon.x, scale), _px(layout.closing_icon.y, scale)))
    _draw_text(draw, layout.closing, text_color, scale)

    # PIL rotates counter-clockwise for positive angles; layout angles follow CSS
    tile = _stamp_tile(layout, assets.stamp, scale)
    rotated = tile.rotate(-layout.stamp_rotation_deg, expand=True, resample=Image.Resampling.BICUBIC, fillcolor=(0, 0, 0, 0))
    cx, cy = layout.stamp_frame.center
    region.alpha_composite(
        rotated,
        dest=(_px(cx, scale) - rotated.width // 2, _px(cy, scale) - rotated.height // 2),
    )

    if assets.signature is not None:
        _paste_fitted(region, assets.signature, layout.signature_frame, scale)
    else:
        _draw_text(draw, layout.signature_placeholder, text_color, scale)

    return _clip(region, mask)


def _paint_back(layout: PostcardLayout, assets: ResolvedAssets, scale: int) -> Image.Image:
    size = (_px(layout.back.width, scale), _px(layout.back.height, scale))
    region, mask = _region_base(size, _rgba(layout.background_color), _px(layout.corner_radius, scale), top=False)

    frame = layout.photo_frame
    photo = assets.photo
    box = crop_box_for_cover(photo.width, photo.height, frame.width, frame.height) if photo is not None else None
    if photo is not None and box is not None:
        frame_px = (_px(frame.width, scale), _px(frame.height, scale))
        cropped = photo.resize(frame_px, resample=Image.Resampling.LANCZOS, box=box)
        region.alpha_composite(cropped, dest=(_px(frame.x, scale), _px(frame.y - layout.back.y, scale)))
    else:
        _draw_text(ImageDraw.Draw(region), layout.photo_placeholder, layout.text_color, scale, origin_y=layout.back.y)

    return _clip(region, mask)


def paint_postcard(layout: PostcardLayout, assets: ResolvedAssets, scale: int) -> Image.Image:
    """Paint both sides onto one RGBA raster of canvas size * scale."""
    card = Image.new("RGBA", (_px(layout.canvas_width, scale), _px(layout.canvas_height, scale)), (0, 0, 0, 0))
    card.alpha_composite(_paint_front(layout, assets, scale), dest=(0, _px(layout.front.y, scale)))
    card.alpha_composite(_paint_back(layout, assets, scale), dest=(0, _px(layout.back.y, scale)))
    return card


def encode_image(image: Image.Image, options: RenderOptions) -> bytes:
    buf = io.BytesIO()
    if options.image_format is ImageFormat.JPEG:
        flat = Image.new("RGB", image.size, (255, 255, 255))
        flat.paste(image, mask=image.getchannel("A"))
        flat.save(buf, format="JPEG", quality=options.jpeg_quality, optimize=True)
    else:
        image.save(buf, format="PNG")
    return buf.getvalue()


class CanvasCompositor:
    """Renderer backed by Pillow; fast, no external processes."""

    kind = RendererKind.CANVAS

    def __init__(self, measure: Optional[Measure] = None):
        self._measure = measure

    def compose(self, spec: PostcardSpec, options: Optional[RenderOptions] = None) -> RenderedPostcard:
        options = options or RenderOptions()
        layout = build_layout(spec, self._measure)
        assets = resolve_assets(spec, invert_signature=layout.invert_signature, preview=options.preview)
        image = paint_postcard(layout, assets, options.scale)
        data = encode_image(image, options)
        logger.debug(
            "[canvas] rendered %sx%s scale=%s format=%s lines=%s bytes=%s",
            image.width,
            image.height,
            options.scale,
            options.image_format.value,
            len(layout.message_lines),
            len(data),
        )
        return RenderedPostcard(
            data=data,
            image_format=options.image_format,
            width=image.width,
            height=image.height,
            scale=options.scale,
            renderer=self.kind,
        )

    async def render(self, spec: PostcardSpec, options: RenderOptions) -> RenderedPostcard:
        # asset fetches and painting block, so keep them off the event loop
        return await asyncio.to_thread(self.compose, spec, options)
