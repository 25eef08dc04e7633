"""
Server-side postcard renderer.

Expresses the same PostcardLayout the canvas compositor paints as a styled
HTML document (absolutely positioned layers in logical units), loads it in a
pooled headless browser and screenshots the 512x694 canvas at the requested
device-pixel ratio.
"""
from __future__ import annotations

import asyncio
import base64
import html
import io
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from domain.errors import RenderError, RenderErrorKind
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
from services.assets import ResolvedAssets, image_to_data_url, resolve_assets
from services.browser_pool import BrowserPool
from services.layout_model import build_layout
from services.text_flow import Measure, load_font, resolve_font_path
from settings import settings

logger = logging.getLogger(__name__)

FONT_FAMILY = "PostcardSans"
FALLBACK_FAMILIES = "'DejaVu Sans', Arial, sans-serif"

_ASSETS_SETTLED_JS = """
() => document.fonts.status === 'loaded'
    && Array.from(document.images).every(img => img.complete && img.naturalWidth > 0)
"""


@lru_cache(maxsize=4)
def _font_face_css(path: Optional[str], weight: int) -> str:
    if not path:
        return ""
    encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return (
        "@font-face{"
        f"font-family:'{FONT_FAMILY}';font-style:normal;font-weight:{weight};"
        f"src:url(data:font/ttf;base64,{encoded}) format('truetype');"
        "}"
    )


def _num(value: float) -> str:
    return f"{value:g}"


def _box_style(rect: DrawRect, origin_y: float = 0) -> str:
    return (
        f"left:{_num(rect.x)}px;top:{_num(rect.y - origin_y)}px;"
        f"width:{_num(rect.width)}px;height:{_num(rect.height)}px;"
    )


_METRICS_SIZE = 1000


@lru_cache(maxsize=2)
def line_height_ratio(bold: bool) -> float:
    """
    CSS line-height, as a multiple of the font size, that puts a text block's
    baseline one ascent below its top edge.

    The compositor draws text anchored at the ascender line, so with this
    line-height both renderers place every glyph at the same height.
    """
    ascent, descent = load_font(_METRICS_SIZE, bold=bold).getmetrics()
    return (ascent + descent) / _METRICS_SIZE


def _text(block: TextBlock, origin_y: float = 0) -> str:
    weight = 700 if block.bold else 400
    return (
        f'<div class="text" style="left:{_num(block.x)}px;top:{_num(block.y - origin_y)}px;'
        f'font-size:{_num(block.font_size)}px;font-weight:{weight};'
        f'line-height:{line_height_ratio(block.bold):.4f};">{html.escape(block.text)}</div>'
    )


def _user_glyph(rect: DrawRect) -> str:
    # Same proportions as the compositor's glyph
    size = rect.width
    head = size * 0.44
    body = size * 0.76
    return (
        f'<div class="glyph" style="{_box_style(rect)}">'
        f'<div class="dot" style="left:{_num(size / 2 - head / 2)}px;top:{_num(size * 0.1)}px;'
        f'width:{_num(head)}px;height:{_num(head)}px;"></div>'
        f'<div class="dot" style="left:{_num(size * 0.12)}px;top:{_num(size * 0.62)}px;'
        f'width:{_num(body)}px;height:{_num(body)}px;"></div>'
        "</div>"
    )


def _stamp(layout: PostcardLayout, assets: ResolvedAssets) -> str:
    frame = layout.stamp_frame
    style = _box_style(frame) + f"transform:rotate({_num(layout.stamp_rotation_deg)}deg);"
    if assets.stamp is None:
        return f'<div class="stamp placeholder" style="{style}"></div>'
    return (
        f'<div class="stamp" style="{style}padding:{_num(layout.stamp_border - 1)}px;">'
        f'<img class="contain" src="{image_to_data_url(assets.stamp)}" alt="">'
        "</div>"
    )


def _stylesheet(layout: PostcardLayout) -> str:
    radius = _num(layout.corner_radius)
    faces = _font_face_css(resolve_font_path(False), 400) + _font_face_css(resolve_font_path(True), 700)
    return f"""
{faces}
html, body {{ margin: 0; padding: 0; background: transparent; }}
#postcard {{
  position: relative; width: {_num(layout.canvas_width)}px; height: {_num(layout.canvas_height)}px;
  font-family: '{FONT_FAMILY}', {FALLBACK_FAMILIES}; color: {layout.text_color};
}}
.side {{
  position: absolute; left: 0; overflow: hidden;
  width: {_num(layout.front.width)}px; height: {_num(layout.front.height)}px;
  background: {layout.background_color};
}}
.front {{ top: {_num(layout.front.y)}px; border-radius: {radius}px {radius}px 0 0; }}
.back {{ top: {_num(layout.back.y)}px; border-radius: 0 0 {radius}px {radius}px; }}
.text {{ position: absolute; white-space: pre; margin: 0; }}
.separator {{ position: absolute; background: {layout.contrast.separator_css}; }}
.glyph {{ position: absolute; overflow: hidden; }}
.glyph .dot {{ position: absolute; border-radius: 50%; background: {layout.text_color}; }}
.avatar {{ position: absolute; border-radius: 50%; object-fit: cover; }}
.stamp {{
  position: absolute; box-sizing: border-box; transform-origin: center center;
  background: #ffffff; border: 1px solid rgba(0, 0, 0, 0.12);
}}
.stamp.placeholder {{ background: #f0f0f0; border-color: #cccccc; }}
.stamp img {{ display: block; width: 100%; height: 100%; }}
.contain {{ object-fit: contain; }}
.framed {{ position: absolute; display: block; }}
.cover {{ object-fit: cover; object-position: center center; }}
"""


class MarkupRenderer:
    """Renderer backed by a pooled headless browser; slower, pixel-exact CSS layout."""

    kind = RendererKind.MARKUP

    def __init__(
        self,
        pool: BrowserPool,
        *,
        settle_timeout_ms: Optional[int] = None,
        measure: Optional[Measure] = None,
    ):
        self._pool = pool
        self.settle_timeout_ms = settle_timeout_ms or settings.RENDER_SETTLE_TIMEOUT_MS
        self._measure = measure

    def build_document(self, layout: PostcardLayout, assets: ResolvedAssets) -> str:
        """Standalone HTML for the layout; every image is inlined as a data URL."""
        front: List[str] = [
            f'<div class="separator" style="left:{_num(layout.separator_x - layout.separator_width / 2)}px;'
            f"top:{_num(layout.separator_top)}px;width:{_num(layout.separator_width)}px;"
            f'height:{_num(layout.separator_bottom - layout.separator_top)}px;"></div>',
            _text(layout.greeting),
        ]
        front.extend(_text(line) for line in layout.message_lines)
        if assets.stamp is not None:
            front.append(
                f'<img class="avatar" style="{_box_style(layout.closing_icon)}" '
                f'src="{image_to_data_url(assets.stamp)}" alt="">'
            )
        else:
            front.append(_user_glyph(layout.closing_icon))
        front.append(_text(layout.closing))
        front.append(_stamp(layout, assets))
        if assets.signature is not None:
            front.append(
                f'<img class="framed contain" style="{_box_style(layout.signature_frame)}" '
                f'src="{image_to_data_url(assets.signature)}" alt="">'
            )
        else:
            front.append(_text(layout.signature_placeholder))

        if assets.photo is not None:
            back = (
                f'<img class="framed cover" style="{_box_style(layout.photo_frame, layout.back.y)}" '
                f'src="{image_to_data_url(assets.photo)}" alt="">'
            )
        else:
            back = _text(layout.photo_placeholder, layout.back.y)

        return (
            "<!DOCTYPE html>\n"
            '<html><head><meta charset="UTF-8">'
            f"<style>{_stylesheet(layout)}</style></head><body>"
            '<div id="postcard">'
            f'<div class="side front">{"".join(front)}</div>'
            f'<div class="side back">{back}</div>'
            "</div></body></html>"
        )

    def _prepare(self, spec: PostcardSpec, options: RenderOptions) -> Tuple[PostcardLayout, str]:
        layout = build_layout(spec, self._measure)
        assets = resolve_assets(spec, invert_signature=layout.invert_signature, preview=options.preview)
        return layout, self.build_document(layout, assets)

    async def render(self, spec: PostcardSpec, options: RenderOptions) -> RenderedPostcard:
        layout, document = await asyncio.to_thread(self._prepare, spec, options)
        width = int(layout.canvas_width)
        height = int(layout.canvas_height)

        browser = await self._pool.acquire()
        try:
            page = await browser.new_page(
                viewport={"width": width, "height": height},
                device_scale_factor=options.scale,
            )
        except PlaywrightError as exc:
            await self._pool.invalidate(browser)
            raise RenderError(
                RenderErrorKind.BROWSER_UNAVAILABLE,
                "Headless browser is not responding",
                details=str(exc),
            ) from exc

        try:
            await page.set_content(document, wait_until="load", timeout=self.settle_timeout_ms)
            await page.wait_for_function(_ASSETS_SETTLED_JS, timeout=self.settle_timeout_ms)
            shot_kwargs = {"clip": {"x": 0, "y": 0, "width": width, "height": height}}
            if options.image_format is ImageFormat.JPEG:
                shot_kwargs.update(type="jpeg", quality=options.jpeg_quality)
            else:
                shot_kwargs.update(type="png", omit_background=True)
            data = await page.screenshot(**shot_kwargs)
        except PlaywrightTimeoutError as exc:
            logger.warning("[markup] assets did not settle within %sms", self.settle_timeout_ms)
            raise RenderError(
                RenderErrorKind.TIMEOUT,
                "Postcard assets did not finish loading in time",
                details=str(exc),
            ) from exc
        except PlaywrightError as exc:
            logger.exception("[markup] browser failed mid-render")
            await self._pool.invalidate(browser)
            raise RenderError(
                RenderErrorKind.BROWSER_UNAVAILABLE,
                "Headless browser failed while rendering",
                details=str(exc),
            ) from exc
        finally:
            try:
                await page.close()
            except PlaywrightError:
                logger.debug("[markup] page close failed", exc_info=True)

        with Image.open(io.BytesIO(data)) as shot:
            px_width, px_height = shot.size
        logger.debug(
            "[markup] rendered %sx%s scale=%s format=%s bytes=%s",
            px_width,
            px_height,
            options.scale,
            options.image_format.value,
            len(data),
        )
        return RenderedPostcard(
            data=data,
            image_format=options.image_format,
            width=px_width,
            height=px_height,
            scale=options.scale,
            renderer=self.kind,
        )
