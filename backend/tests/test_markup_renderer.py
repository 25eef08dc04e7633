import asyncio
import io

import pytest
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from domain.errors import RenderError, RenderErrorKind
from domain.models import ImageFormat, PostcardSpec, RenderOptions, RendererKind
from services.assets import resolve_assets
from services.layout_model import build_layout
from services.markup_renderer import MarkupRenderer, line_height_ratio
from services.text_flow import load_font


def _png_bytes(size, color=(120, 120, 120, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


def char_measure(text: str) -> float:
    return len(text) * 8.0


class FakePage:
    def __init__(self, fail_on=None, error=None):
        self.fail_on = fail_on
        self.error = error
        self.content = None
        self.screenshot_kwargs = None
        self.closed = False
        self.viewport = None

    def _maybe_fail(self, step):
        if self.fail_on == step:
            raise self.error

    async def set_content(self, html, wait_until=None, timeout=None):
        self._maybe_fail("set_content")
        self.content = html

    async def wait_for_function(self, expression, timeout=None):
        self._maybe_fail("wait_for_function")

    async def screenshot(self, **kwargs):
        self._maybe_fail("screenshot")
        self.screenshot_kwargs = kwargs
        w = int(self.viewport["width"] * self.scale)
        h = int(self.viewport["height"] * self.scale)
        return _png_bytes((w, h))

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page, new_page_error=None):
        self.page = page
        self.new_page_error = new_page_error

    async def new_page(self, viewport=None, device_scale_factor=1):
        if self.new_page_error is not None:
            raise self.new_page_error
        self.page.viewport = viewport
        self.page.scale = device_scale_factor
        return self.page


class FakePool:
    def __init__(self, browser):
        self.browser = browser
        self.acquired = 0
        self.invalidated = []

    async def acquire(self):
        self.acquired += 1
        return self.browser

    async def invalidate(self, browser):
        self.invalidated.append(browser)


def _spec(**overrides) -> PostcardSpec:
    data = dict(
        recipient_name="Ada & Co",
        sender_handle="grace",
        message="See you <soon> at the beach house",
        background_color="#FFFFFF",
        photo_image=_png_bytes((64, 48)),
        signature_image=_png_bytes((40, 20), (0, 0, 0, 255)),
    )
    data.update(overrides)
    return PostcardSpec(**data)


def _renderer(page=None, **browser_kwargs):
    page = page or FakePage()
    pool = FakePool(FakeBrowser(page, **browser_kwargs))
    return MarkupRenderer(pool, settle_timeout_ms=500, measure=char_measure), pool, page


def test_render_screenshots_canvas_at_device_scale():
    renderer, pool, page = _renderer()
    rendered = asyncio.run(renderer.render(_spec(), RenderOptions(scale=2)))

    assert rendered.renderer is RendererKind.MARKUP
    assert (rendered.width, rendered.height) == (1024, 1388)
    assert page.viewport == {"width": 512, "height": 694}
    assert page.screenshot_kwargs["type"] == "png"
    assert page.screenshot_kwargs["clip"] == {"x": 0, "y": 0, "width": 512, "height": 694}
    assert page.closed
    assert pool.invalidated == []


def test_jpeg_screenshot_uses_quality():
    renderer, _, page = _renderer()
    asyncio.run(renderer.render(_spec(), RenderOptions.for_email()))
    assert page.screenshot_kwargs["type"] == "jpeg"
    assert page.screenshot_kwargs["quality"] == 85


def test_settle_timeout_maps_to_timeout_error():
    page = FakePage(fail_on="wait_for_function", error=PlaywrightTimeoutError("Timeout 500ms exceeded"))
    renderer, pool, _ = _renderer(page)
    with pytest.raises(RenderError) as excinfo:
        asyncio.run(renderer.render(_spec(), RenderOptions()))
    assert excinfo.value.kind is RenderErrorKind.TIMEOUT
    assert page.closed
    assert pool.invalidated == []


def test_browser_crash_mid_render_invalidates_pool():
    page = FakePage(fail_on="set_content", error=PlaywrightError("Target closed"))
    renderer, pool, _ = _renderer(page)
    with pytest.raises(RenderError) as excinfo:
        asyncio.run(renderer.render(_spec(), RenderOptions()))
    assert excinfo.value.kind is RenderErrorKind.BROWSER_UNAVAILABLE
    assert pool.invalidated == [pool.browser]
    assert page.closed


def test_new_page_failure_is_browser_unavailable():
    renderer, pool, _ = _renderer(new_page_error=PlaywrightError("Browser has been closed"))
    with pytest.raises(RenderError) as excinfo:
        asyncio.run(renderer.render(_spec(), RenderOptions()))
    assert excinfo.value.kind is RenderErrorKind.BROWSER_UNAVAILABLE
    assert pool.invalidated == [pool.browser]


def test_missing_asset_fails_before_touching_browser():
    renderer, pool, _ = _renderer()
    with pytest.raises(RenderError) as excinfo:
        asyncio.run(renderer.render(_spec(photo_image=None), RenderOptions()))
    assert excinfo.value.kind is RenderErrorKind.MISSING_ASSET
    assert pool.acquired == 0


def test_document_escapes_text_and_places_lines():
    renderer, _, _ = _renderer()
    spec = _spec()
    layout = build_layout(spec, char_measure)
    doc = renderer.build_document(layout, resolve_assets(spec, invert_signature=False))

    assert "Hey Ada &amp; Co," in doc
    assert "&lt;soon&gt;" in doc
    assert "<soon>" not in doc
    for line in layout.message_lines:
        assert f"top:{line.y:g}px" in doc
    assert "rotate(-5.96deg)" in doc
    assert "white-space: pre" in doc
    # photo and signature; no stamp was given
    assert doc.count("data:image/png;base64,") == 2
    assert "stamp placeholder" in doc


def test_document_uses_placeholders_in_preview():
    renderer, _, _ = _renderer()
    spec = _spec(photo_image=None, signature_image=None)
    layout = build_layout(spec, char_measure)
    doc = renderer.build_document(layout, resolve_assets(spec, invert_signature=False, preview=True))
    assert "Your photo will appear here" in doc
    assert "Signature" in doc
    assert "stamp placeholder" in doc


def test_text_line_height_follows_font_metrics():
    ascent, descent = load_font(14).getmetrics()
    assert line_height_ratio(False) * 14 == pytest.approx(ascent + descent, abs=1)

    renderer, _, _ = _renderer()
    spec = _spec()
    layout = build_layout(spec, char_measure)
    doc = renderer.build_document(layout, resolve_assets(spec, invert_signature=False))
    # greeting is bold, message lines are regular
    assert f"line-height:{line_height_ratio(True):.4f}" in doc
    assert f"line-height:{line_height_ratio(False):.4f}" in doc
    assert "line-height: 1;" not in doc
