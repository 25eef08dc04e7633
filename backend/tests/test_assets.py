import base64
import io
from unittest.mock import MagicMock, patch

import pytest
import requests
from PIL import Image

from domain.errors import RenderError, RenderErrorKind
from domain.models import PostcardSpec
from settings import settings
from services.assets import (
    AssetLoadError,
    close_http_session,
    image_to_data_url,
    invert_rgb,
    load_raster,
    read_raster_bytes,
    resolve_assets,
)


def _png_bytes(size=(8, 6), color=(200, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


def _spec(**overrides) -> PostcardSpec:
    data = dict(recipient_name="Ada", sender_handle="grace", message="hi")
    data.update(overrides)
    return PostcardSpec(**data)


def test_load_raster_from_bytes_data_url_and_path(tmp_path):
    raw = _png_bytes()
    path = tmp_path / "photo.png"
    path.write_bytes(raw)
    data_url = "data:image/png;base64," + base64.b64encode(raw).decode("ascii")

    for ref in (raw, data_url, str(path)):
        img = load_raster(ref)
        assert img.mode == "RGBA"
        assert img.size == (8, 6)


@patch("services.assets._session.get")
def test_read_raster_bytes_fetches_http(mock_get):
    mock_resp = MagicMock()
    mock_resp.content = b"abc"
    mock_resp.raise_for_status.return_value = None
    mock_get.return_value = mock_resp

    assert read_raster_bytes("https://example.com/a.png") == b"abc"
    assert mock_get.call_args.kwargs["timeout"] == settings.HTTP_TIMEOUT_SECONDS


@patch("services.assets._session.close")
def test_close_http_session_releases_connections(mock_close):
    close_http_session()
    mock_close.assert_called_once_with()


@patch("services.assets._session.get")
def test_read_raster_bytes_wraps_http_errors(mock_get):
    mock_get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(AssetLoadError):
        read_raster_bytes("https://example.com/a.png")


def test_load_raster_rejects_garbage_and_missing_file(tmp_path):
    with pytest.raises(AssetLoadError):
        load_raster(b"not an image")
    with pytest.raises(AssetLoadError):
        load_raster(str(tmp_path / "nope.png"))
    with pytest.raises(AssetLoadError):
        load_raster("data:image/png,plain")


def test_invert_rgb_keeps_alpha():
    img = Image.new("RGBA", (2, 2), (10, 20, 30, 128))
    out = invert_rgb(img)
    assert out.getpixel((0, 0)) == (245, 235, 225, 128)


def test_image_to_data_url_round_trips_size():
    img = Image.new("RGBA", (5, 3), (0, 0, 0, 0))
    url = image_to_data_url(img)
    assert url.startswith("data:image/png;base64,")
    assert load_raster(url).size == (5, 3)


def test_missing_photo_raises_missing_asset():
    spec = _spec(signature_image=_png_bytes())
    with pytest.raises(RenderError) as excinfo:
        resolve_assets(spec, invert_signature=False)
    assert excinfo.value.kind is RenderErrorKind.MISSING_ASSET


def test_undecodable_signature_raises_missing_asset():
    spec = _spec(photo_image=_png_bytes(), signature_image=b"garbage")
    with pytest.raises(RenderError) as excinfo:
        resolve_assets(spec, invert_signature=False)
    assert excinfo.value.kind is RenderErrorKind.MISSING_ASSET


def test_preview_tolerates_missing_assets():
    assets = resolve_assets(_spec(), invert_signature=False, preview=True)
    assert assets.photo is None
    assert assets.signature is None
    assert assets.stamp is None


def test_broken_stamp_is_ignored():
    spec = _spec(stamp_image=b"garbage", photo_image=_png_bytes(), signature_image=_png_bytes())
    assets = resolve_assets(spec, invert_signature=False)
    assert assets.stamp is None
    assert assets.photo is not None


def test_signature_inverted_on_request():
    sig = _png_bytes(color=(0, 0, 0, 255))
    spec = _spec(photo_image=_png_bytes(), signature_image=sig)
    plain = resolve_assets(spec, invert_signature=False)
    inverted = resolve_assets(spec, invert_signature=True)
    assert plain.signature.getpixel((0, 0)) == (0, 0, 0, 255)
    assert inverted.signature.getpixel((0, 0)) == (255, 255, 255, 255)
