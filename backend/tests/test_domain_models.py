from dataclasses import FrozenInstanceError

import pytest

from domain.errors import ValidationError
from domain.models import (
    DrawRect,
    ImageFormat,
    PostcardSpec,
    RateDecision,
    RenderOptions,
    SendAttempt,
    SendStage,
)


def test_spec_normalizes_handle_and_name():
    spec = PostcardSpec(recipient_name="  Ada ", sender_handle="@grace", message="hi")
    assert spec.sender_handle == "grace"
    assert spec.recipient_name == "Ada"
    assert spec.missing_fields() == ["photo_image", "signature_image"]
    assert not spec.is_complete


def test_spec_is_frozen():
    spec = PostcardSpec(recipient_name="Ada", sender_handle="grace", message="hi")
    with pytest.raises(FrozenInstanceError):
        spec.message = "changed"


def test_render_options_presets_and_validation():
    assert RenderOptions.for_email() == RenderOptions(scale=2, image_format=ImageFormat.JPEG)
    assert RenderOptions.for_download().scale == 4
    with pytest.raises(ValueError):
        RenderOptions(scale=0)
    with pytest.raises(ValueError):
        RenderOptions(scale=1.5)
    with pytest.raises(ValueError):
        RenderOptions(jpeg_quality=100)


def test_render_options_caps_scale(monkeypatch):
    from settings import settings

    monkeypatch.setattr(settings, "MAX_RENDER_SCALE", 4)
    assert RenderOptions(scale=4).scale == 4
    with pytest.raises(ValueError, match="at most 4"):
        RenderOptions(scale=5)
    with pytest.raises(ValueError):
        RenderOptions(scale=5000)
    with pytest.raises(ValueError):
        RenderOptions(scale=True)


def test_draw_rect_helpers():
    rect = DrawRect(10, 20, 100, 50)
    assert rect.right == 110 and rect.bottom == 70
    assert rect.center == (60, 45)
    assert rect.inset(5) == DrawRect(15, 25, 90, 40)
    assert rect.scaled(2) == DrawRect(20, 40, 200, 100)
    assert rect.offset(1, -1) == DrawRect(11, 19, 100, 50)


def test_rate_decision_messages():
    assert RateDecision(allowed=True, remaining=1).message == "1 postcard remaining today"
    assert "limit reached" in RateDecision(allowed=False, remaining=0).message


def test_attempt_records_failed_stage_and_is_terminal():
    attempt = SendAttempt()
    attempt.advance(SendStage.VALIDATING)
    attempt.fail(ValidationError("Missing required fields: message", missing=["message"]))

    assert attempt.stage is SendStage.FAILED
    assert attempt.failed_stage is SendStage.VALIDATING
    assert attempt.reason == "Missing required fields: message"
    assert attempt.is_terminal and not attempt.succeeded
    with pytest.raises(RuntimeError):
        attempt.advance(SendStage.RATE_CHECKING)
