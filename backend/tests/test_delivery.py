import asyncio
import time

from domain.errors import EmailFailed, RenderError, RenderErrorKind, UploadFailed
from domain.models import (
    DeliveryRequest,
    ImageFormat,
    PostcardSpec,
    RateDecision,
    RenderedPostcard,
    RendererKind,
    SendStage,
)
from services.delivery import DeliveryOrchestrator


def char_measure(text: str) -> float:
    return len(text) * 8.0


class FakeGate:
    def __init__(self, allowed=True):
        self.allowed = allowed
        self.checked = []
        self.recorded = []

    def check_allowed(self, email):
        self.checked.append(email)
        return RateDecision(allowed=self.allowed, remaining=2 if self.allowed else 0)

    def record_usage(self, email):
        self.recorded.append(email)


class FakeRenderer:
    def __init__(self, kind=RendererKind.CANVAS, error=None):
        self.kind = kind
        self.error = error
        self.calls = []

    async def render(self, spec, options):
        self.calls.append((spec, options))
        if self.error is not None:
            raise self.error
        return RenderedPostcard(
            data=b"\xff\xd8jpeg",
            image_format=options.image_format,
            width=512 * options.scale,
            height=694 * options.scale,
            scale=options.scale,
            renderer=self.kind,
        )


class FakeHost:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    def upload(self, data, filename, mime_type):
        self.uploads.append((data, filename, mime_type))
        if self.error is not None:
            raise self.error
        return "https://cdn.example.com/postcard.jpg"


class FakeSender:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, email):
        self.sent.append(email)
        if self.error is not None:
            raise self.error


def _request(**overrides) -> DeliveryRequest:
    spec = PostcardSpec(
        recipient_name="Ada",
        sender_handle="@grace",
        message="Hello from the mountains",
        photo_image=b"photo",
        signature_image=b"sig",
    )
    data = dict(spec=spec, sender_email="grace@example.com", recipient_email="ada@example.com")
    data.update(overrides)
    return DeliveryRequest(**data)


def _orchestrator(gate=None, canvas=None, host=None, sender=None, markup=None):
    return DeliveryOrchestrator(
        gate or FakeGate(),
        canvas or FakeRenderer(),
        host or FakeHost(),
        sender or FakeSender(),
        markup_renderer=markup,
        measure=char_measure,
    )


def test_successful_send_walks_every_stage_and_records_usage():
    gate, host, sender = FakeGate(), FakeHost(), FakeSender()
    attempt = asyncio.run(_orchestrator(gate=gate, host=host, sender=sender).send(_request()))

    assert attempt.succeeded
    assert attempt.history == [
        SendStage.IDLE,
        SendStage.VALIDATING,
        SendStage.RATE_CHECKING,
        SendStage.RENDERING,
        SendStage.UPLOADING,
        SendStage.EMAILING,
        SendStage.SENT,
    ]
    assert attempt.image_url == "https://cdn.example.com/postcard.jpg"
    assert host.uploads[0][2] == "image/jpeg"
    assert host.uploads[0][1].endswith(".jpg")
    email = sender.sent[0]
    assert email.to_email == "ada@example.com"
    assert email.to_name == "Ada"
    assert email.from_handle == "grace"
    assert email.postcard_image == attempt.image_url
    assert email.subject == "You received a postcard!"
    assert gate.recorded == ["grace@example.com"]


def test_missing_signature_never_renders_uploads_or_emails():
    gate, canvas, host, sender = FakeGate(), FakeRenderer(), FakeHost(), FakeSender()
    request = _request()
    request.spec = PostcardSpec(recipient_name="Ada", sender_handle="grace", message="hi", photo_image=b"p")
    attempt = asyncio.run(_orchestrator(gate, canvas, host, sender).send(request))

    assert attempt.stage is SendStage.FAILED
    assert attempt.failed_stage is SendStage.VALIDATING
    assert "signature_image" in attempt.reason
    assert gate.checked == []
    assert canvas.calls == [] and host.uploads == [] and sender.sent == []
    assert gate.recorded == []


def test_rate_limited_sender_stops_before_render():
    gate, canvas = FakeGate(allowed=False), FakeRenderer()
    attempt = asyncio.run(_orchestrator(gate=gate, canvas=canvas).send(_request()))
    assert attempt.failed_stage is SendStage.RATE_CHECKING
    assert canvas.calls == []
    assert gate.recorded == []


def test_render_failure_stops_before_upload():
    canvas = FakeRenderer(error=RenderError(RenderErrorKind.MISSING_ASSET, "photo_image could not be loaded"))
    host = FakeHost()
    attempt = asyncio.run(_orchestrator(canvas=canvas, host=host).send(_request()))
    assert attempt.failed_stage is SendStage.RENDERING
    assert isinstance(attempt.error, RenderError)
    assert host.uploads == []


def test_upload_failure_keeps_rendered_image_and_skips_email():
    host, sender, gate = FakeHost(error=UploadFailed("Image upload failed")), FakeSender(), FakeGate()
    attempt = asyncio.run(_orchestrator(gate=gate, host=host, sender=sender).send(_request()))
    assert attempt.failed_stage is SendStage.UPLOADING
    assert attempt.rendered is not None
    assert sender.sent == []
    assert gate.recorded == []


def test_email_failure_does_not_record_usage():
    gate = FakeGate()
    attempt = asyncio.run(_orchestrator(gate=gate, sender=FakeSender(error=EmailFailed("nope"))).send(_request()))
    assert attempt.failed_stage is SendStage.EMAILING
    assert attempt.image_url is not None
    assert gate.recorded == []


def test_unexpected_error_still_fails_the_attempt():
    canvas = FakeRenderer(error=RuntimeError("boom"))
    attempt = asyncio.run(_orchestrator(canvas=canvas).send(_request()))
    assert attempt.stage is SendStage.FAILED
    assert attempt.reason == "boom"


def test_message_over_line_limit_is_rejected(monkeypatch):
    from services import text_flow

    monkeypatch.setattr(text_flow.settings, "MAX_MESSAGE_LINES", 1)
    request = _request()
    request.spec = PostcardSpec(
        recipient_name="Ada",
        sender_handle="grace",
        message="this message is definitely going to wrap onto a second line",
        photo_image=b"p",
        signature_image=b"s",
    )
    attempt = asyncio.run(_orchestrator().send(request))
    assert attempt.failed_stage is SendStage.VALIDATING


def test_invalid_background_is_a_validation_failure():
    request = _request()
    request.spec = PostcardSpec(
        recipient_name="Ada",
        sender_handle="grace",
        message="hi",
        background_color="blue",
        photo_image=b"p",
        signature_image=b"s",
    )
    attempt = asyncio.run(_orchestrator().send(request))
    assert attempt.failed_stage is SendStage.VALIDATING


def test_renderer_choice():
    canvas, markup = FakeRenderer(), FakeRenderer(kind=RendererKind.MARKUP)
    orch = _orchestrator(canvas=canvas, markup=markup)
    assert orch.choose_renderer() is canvas
    assert orch.choose_renderer(is_mobile=True) is markup
    assert orch.choose_renderer(prefer_markup=True) is markup
    assert _orchestrator(canvas=canvas).choose_renderer(is_mobile=True) is canvas

    attempt = asyncio.run(orch.send(_request(is_mobile=True)))
    assert attempt.renderer is RendererKind.MARKUP
    assert markup.calls and not canvas.calls
    assert attempt.rendered.image_format is ImageFormat.JPEG


class SlowHost(FakeHost):
    def upload(self, data, filename, mime_type):
        time.sleep(0.3)
        return super().upload(data, filename, mime_type)


class SlowSender(FakeSender):
    def send(self, email):
        time.sleep(0.3)
        super().send(email)


def test_slow_upload_and_email_do_not_stall_the_event_loop():
    host, sender = SlowHost(), SlowSender()

    async def scenario():
        done = asyncio.Event()
        gaps = []

        async def ticker():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        tick = asyncio.ensure_future(ticker())
        attempt = await _orchestrator(host=host, sender=sender).send(_request())
        done.set()
        await tick
        return attempt, max(gaps)

    attempt, stall = asyncio.run(scenario())
    assert attempt.succeeded
    assert len(host.uploads) == 1 and len(sender.sent) == 1
    assert stall < 0.2
