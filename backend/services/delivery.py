"""
Delivery orchestrator.

Drives one send attempt end to end:
1. Validate required fields and the message policy
2. Check the sender's daily quota
3. Render with the renderer suited to the client
4. Upload the raster to the media host
5. Email the recipient a link to the uploaded image
6. Record usage (only after the email went out)

Any failure stops the pipeline and leaves the attempt in FAILED with the
stage it failed in. Nothing is retried; callers start a fresh attempt.
"""
import asyncio
import logging
import uuid
from typing import Optional

from domain.errors import PostcardError, RateLimited, ValidationError
from domain.models import DeliveryRequest, PostcardRenderer, PostcardSpec, SendAttempt, SendStage
from services.contrast import parse_hex_color
from services.email_delivery import EmailSender, PostcardEmail
from services.layout_model import MESSAGE_WRAP_WIDTH, message_measure
from services.media_host import MediaHost
from services.rate_gate import RateGate
from services.text_flow import Measure, check_message_limits, wrap_text
from settings import settings

logger = logging.getLogger(__name__)


def _check_content(spec: PostcardSpec, measure: Optional[Measure]) -> None:
    try:
        parse_hex_color(spec.background_color)
    except ValueError as exc:
        raise ValidationError(f"Invalid background color {spec.background_color!r}") from exc
    lines = wrap_text(spec.message, MESSAGE_WRAP_WIDTH, measure or message_measure())
    check_message_limits(spec.message, len(lines))


def validate_spec(spec: PostcardSpec, measure: Optional[Measure] = None) -> None:
    """Raise ValidationError if the postcard cannot be rendered."""
    missing = spec.missing_fields()
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing), missing=missing)
    _check_content(spec, measure)


def validate_request(request: DeliveryRequest, measure: Optional[Measure] = None) -> None:
    """Raise ValidationError if the request cannot be rendered and delivered."""
    missing = request.spec.missing_fields()
    if not (request.sender_email or "").strip():
        missing.append("sender_email")
    if not (request.recipient_email or "").strip():
        missing.append("recipient_email")
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing), missing=missing)
    _check_content(request.spec, measure)


def _enter(attempt: SendAttempt, stage: SendStage) -> None:
    attempt.advance(stage)
    logger.debug("[delivery] -> %s", stage.value)


class DeliveryOrchestrator:
    def __init__(
        self,
        rate_gate: RateGate,
        canvas_renderer: PostcardRenderer,
        media_host: MediaHost,
        email_sender: EmailSender,
        *,
        markup_renderer: Optional[PostcardRenderer] = None,
        measure: Optional[Measure] = None,
    ):
        self.rate_gate = rate_gate
        self.canvas_renderer = canvas_renderer
        self.markup_renderer = markup_renderer
        self.media_host = media_host
        self.email_sender = email_sender
        self._measure = measure

    def choose_renderer(self, *, is_mobile: bool = False, prefer_markup: bool = False) -> PostcardRenderer:
        """Mobile clients and fidelity requests go to the browser renderer when one is configured."""
        if self.markup_renderer is not None and (is_mobile or prefer_markup):
            return self.markup_renderer
        return self.canvas_renderer

    async def send(self, request: DeliveryRequest) -> SendAttempt:
        attempt = SendAttempt()
        spec = request.spec
        try:
            _enter(attempt, SendStage.VALIDATING)
            validate_request(request, self._measure)

            _enter(attempt, SendStage.RATE_CHECKING)
            decision = await asyncio.to_thread(self.rate_gate.check_allowed, request.sender_email)
            attempt.rate = decision
            if not decision.allowed:
                raise RateLimited(request.sender_email, decision.remaining)

            _enter(attempt, SendStage.RENDERING)
            renderer = self.choose_renderer(is_mobile=request.is_mobile, prefer_markup=request.prefer_markup)
            attempt.renderer = renderer.kind
            attempt.rendered = await renderer.render(spec, request.options)

            _enter(attempt, SendStage.UPLOADING)
            rendered = attempt.rendered
            filename = f"postcard-{uuid.uuid4().hex[:12]}{rendered.file_extension}"
            attempt.image_url = await asyncio.to_thread(
                self.media_host.upload, rendered.data, filename, rendered.mime_type
            )

            _enter(attempt, SendStage.EMAILING)
            email = PostcardEmail(
                to_email=request.recipient_email.strip(),
                to_name=spec.recipient_name,
                from_email=request.sender_email.strip(),
                from_handle=spec.sender_handle,
                message=spec.message,
                postcard_image=attempt.image_url,
                subject=request.subject or settings.POSTCARD_SUBJECT,
            )
            await asyncio.to_thread(self.email_sender.send, email)
        except PostcardError as exc:
            logger.warning("[delivery] failed at %s: %s", attempt.stage.value, exc.message)
            attempt.fail(exc)
            return attempt
        except Exception as exc:
            logger.exception("[delivery] unexpected failure at %s", attempt.stage.value)
            attempt.fail(exc)
            return attempt

        _enter(attempt, SendStage.SENT)
        await asyncio.to_thread(self.rate_gate.record_usage, request.sender_email)
        logger.info(
            "[delivery] sent postcard from @%s via %s renderer -> %s",
            spec.sender_handle,
            attempt.renderer.value if attempt.renderer else "?",
            attempt.image_url,
        )
        return attempt
