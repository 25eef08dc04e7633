"""
Postcard API routes: render previews and send postcards.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from domain.errors import (
    EmailFailed,
    RateLimited,
    RenderError,
    UploadFailed,
    ValidationError,
)
from domain.models import DeliveryRequest, ImageFormat, PostcardSpec, RenderOptions
from services.canvas_compositor import CanvasCompositor
from services.delivery import DeliveryOrchestrator, validate_spec
from services.email_delivery import build_default_email_sender
from services.media_host import build_default_media_host
from services.rate_gate import get_default_rate_gate

router = APIRouter()
canvas_renderer = CanvasCompositor()
media_host = build_default_media_host()
email_sender = build_default_email_sender()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (RateLimited, 429),
    (UploadFailed, 502),
    (EmailFailed, 502),
)


class UserData(BaseModel):
    """The profile the postcard is sent to."""
    name: Optional[str] = None
    email: Optional[str] = None
    handle: Optional[str] = None
    profileImage: Optional[str] = None


class PostcardRequest(BaseModel):
    recipientName: Optional[str] = None
    handle: Optional[str] = None
    senderEmail: Optional[str] = None
    message: Optional[str] = None
    photo: Optional[str] = None
    signature: Optional[str] = None
    postcardBackgroundColor: Optional[str] = None
    userData: Optional[UserData] = None
    subject: Optional[str] = None
    isMobile: bool = False
    preferMarkup: bool = False
    scale: Optional[int] = None
    format: Optional[str] = None

    def to_spec(self) -> PostcardSpec:
        user = self.userData or UserData()
        return PostcardSpec(
            recipient_name=self.recipientName or user.name or "",
            sender_handle=self.handle or "",
            message=self.message or "",
            background_color=self.postcardBackgroundColor or "#FFFFFF",
            stamp_image=user.profileImage or None,
            photo_image=self.photo or None,
            signature_image=self.signature or None,
        )

    def render_options(self, default: RenderOptions) -> RenderOptions:
        """Requested scale/format on top of a default; raises ValueError on bad values."""
        image_format = default.image_format
        if self.format:
            name = self.format.strip().lower()
            image_format = ImageFormat("jpeg" if name == "jpg" else name)
        return RenderOptions(
            scale=self.scale if self.scale is not None else default.scale,
            image_format=image_format,
            jpeg_quality=default.jpeg_quality,
        )


def _status_for(error: Optional[Exception]) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status
    return 500


def _orchestrator(request: Request) -> DeliveryOrchestrator:
    return DeliveryOrchestrator(
        get_default_rate_gate(),
        canvas_renderer,
        media_host,
        email_sender,
        markup_renderer=getattr(request.app.state, "markup_renderer", None),
    )


@router.post("/generate-postcard")
async def generate_postcard(body: PostcardRequest, request: Request):
    """Render the postcard and return it inline as a data URL."""
    spec = body.to_spec()
    try:
        validate_spec(spec)
        options = body.render_options(RenderOptions.for_download())
    except ValidationError as exc:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": exc.message, "missing": exc.missing},
        )
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc), "missing": []})

    orchestrator = _orchestrator(request)
    sender_email = (body.senderEmail or "").strip()
    if sender_email:
        decision = await asyncio.to_thread(orchestrator.rate_gate.check_allowed, sender_email)
        if decision.store_error:
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Failed to check email limit", "details": decision.store_error},
            )
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": decision.message, "remaining": decision.remaining},
            )

    renderer = orchestrator.choose_renderer(is_mobile=body.isMobile, prefer_markup=body.preferMarkup)
    try:
        rendered = await renderer.render(spec, options)
    except RenderError as exc:
        logger.warning("[postcards] %s render failed (%s): %s", renderer.kind.value, exc.kind.value, exc.message)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": exc.message, "kind": exc.kind.value, "details": exc.details},
        )

    return {
        "success": True,
        "postcardImage": rendered.to_data_url(),
        "width": rendered.width,
        "height": rendered.height,
        "renderer": rendered.renderer.value,
    }


@router.post("/send-postcard")
async def send_postcard(body: PostcardRequest, request: Request):
    """Render, upload and email the postcard to the profile owner."""
    if media_host is None or email_sender is None:
        logger.error("[postcards] send requested but media host or email service is not configured")
        return JSONResponse(
            status_code=500,
            content={"success": False, "stage": "idle", "error": "Postcard delivery is not configured"},
        )

    try:
        options = body.render_options(RenderOptions.for_email())
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content={"success": False, "stage": "validating", "error": str(exc)},
        )

    user = body.userData or UserData()
    delivery = DeliveryRequest(
        spec=body.to_spec(),
        sender_email=body.senderEmail or "",
        recipient_email=user.email or "",
        subject=body.subject,
        options=options,
        is_mobile=body.isMobile,
        prefer_markup=body.preferMarkup,
    )
    attempt = await _orchestrator(request).send(delivery)

    if not attempt.succeeded:
        content = {
            "success": False,
            "stage": attempt.failed_stage.value if attempt.failed_stage else attempt.stage.value,
            "error": attempt.reason,
        }
        if isinstance(attempt.error, ValidationError):
            content["missing"] = attempt.error.missing
        return JSONResponse(status_code=_status_for(attempt.error), content=content)

    return {
        "success": True,
        "stage": attempt.stage.value,
        "imageUrl": attempt.image_url,
        "renderer": attempt.renderer.value if attempt.renderer else None,
    }
