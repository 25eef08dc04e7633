"""
Core domain models for the postcard pipeline.
These are framework-agnostic and can be used across all services.
"""
import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from settings import settings


# bytes, a data: URL, an http(s) URL, or a filesystem path
RasterRef = Union[bytes, str]

UNLIMITED = "unlimited"


class ImageFormat(str, Enum):
    """Output encoding of a rendered postcard."""
    PNG = "png"    # lossless, used for downloads
    JPEG = "jpeg"  # lossy, keeps email attachments small

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return ".png" if self is ImageFormat.PNG else ".jpg"


class FitMode(str, Enum):
    CONTAIN = "contain"
    COVER = "cover"


class RendererKind(str, Enum):
    CANVAS = "canvas"
    MARKUP = "markup"


class SendStage(str, Enum):
    """Stages of a single send attempt."""
    IDLE = "idle"
    VALIDATING = "validating"
    RATE_CHECKING = "rate_checking"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    EMAILING = "emailing"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class DrawRect:
    """A positioned rectangle, in logical units unless stated otherwise."""
    x: float
    y: float
    width: float
    height: float

    def offset(self, dx: float, dy: float) -> "DrawRect":
        return DrawRect(self.x + dx, self.y + dy, self.width, self.height)

    def scaled(self, factor: float) -> "DrawRect":
        return DrawRect(self.x * factor, self.y * factor, self.width * factor, self.height * factor)

    def inset(self, amount: float) -> "DrawRect":
        return DrawRect(
            self.x + amount,
            self.y + amount,
            max(0.0, self.width - 2 * amount),
            max(0.0, self.height - 2 * amount),
        )

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class ContrastResult:
    """Foreground colors derived from a postcard background."""
    text_color: str  # "#000000" or "#FFFFFF"
    separator_color: Tuple[int, int, int, float]  # r, g, b, alpha 0..1

    @property
    def is_dark_text(self) -> bool:
        return self.text_color == "#000000"

    @property
    def separator_css(self) -> str:
        r, g, b, a = self.separator_color
        return f"rgba({r}, {g}, {b}, {a})"

    @property
    def separator_rgba8(self) -> Tuple[int, int, int, int]:
        r, g, b, a = self.separator_color
        return (r, g, b, int(round(a * 255)))


@dataclass(frozen=True)
class PostcardSpec:
    """
    Canonical input to rendering.

    Built fresh per form session and never mutated once handed to a renderer.
    The stamp (sender profile photo) is optional; photo and signature are
    required before a real render.
    """
    recipient_name: str
    sender_handle: str
    message: str
    background_color: str = "#FFFFFF"
    stamp_image: Optional[RasterRef] = None
    photo_image: Optional[RasterRef] = None
    signature_image: Optional[RasterRef] = None

    def __post_init__(self) -> None:
        handle = (self.sender_handle or "").strip()
        if handle.startswith("@"):
            handle = handle[1:]
        object.__setattr__(self, "sender_handle", handle)
        object.__setattr__(self, "recipient_name", (self.recipient_name or "").strip())

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.recipient_name:
            missing.append("recipient_name")
        if not self.sender_handle:
            missing.append("sender_handle")
        if not (self.message or "").strip():
            missing.append("message")
        if not self.photo_image:
            missing.append("photo_image")
        if not self.signature_image:
            missing.append("signature_image")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


@dataclass(frozen=True)
class RenderOptions:
    """How a renderer should rasterize the logical canvas."""
    scale: int = 2
    image_format: ImageFormat = ImageFormat.PNG
    jpeg_quality: int = 85
    preview: bool = False  # draw placeholders instead of failing on missing photo/signature

    def __post_init__(self) -> None:
        if isinstance(self.scale, bool) or not isinstance(self.scale, int) or self.scale < 1:
            raise ValueError(f"scale must be a positive integer, got {self.scale!r}")
        if self.scale > settings.MAX_RENDER_SCALE:
            raise ValueError(f"scale must be at most {settings.MAX_RENDER_SCALE}, got {self.scale}")
        if not 1 <= self.jpeg_quality <= 95:
            raise ValueError(f"jpeg_quality must be within 1..95, got {self.jpeg_quality!r}")

    @classmethod
    def for_email(cls) -> "RenderOptions":
        return cls(scale=2, image_format=ImageFormat.JPEG)

    @classmethod
    def for_download(cls) -> "RenderOptions":
        return cls(scale=4, image_format=ImageFormat.PNG)


@dataclass
class RenderedPostcard:
    """Raster output of a renderer, owned by the caller until uploaded."""
    data: bytes
    image_format: ImageFormat
    width: int
    height: int
    scale: int
    renderer: RendererKind

    @property
    def mime_type(self) -> str:
        return self.image_format.mime_type

    @property
    def file_extension(self) -> str:
        return self.image_format.extension

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class TextBlock:
    """A single line of text placed at its top-left corner."""
    x: float
    y: float
    text: str
    font_size: float
    bold: bool = False


@dataclass
class PostcardLayout:
    """
    Everything a renderer needs to draw, resolved to logical units.

    Both renderers consume the same layout so wrapped lines and frames are
    identical across the two paths.
    """
    canvas_width: float
    canvas_height: float
    front: DrawRect
    back: DrawRect
    corner_radius: float
    background_color: str
    contrast: ContrastResult
    separator_x: float
    separator_top: float
    separator_bottom: float
    separator_width: float
    greeting: TextBlock
    message_lines: List[TextBlock]
    closing: TextBlock
    closing_icon: DrawRect
    stamp_frame: DrawRect
    stamp_border: float
    stamp_rotation_deg: float
    signature_frame: DrawRect
    photo_frame: DrawRect
    photo_placeholder: TextBlock
    signature_placeholder: TextBlock

    @property
    def text_color(self) -> str:
        return self.contrast.text_color

    @property
    def invert_signature(self) -> bool:
        return not self.contrast.is_dark_text


@dataclass
class RateDecision:
    """Outcome of a quota check for one sender."""
    allowed: bool
    remaining: Union[int, str]
    is_creator: bool = False
    used_today: int = 0
    store_error: Optional[str] = None  # set when the usage store could not be read

    @property
    def has_used_postcard(self) -> bool:
        return self.used_today > 0

    @property
    def message(self) -> str:
        if self.is_creator:
            return "Unlimited postcards available"
        if not self.allowed:
            return "Daily postcard limit reached. Try again tomorrow."
        noun = "postcard" if self.remaining == 1 else "postcards"
        return f"{self.remaining} {noun} remaining today"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "isCreator": self.is_creator,
            "hasUsedPostcard": self.has_used_postcard,
            "message": self.message,
        }


@dataclass
class DeliveryRequest:
    """One user-initiated send: what to render and who to deliver it to."""
    spec: PostcardSpec
    sender_email: str
    recipient_email: str
    subject: Optional[str] = None
    options: RenderOptions = field(default_factory=RenderOptions.for_email)
    is_mobile: bool = False
    prefer_markup: bool = False


@dataclass
class SendAttempt:
    """
    State of a single send attempt.

    Terminal states are SENT and FAILED; a failed attempt is never resumed,
    the caller starts a new one.
    """
    stage: SendStage = SendStage.IDLE
    failed_stage: Optional[SendStage] = None
    reason: Optional[str] = None
    error: Optional[Exception] = None
    renderer: Optional[RendererKind] = None
    rendered: Optional[RenderedPostcard] = None
    image_url: Optional[str] = None
    rate: Optional[RateDecision] = None
    history: List[SendStage] = field(default_factory=lambda: [SendStage.IDLE])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.stage is SendStage.SENT

    @property
    def is_terminal(self) -> bool:
        return self.stage in (SendStage.SENT, SendStage.FAILED)

    def advance(self, stage: SendStage) -> None:
        if self.is_terminal:
            raise RuntimeError(f"attempt already finished in stage {self.stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self, error: Exception) -> None:
        if self.is_terminal:
            raise RuntimeError(f"attempt already finished in stage {self.stage.value}")
        self.failed_stage = self.stage
        self.reason = getattr(error, "message", None) or str(error)
        self.error = error
        self.stage = SendStage.FAILED
        self.history.append(SendStage.FAILED)


class PostcardRenderer(Protocol):
    """Anything that turns a PostcardSpec into a raster image."""

    kind: RendererKind

    async def render(self, spec: PostcardSpec, options: RenderOptions) -> RenderedPostcard:
        ...
