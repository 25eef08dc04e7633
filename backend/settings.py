import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


def _as_list(val: str | None, default: list[str] | None = None) -> list[str]:
    if val is None:
        return list(default or [])
    return [part.strip() for part in val.split(",") if part.strip()]


class Settings:
    def __init__(self) -> None:
        self.DATABASE_URL: str | None = os.getenv("DATABASE_URL")

        # Rate gate
        self.DAILY_POSTCARD_QUOTA: int = _as_int(os.getenv("DAILY_POSTCARD_QUOTA"), 3)
        self.CREATOR_EMAILS: list[str] = _as_list(os.getenv("CREATOR_EMAILS"))

        # Message policy
        self.MAX_MESSAGE_CHARS: int = _as_int(os.getenv("MAX_MESSAGE_CHARS"), 200)
        self.MAX_MESSAGE_LINES: int = _as_int(os.getenv("MAX_MESSAGE_LINES"), 10)

        # Rendering
        self.POSTCARD_FONT_PATH: str | None = os.getenv("POSTCARD_FONT_PATH")
        self.POSTCARD_BOLD_FONT_PATH: str | None = os.getenv("POSTCARD_BOLD_FONT_PATH")
        self.RENDER_SETTLE_TIMEOUT_MS: int = _as_int(os.getenv("RENDER_SETTLE_TIMEOUT_MS"), 10000)
        # Largest device scale a request may ask for; the default-size raster grows with its square
        self.MAX_RENDER_SCALE: int = _as_int(os.getenv("MAX_RENDER_SCALE"), 4)
        self.BROWSER_HEADLESS: bool = _as_bool(os.getenv("BROWSER_HEADLESS"), True)

        # Media hosting (Cloudinary unsigned upload)
        self.CLOUDINARY_CLOUD_NAME: str | None = os.getenv("CLOUDINARY_CLOUD_NAME")
        self.CLOUDINARY_UPLOAD_PRESET: str | None = os.getenv("CLOUDINARY_UPLOAD_PRESET")
        self.CLOUDINARY_FOLDER: str | None = os.getenv("CLOUDINARY_FOLDER")

        # Email delivery (EmailJS)
        self.EMAILJS_SERVICE_ID: str | None = os.getenv("EMAILJS_SERVICE_ID")
        self.EMAILJS_TEMPLATE_ID: str | None = os.getenv("EMAILJS_TEMPLATE_ID")
        self.EMAILJS_PUBLIC_KEY: str | None = os.getenv("EMAILJS_PUBLIC_KEY")
        self.EMAILJS_PRIVATE_KEY: str | None = os.getenv("EMAILJS_PRIVATE_KEY")
        self.POSTCARD_SUBJECT: str = os.getenv("POSTCARD_SUBJECT", "You received a postcard!")

        self.HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))


settings = Settings()
