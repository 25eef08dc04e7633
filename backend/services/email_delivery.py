"""
Email delivery client: EmailJS template sends over its REST API.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

import requests

from domain.errors import EmailFailed
from settings import settings

EMAILJS_SEND_URL = "https://api.emailjs.com/api/v1.0/email/send"


@dataclass
class PostcardEmail:
    """Template fields of the postcard email."""
    to_email: str
    to_name: str
    from_email: str
    from_handle: str
    message: str
    postcard_image: str  # public URL of the uploaded render
    subject: str


class EmailSender(Protocol):
    def send(self, email: PostcardEmail) -> None:
        ...


class EmailJSDelivery:
    def __init__(
        self,
        service_id: str,
        template_id: str,
        public_key: str,
        *,
        private_key: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        if not (service_id and template_id and public_key):
            raise ValueError("EmailJS service id, template id and public key are required")
        self.service_id = service_id
        self.template_id = template_id
        self.public_key = public_key
        self.private_key = private_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def build_payload(self, email: PostcardEmail) -> dict:
        payload = {
            "service_id": self.service_id,
            "template_id": self.template_id,
            "user_id": self.public_key,
            "template_params": asdict(email),
        }
        if self.private_key:
            payload["accessToken"] = self.private_key
        return payload

    def send(self, email: PostcardEmail) -> None:
        try:
            resp = self.session.post(EMAILJS_SEND_URL, json=self.build_payload(email), timeout=self.timeout)
        except requests.RequestException as exc:
            self.logger.warning("[email] send to %s failed: %s", email.to_email, exc)
            raise EmailFailed("Email delivery failed", details=str(exc)) from exc
        if resp.status_code != 200:
            body = (resp.text or "")[:200]
            self.logger.warning("[email] EmailJS answered %s: %s", resp.status_code, body)
            raise EmailFailed(f"Email service answered {resp.status_code}", details=body)
        self.logger.info("[email] postcard sent to %s from @%s", email.to_email, email.from_handle)


def build_default_email_sender() -> Optional[EmailJSDelivery]:
    """The configured EmailJS client, or None when credentials are not set."""
    if not (settings.EMAILJS_SERVICE_ID and settings.EMAILJS_TEMPLATE_ID and settings.EMAILJS_PUBLIC_KEY):
        return None
    return EmailJSDelivery(
        settings.EMAILJS_SERVICE_ID,
        settings.EMAILJS_TEMPLATE_ID,
        settings.EMAILJS_PUBLIC_KEY,
        private_key=settings.EMAILJS_PRIVATE_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
