"""
Sender quota API routes.
"""
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.rate_gate import get_default_rate_gate

router = APIRouter()
logger = logging.getLogger(__name__)


class EmailLimitRequest(BaseModel):
    email: Optional[str] = None


@router.post("/check-email-limit")
def check_email_limit(body: EmailLimitRequest):
    """How many postcards the sender can still send today."""
    email = (body.email or "").strip()
    if not email:
        return JSONResponse(status_code=400, content={"error": "Email is required"})

    try:
        gate = get_default_rate_gate()
    except Exception as exc:
        logger.exception("[limits] rate gate unavailable")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to check email limit", "details": str(exc)},
        )

    decision = gate.check_allowed(email)
    if decision.store_error:
        logger.error("[limits] usage store unavailable: %s", decision.store_error)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to check email limit", "details": decision.store_error},
        )
    return decision.to_dict()
