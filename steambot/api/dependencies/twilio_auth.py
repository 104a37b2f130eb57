"""
Twilio webhook signature verification.

Twilio signs each webhook with ``X-Twilio-Signature``: base64 of
HMAC-SHA1(auth token, URL + every POST parameter name and value, sorted by
name). Usage:

    @router.post("/webhook")
    async def sms_webhook(
        request: Request,
        _: None = Depends(verify_twilio_signature),
    ):
        ...
"""
import base64
import hashlib
import hmac
from typing import Mapping

from fastapi import Header, HTTPException, Request, status

from steambot.core.config import settings
from steambot.core.logging import get_logger

logger = get_logger(__name__)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


async def verify_twilio_signature(
    request: Request,
    x_twilio_signature: str | None = Header(None),
) -> None:
    """
    Reject webhook calls without a valid Twilio signature.

    - validation disabled (DEBUG default, or TWILIO_VALIDATE_SIGNATURE=false): skip
    - header missing or wrong: 403 Forbidden
    """
    if not settings.sms_signature_validation_enabled:
        return

    if not x_twilio_signature or not settings.TWILIO_AUTH_TOKEN:
        logger.warning("SMS webhook request without usable signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    url = settings.TWILIO_WEBHOOK_URL or str(request.url)
    expected = compute_twilio_signature(settings.TWILIO_AUTH_TOKEN, url, params)

    # timing-safe comparison
    if not hmac.compare_digest(x_twilio_signature, expected):
        logger.warning("SMS webhook request with invalid signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
