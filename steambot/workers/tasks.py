"""
Celery Tasks - outbound SMS delivery

The webhook answers with the first reply segment as TwiML; the remaining
segments of a long reply are sent here, in order, through the Twilio REST
API.
"""
import asyncio
from contextlib import contextmanager

import httpx

from steambot.core.circuit_breaker import get_sms_circuit_breaker
from steambot.core.config import settings
from steambot.core.exceptions import CircuitBreakerOpenError, SmsDeliveryError
from steambot.core.logging import get_logger, set_correlation_id
from steambot.core.validation import PhoneNumberValidator
from steambot.workers.celery_app import celery_app

logger = get_logger(__name__)

RETRY_BACKOFF_SECONDS = 1.0
_sleep = asyncio.sleep


@contextmanager
def get_event_loop():
    """
    Fresh event loop per task, with pending tasks cancelled on exit.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


def _transient_status_codes() -> set[int]:
    return {int(code) for code in settings.SMS_TRANSIENT_STATUS_CODES.split(",") if code.strip()}


async def _post_sms(client: httpx.AsyncClient, to: str, body: str) -> str:
    """Send one message; returns the Twilio message SID"""
    url = f"{settings.TWILIO_API_BASE_URL}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
    response = await client.post(
        url,
        data={"To": to, "From": settings.TWILIO_PHONE_NUMBER, "Body": body},
        auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
    )
    if response.status_code >= 400:
        raise SmsDeliveryError.from_response("send_sms", response)
    return response.json().get("sid", "")


async def send_sms_with_retry(client: httpx.AsyncClient, to: str, body: str) -> str:
    """
    Send one segment, retrying transient failures with exponential backoff.

    Raises:
        SmsDeliveryError: permanent rejection or retries exhausted
        CircuitBreakerOpenError: the carrier is currently failing
    """
    circuit_breaker = get_sms_circuit_breaker()
    transient = _transient_status_codes()

    for attempt in range(settings.SMS_MAX_RETRIES):
        try:
            return await circuit_breaker.execute(_post_sms, client, to, body)
        except SmsDeliveryError as e:
            if e.details.get("status_code") not in transient:
                raise
            error: Exception = e
        except httpx.TransportError as e:
            error = e

        logger.warning(
            "Transient SMS delivery failure",
            extra_data={
                "to": PhoneNumberValidator.mask(to),
                "attempt": attempt + 1,
                "error": type(error).__name__,
            }
        )
        if attempt + 1 < settings.SMS_MAX_RETRIES:
            await _sleep(RETRY_BACKOFF_SECONDS * 2 ** attempt)

    raise SmsDeliveryError(
        "retries exhausted",
        details={"attempts": settings.SMS_MAX_RETRIES, "error": type(error).__name__},
    )


async def deliver_segments(to: str, segments: list[str]) -> dict:
    """Send segments in order; stop at the first one that cannot be delivered"""
    sent = 0
    sids: list[str] = []
    async with httpx.AsyncClient(timeout=10.0) as client:
        for segment in segments:
            try:
                sids.append(await send_sms_with_retry(client, to, segment))
            except (SmsDeliveryError, CircuitBreakerOpenError) as e:
                logger.error(
                    "SMS segment delivery failed",
                    extra_data={
                        "to": PhoneNumberValidator.mask(to),
                        "sent": sent,
                        "remaining": len(segments) - sent,
                        "error": e.message,
                    }
                )
                return {"success": False, "sent": sent, "sids": sids, "error": e.error_code.value}
            sent += 1

    logger.info(
        "SMS segments delivered",
        extra_data={"to": PhoneNumberValidator.mask(to), "sent": sent}
    )
    return {"success": True, "sent": sent, "sids": sids}


@celery_app.task(name="steambot.workers.tasks.deliver_sms_segments")
def deliver_sms_segments(to: str, segments: list[str]):
    """Send the remaining segments of a long SMS reply"""
    if not segments:
        return {"success": True, "sent": 0, "sids": []}
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
        logger.warning("Twilio credentials not configured; dropping SMS segments")
        return {"success": False, "sent": 0, "sids": [], "error": "not_configured"}
    return run_async(deliver_segments(to, segments))
