"""
SMS Webhook - Twilio inbound messages

The first reply segment goes back synchronously as TwiML; any further
segments are queued to the ``deliver_sms_segments`` Celery task.
"""
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from steambot.api.dependencies.twilio_auth import verify_twilio_signature
from steambot.core.config import settings
from steambot.core.exceptions import StorageError
from steambot.core.logging import get_logger
from steambot.core.validation import PhoneNumberValidator
from steambot.db.database import get_db
from steambot.db.models.conversation import Channel
from steambot.domain.services.chat_service import ChatService
from steambot.domain.services.conversation_service import ConversationService

logger = get_logger(__name__)

router = APIRouter()

OPT_OUT_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE", "CANCEL", "QUIT", "END", "STOPALL"})
OPT_IN_KEYWORDS = frozenset({"START"})

UNSUBSCRIBED_MESSAGE = "You have been unsubscribed. Reply START to resubscribe."
RESUBSCRIBED_MESSAGE = "You have been resubscribed. Reply STOP to unsubscribe."


def twiml(message: str | None = None) -> Response:
    """TwiML MessagingResponse with zero or one message"""
    body = f"<Message>{escape(message)}</Message>" if message else ""
    xml = f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>'
    return Response(content=xml, media_type="application/xml")


def session_id_for(phone: str) -> str:
    return "sms_" + "".join(ch for ch in phone if ch.isdigit())


def _queue_remaining_segments(to: str, segments: list[str]) -> None:
    from steambot.workers.tasks import deliver_sms_segments

    try:
        deliver_sms_segments.delay(to, segments)
    except Exception as e:
        # the first segment is already on its way; the rest is best-effort
        logger.error(
            "Failed to queue SMS segments",
            extra_data={"to": PhoneNumberValidator.mask(to), "segments": len(segments), "error": type(e).__name__},
            exc_info=True
        )


@router.post("/webhook", summary="Twilio inbound SMS webhook")
async def sms_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_twilio_signature),
) -> Response:
    form = await request.form()
    from_number = str(form.get("From") or "").strip()
    body = str(form.get("Body") or "")
    message_sid = str(form.get("MessageSid") or "")

    if not from_number:
        return Response(content="Missing required fields", status_code=400)

    phone = PhoneNumberValidator.normalize(from_number) or from_number
    session_id = session_id_for(phone)
    logger.info(
        "SMS received",
        extra_data={"from": PhoneNumberValidator.mask(phone), "message_sid": message_sid}
    )

    try:
        keyword = body.strip().upper()
        if keyword in OPT_OUT_KEYWORDS:
            conversations = ConversationService(db)
            conversation = await conversations.find_or_create_conversation(
                session_id, Channel.SMS, parent_phone=phone
            )
            await conversations.end_conversation(conversation.id)
            logger.info("SMS opt-out", extra_data={"from": PhoneNumberValidator.mask(phone)})
            return twiml(UNSUBSCRIBED_MESSAGE)
        if keyword in OPT_IN_KEYWORDS:
            logger.info("SMS opt-in", extra_data={"from": PhoneNumberValidator.mask(phone)})
            return twiml(RESUBSCRIBED_MESSAGE)

        result = await ChatService(db).handle_message(
            session_id, body, Channel.SMS, parent_phone=phone
        )
    except StorageError:
        return twiml(settings.fallback_message)

    segments = result.segments or [result.response]
    if len(segments) > 1:
        _queue_remaining_segments(from_number, segments[1:])
    return twiml(segments[0])
