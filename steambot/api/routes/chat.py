"""
Web Chat API Routes
"""
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from steambot.core.config import settings
from steambot.core.exceptions import ValidationException
from steambot.core.logging import get_logger
from steambot.core.validation import EmailValidator, PhoneNumberValidator, TextSanitizer, ValidationPatterns
from steambot.db.database import get_db
from steambot.db.models.conversation import Channel
from steambot.db.models.message import MessageRole
from steambot.domain.services.chat_service import ChatService
from steambot.domain.services.conversation_service import ConversationService

logger = get_logger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Inbound widget message; validated in the handler so rejects are 400s"""
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId", max_length=255)


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str = Field(serialization_alias="sessionId")
    escalation: bool
    conversation_id: int = Field(serialization_alias="conversationId")


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=255)


class LeadRequest(SessionRequest):
    """Lead fields entered explicitly in the widget form"""
    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    program_interest: str | None = Field(default=None, alias="programInterest", max_length=255)

    @field_validator("name", "program_interest")
    @classmethod
    def clean_text(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return TextSanitizer.sanitize(v, max_length=255) or None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if not v:
            return None
        v = v.strip().lower()
        if not ValidationPatterns.EMAIL.fullmatch(v):
            raise ValueError("Invalid email address")
        if EmailValidator.is_organization_address(v):
            raise ValueError("Please enter your own email address")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if not v:
            return None
        normalized = PhoneNumberValidator.normalize(v)
        if normalized is None:
            raise ValueError("Invalid phone number format")
        return normalized


class SuccessResponse(BaseModel):
    success: bool = True


class HistoryMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime | None


class HistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(serialization_alias="sessionId")
    messages: list[HistoryMessage]


@router.post(
    "",
    response_model=ChatResponse,
    response_model_by_alias=True,
    summary="Send a chat message",
)
async def post_message(
    payload: ChatRequest,
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    """Run one widget message through the guardrail pipeline"""
    message = (payload.message or "").strip()
    if not message:
        raise ValidationException("Message is required", field="message")
    if len(message) > settings.MAX_INPUT_CHARS:
        raise ValidationException(
            f"Message too long (max {settings.MAX_INPUT_CHARS} characters)", field="message"
        )

    session_id = payload.session_id or f"web_{uuid.uuid4()}"
    result = await ChatService(db).handle_message(session_id, message, Channel.WEB)

    return ChatResponse(
        response=result.response,
        session_id=session_id,
        escalation=result.escalation,
        conversation_id=result.conversation_id,
    )


@router.post("/lead", response_model=SuccessResponse, summary="Save lead details")
async def save_lead(
    payload: LeadRequest,
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    service = ConversationService(db)
    conversation = await service.find_or_create_conversation(payload.session_id, Channel.WEB)
    await service.update_lead(
        conversation.id,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        program_interest=payload.program_interest,
    )
    return SuccessResponse()


@router.post("/end", response_model=SuccessResponse, summary="End a chat session")
async def end_chat(
    payload: SessionRequest,
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    service = ConversationService(db)
    conversation = await service.get_by_session_id(payload.session_id)
    if conversation is not None:
        await service.end_conversation(conversation.id)
    return SuccessResponse()


@router.get(
    "/history/{session_id}",
    response_model=HistoryResponse,
    response_model_by_alias=True,
    summary="Conversation history for a session",
)
async def get_history(
    session_id: str,
    db: AsyncSession = Depends(get_db),
) -> HistoryResponse:
    """User and assistant turns in chronological order; unknown sessions are empty"""
    service = ConversationService(db)
    conversation = await service.get_by_session_id(session_id)
    messages = await service.get_history(conversation.id) if conversation else []

    return HistoryResponse(
        session_id=session_id,
        messages=[
            HistoryMessage(
                role=MessageRole(m.role).value,
                content=m.content,
                timestamp=m.created_at,
            )
            for m in messages
            if MessageRole(m.role) != MessageRole.SYSTEM
        ],
    )
