"""
Conversation Model - one continuous exchange with a parent
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Text

from steambot.db.database import Base, utcnow


class Channel(str, enum.Enum):
    WEB = "web"
    SMS = "sms"


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    ENDED = "ended"


# One-way lifecycle; ENDED is terminal
ALLOWED_STATUS_TRANSITIONS: dict[ConversationStatus, set[ConversationStatus]] = {
    ConversationStatus.ACTIVE: {ConversationStatus.ESCALATED, ConversationStatus.ENDED},
    ConversationStatus.ESCALATED: {ConversationStatus.ENDED},
    ConversationStatus.ENDED: set(),
}


class Conversation(Base):
    """Conversation keyed by an opaque per-channel session id"""

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), unique=True, nullable=False, index=True)
    channel = Column(SQLEnum(Channel), nullable=False, default=Channel.WEB)

    # Lead fields
    parent_name = Column(String(255), nullable=True)
    parent_email = Column(String(255), nullable=True)
    parent_phone = Column(String(50), nullable=True)
    program_interest = Column(String(255), nullable=True)

    status = Column(SQLEnum(ConversationStatus), nullable=False, default=ConversationStatus.ACTIVE, index=True)
    escalation_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def can_transition_to(self, status: ConversationStatus) -> bool:
        return status in ALLOWED_STATUS_TRANSITIONS[ConversationStatus(self.status)]
