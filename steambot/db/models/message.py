"""
Message Model - one immutable turn of a conversation
"""
import enum
from sqlalchemy import Column, Integer, DateTime, Enum as SQLEnum, ForeignKey, JSON, Text, Index

from steambot.db.database import Base, utcnow


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(Base):
    """Single message; never updated after insert"""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(SQLEnum(MessageRole), nullable=False)
    content = Column(Text, nullable=False)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, default=dict, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def was_blocked(self) -> bool:
        return bool((self.meta or {}).get("blocked"))
