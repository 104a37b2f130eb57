"""
Knowledge Entry Model - grounding facts for the assistant
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Text, Boolean

from steambot.db.database import Base, utcnow


class KnowledgeCategory(str, enum.Enum):
    PROGRAMS = "programs"
    PRICING = "pricing"
    FAQS = "faqs"
    POLICIES = "policies"


class KnowledgeEntry(Base):
    """One fact unit; only active entries reach the system prompt"""

    __tablename__ = "knowledge_base"

    id = Column(Integer, primary_key=True, index=True)
    category = Column(SQLEnum(KnowledgeCategory), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
