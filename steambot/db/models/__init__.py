"""
Database Models
"""
from steambot.db.models.conversation import (
    Channel,
    Conversation,
    ConversationStatus,
)
from steambot.db.models.message import Message, MessageRole
from steambot.db.models.knowledge_entry import KnowledgeCategory, KnowledgeEntry

__all__ = [
    "Channel",
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageRole",
    "KnowledgeCategory",
    "KnowledgeEntry",
]
