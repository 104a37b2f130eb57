"""
Conversation Service - storage reads and writes consumed by the chat pipeline

Every SQLAlchemy failure is rolled back, logged and re-raised as
``StorageError``: the one error class that reaches the channel boundary.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from steambot.core.exceptions import ErrorCode, NotFoundException, StorageError
from steambot.core.logging import get_logger
from steambot.db.models.conversation import Channel, Conversation, ConversationStatus
from steambot.db.models.knowledge_entry import KnowledgeCategory, KnowledgeEntry
from steambot.db.models.message import Message, MessageRole

logger = get_logger(__name__)

_CATEGORY_ORDER = {category: index for index, category in enumerate(KnowledgeCategory)}


class ConversationService:
    """Service for conversations, their messages and the knowledge base"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _storage(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Storage operation failed",
                extra_data={"operation": operation, "error": type(e).__name__},
                exc_info=True
            )
            raise StorageError(operation) from e

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        async with self._storage("get_conversation"):
            result = await self.db.execute(
                select(Conversation).where(Conversation.id == conversation_id)
            )
            return result.scalar_one_or_none()

    async def get_by_session_id(self, session_id: str) -> Conversation | None:
        async with self._storage("get_by_session_id"):
            result = await self.db.execute(
                select(Conversation).where(Conversation.session_id == session_id)
            )
            return result.scalar_one_or_none()

    async def _require(self, conversation_id: int) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundException(
                "Conversation", conversation_id, error_code=ErrorCode.CONVERSATION_NOT_FOUND
            )
        return conversation

    async def find_or_create_conversation(
        self,
        session_id: str,
        channel: Channel = Channel.WEB,
        parent_phone: str | None = None,
    ) -> Conversation:
        """
        Fetch the conversation for ``session_id``, creating it on first contact.

        A concurrent insert of the same session id loses on the unique
        constraint and re-reads the winner's row.
        """
        existing = await self.get_by_session_id(session_id)
        if existing is not None:
            return existing

        async with self._storage("find_or_create_conversation"):
            conversation = Conversation(
                session_id=session_id,
                channel=channel,
                parent_phone=parent_phone,
                status=ConversationStatus.ACTIVE,
            )
            self.db.add(conversation)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                result = await self.db.execute(
                    select(Conversation).where(Conversation.session_id == session_id)
                )
                return result.scalar_one()
            await self.db.refresh(conversation)

        logger.info(
            "Conversation created",
            extra_data={"conversation_id": conversation.id, "channel": Channel(channel).value}
        )
        return conversation

    async def update_lead(
        self,
        conversation_id: int,
        *,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        program_interest: str | None = None,
    ) -> Conversation:
        """Partial update: only non-empty values overwrite stored lead fields"""
        conversation = await self._require(conversation_id)
        updates = {
            "parent_name": name,
            "parent_email": email,
            "parent_phone": phone,
            "program_interest": program_interest,
        }
        changed = [column for column, value in updates.items() if value and value.strip()]
        if not changed:
            return conversation

        async with self._storage("update_lead"):
            for column in changed:
                setattr(conversation, column, updates[column].strip())
            await self.db.commit()
            await self.db.refresh(conversation)

        logger.info(
            "Lead captured",
            extra_data={"conversation_id": conversation_id, "fields": changed}
        )
        return conversation

    async def escalate_conversation(self, conversation_id: int, reason: str | None) -> Conversation:
        """
        Mark a conversation for human follow-up.

        The reason is overwritten on every escalation. An ended conversation
        keeps its status and only records the reason.
        """
        conversation = await self._require(conversation_id)
        async with self._storage("escalate_conversation"):
            if conversation.can_transition_to(ConversationStatus.ESCALATED):
                conversation.status = ConversationStatus.ESCALATED
            conversation.escalation_reason = reason
            await self.db.commit()
            await self.db.refresh(conversation)

        logger.info(
            "Conversation escalated",
            extra_data={
                "conversation_id": conversation_id,
                "reason": reason,
                "status": ConversationStatus(conversation.status).value,
            }
        )
        return conversation

    async def end_conversation(self, conversation_id: int) -> Conversation:
        conversation = await self._require(conversation_id)
        if not conversation.can_transition_to(ConversationStatus.ENDED):
            return conversation

        async with self._storage("end_conversation"):
            conversation.status = ConversationStatus.ENDED
            await self.db.commit()
            await self.db.refresh(conversation)

        logger.info("Conversation ended", extra_data={"conversation_id": conversation_id})
        return conversation

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append one immutable message"""
        async with self._storage("save_message"):
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                meta=dict(metadata or {}),
            )
            self.db.add(message)
            await self.db.commit()
            await self.db.refresh(message)
        return message

    async def get_history(self, conversation_id: int, limit: int | None = None) -> list[Message]:
        """Messages in chronological order; with ``limit``, only the most recent ones"""
        async with self._storage("get_history"):
            query = select(Message).where(Message.conversation_id == conversation_id)
            if limit is not None:
                query = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
                result = await self.db.execute(query)
                return list(reversed(result.scalars().all()))

            query = query.order_by(Message.created_at.asc(), Message.id.asc())
            result = await self.db.execute(query)
            return list(result.scalars().all())

    async def count_assistant_messages(self, conversation_id: int) -> int:
        async with self._storage("count_assistant_messages"):
            result = await self.db.execute(
                select(func.count(Message.id)).where(
                    Message.conversation_id == conversation_id,
                    Message.role == MessageRole.ASSISTANT,
                )
            )
            return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    async def get_active_knowledge(self) -> list[KnowledgeEntry]:
        """Active entries ordered by category (enum order), then title"""
        async with self._storage("get_active_knowledge"):
            result = await self.db.execute(
                select(KnowledgeEntry).where(KnowledgeEntry.is_active.is_(True))
            )
            entries = list(result.scalars().all())
        entries.sort(key=lambda e: (_CATEGORY_ORDER[KnowledgeCategory(e.category)], e.title))
        return entries
