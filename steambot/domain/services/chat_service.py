"""
Chat Service - the per-message pipeline

sanitize -> pre-send chain -> persist user message -> (blocked: canned reply)
-> context -> model -> post-receive chain -> persist reply -> escalate
-> lead capture.

Storage failures propagate as ``StorageError``; everything else ends in a
reply.
"""
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from steambot.core.logging import bind_session, get_logger, log_async_operation
from steambot.core.validation import sanitize
from steambot.db.models.conversation import Channel, Conversation
from steambot.db.models.message import MessageRole
from steambot.domain.guardrails import apply_guardrails, check_escalation, post_process, with_footer
from steambot.domain.guardrails.patterns import SENSITIVE_PII_REASONS
from steambot.domain.guardrails.pre_send import mask_session_id
from steambot.domain.guardrails.verdict import GuardrailVerdict
from steambot.domain.services.context_builder import ContextBuilder
from steambot.domain.services.conversation_service import ConversationService
from steambot.domain.services.flood_monitor import FloodMonitor
from steambot.domain.services.lead_extractor import extract_lead_info
from steambot.domain.services.model_client import ModelInvoker, get_model_invoker
from steambot.domain.services.response_formatter import format_for_channel

logger = get_logger(__name__)

SMS_OPT_OUT_NOTICE = "Reply STOP to unsubscribe."


@dataclass
class ChatResult:
    response: str
    session_id: str
    conversation_id: int
    escalation: bool = False
    escalation_reason: str | None = None
    blocked: bool = False
    blocked_reason: str | None = None
    fallback: bool = False
    segments: list[str] = field(default_factory=list)


class ChatService:
    """Runs one inbound message through guardrails, the model and storage"""

    def __init__(
        self,
        db: AsyncSession,
        *,
        invoker: ModelInvoker | None = None,
        flood_monitor: FloodMonitor | None = None,
        today: date | None = None,
    ):
        self.conversations = ConversationService(db)
        self.context_builder = ContextBuilder(self.conversations)
        self.invoker = invoker
        self.flood_monitor = flood_monitor
        self.today = today

    def _get_invoker(self) -> ModelInvoker:
        if self.invoker is None:
            self.invoker = get_model_invoker()
        return self.invoker

    @log_async_operation("chat_message")
    async def handle_message(
        self,
        session_id: str,
        raw_text: str,
        channel: Channel = Channel.WEB,
        *,
        parent_phone: str | None = None,
    ) -> ChatResult:
        """
        Process one user message and return the reply to deliver.

        Raises:
            StorageError: conversation state could not be read or written
        """
        bind_session(session_id)
        text = sanitize(raw_text)
        conversation = await self.conversations.find_or_create_conversation(
            session_id, channel, parent_phone=parent_phone
        )
        first_reply = (
            Channel(channel) == Channel.SMS
            and await self.conversations.count_assistant_messages(conversation.id) == 0
        )

        pre = apply_guardrails(
            text, session_id, flood_monitor=self.flood_monitor, today=self.today
        )

        user_metadata = pre.to_metadata()
        if "age_range" in pre.details:
            user_metadata["age_range"] = pre.details["age_range"]
        user_message = await self.conversations.save_message(
            conversation.id,
            MessageRole.USER,
            pre.redacted_text if pre.redacted_text is not None else text,
            user_metadata,
        )

        if pre.blocked:
            return await self._reply_blocked(conversation, pre, text, channel, first_reply)

        context = await self.context_builder.build_context(
            conversation.id,
            hints=pre.context_notes,
            exclude_message_id=user_message.id,
        )
        model_input = pre.redacted_text if pre.redacted_text is not None else text
        reply = await self._get_invoker().invoke(context.system_prompt, context.history, model_input)

        footer = SMS_OPT_OUT_NOTICE if first_reply else None
        if reply.fallback:
            post = check_escalation("", text, grounding_text=context.grounding_text)
            response = with_footer(reply.text, footer)
        else:
            post = check_escalation(reply.text, text, grounding_text=context.grounding_text)
            response = post_process(
                reply.text,
                post,
                needs_medical_disclaimer=pre.needs_medical_disclaimer,
                footer=footer,
            )

        assistant_metadata = reply.to_metadata()
        assistant_metadata["flags"] = list(pre.flags) + [f for f in post.flags if f not in pre.flags]
        if post.escalate:
            assistant_metadata["escalation_reason"] = post.reason
        if "hallucination_tags" in post.details:
            assistant_metadata["hallucination_tags"] = post.details["hallucination_tags"]
        await self.conversations.save_message(
            conversation.id, MessageRole.ASSISTANT, response, assistant_metadata
        )

        if post.escalate:
            await self.conversations.escalate_conversation(conversation.id, post.reason)

        await self._capture_lead(conversation.id, text)

        return ChatResult(
            response=response,
            session_id=session_id,
            conversation_id=conversation.id,
            escalation=post.escalate,
            escalation_reason=post.reason if post.escalate else None,
            fallback=reply.fallback,
            segments=self._segments(response, channel),
        )

    async def _reply_blocked(
        self,
        conversation: Conversation,
        verdict: GuardrailVerdict,
        text: str,
        channel: Channel,
        first_reply: bool,
    ) -> ChatResult:
        response = with_footer(verdict.message or "", SMS_OPT_OUT_NOTICE if first_reply else None)

        await self.conversations.save_message(
            conversation.id, MessageRole.ASSISTANT, response, verdict.to_metadata()
        )
        if verdict.escalate:
            await self.conversations.escalate_conversation(conversation.id, verdict.reason)
        if verdict.reason not in SENSITIVE_PII_REASONS:
            await self._capture_lead(conversation.id, text)

        logger.info(
            "Replied with canned guardrail message",
            extra_data={
                "session_id": mask_session_id(conversation.session_id),
                "reason": verdict.reason,
                "escalate": verdict.escalate,
            }
        )
        return ChatResult(
            response=response,
            session_id=conversation.session_id,
            conversation_id=conversation.id,
            escalation=verdict.escalate,
            escalation_reason=verdict.reason if verdict.escalate else None,
            blocked=True,
            blocked_reason=verdict.reason,
            segments=self._segments(response, channel),
        )

    async def _capture_lead(self, conversation_id: int, text: str) -> None:
        lead = extract_lead_info(text)
        if lead.is_empty:
            return
        await self.conversations.update_lead(
            conversation_id,
            name=lead.name,
            email=lead.email,
            phone=lead.phone,
            program_interest=lead.program_interest,
        )

    @staticmethod
    def _segments(response: str, channel: Channel) -> list[str]:
        if Channel(channel) == Channel.SMS:
            return format_for_channel(response, channel)
        return [response]
