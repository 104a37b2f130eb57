"""
Domain Services

``ChatService`` is imported from ``steambot.domain.services.chat_service``
directly: it depends on the guardrails package, which itself uses the flood
monitor from this package.
"""
from steambot.domain.services.conversation_service import ConversationService
from steambot.domain.services.context_builder import ContextBuilder, ModelContext
from steambot.domain.services.flood_monitor import FloodMonitor, get_flood_monitor
from steambot.domain.services.lead_extractor import LeadInfo, extract_lead_info
from steambot.domain.services.model_client import ModelInvoker, ModelReply, get_model_invoker
from steambot.domain.services.response_formatter import format_for_channel

__all__ = [
    "ConversationService",
    "ContextBuilder",
    "ModelContext",
    "FloodMonitor",
    "get_flood_monitor",
    "LeadInfo",
    "extract_lead_info",
    "ModelInvoker",
    "ModelReply",
    "get_model_invoker",
    "format_for_channel",
]
