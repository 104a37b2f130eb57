"""
Guardrails - deterministic checks before and after every model call
"""
from steambot.domain.guardrails.verdict import GuardrailVerdict, Rule, Severity
from steambot.domain.guardrails.pre_send import apply_guardrails, redact_sensitive
from steambot.domain.guardrails.post_receive import check_escalation, post_process, with_footer

__all__ = [
    "GuardrailVerdict",
    "Rule",
    "Severity",
    "apply_guardrails",
    "redact_sensitive",
    "check_escalation",
    "post_process",
    "with_footer",
]
