"""
Guardrail verdicts and the rule-chain runner.

A chain is an ordered tuple of ``Rule`` objects. Each rule wraps a pure
classifier returning a ``GuardrailVerdict`` (``GuardrailVerdict()`` means
"no match"). ``run_chain`` folds the pre-send chain, stopping at the first
block; ``collect`` runs every rule of the post-receive chain.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Callable

from steambot.core.logging import get_logger

logger = get_logger(__name__)


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

GUARDRAIL_ERROR = "guardrail_error"


@dataclass
class GuardrailVerdict:
    """Outcome of one classifier, or of a whole chain"""

    blocked: bool = False
    flagged: bool = False
    escalate: bool = False
    reason: str | None = None
    rewrite_text: str | None = None
    message: str | None = None
    severity: Severity | None = None
    flags: list[str] = field(default_factory=list)
    context_notes: list[str] = field(default_factory=list)
    needs_medical_disclaimer: bool = False
    append_text: str | None = None
    redacted_text: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def needs_escalation(self) -> bool:
        return self.escalate

    @property
    def matched(self) -> bool:
        return self.blocked or self.flagged or self.escalate

    @classmethod
    def block(
        cls,
        reason: str,
        message: str,
        severity: Severity = Severity.HIGH,
        escalate: bool = False,
        **kwargs: Any,
    ) -> "GuardrailVerdict":
        return cls(
            blocked=True,
            flagged=True,
            escalate=escalate,
            reason=reason,
            message=message,
            severity=severity,
            flags=[reason],
            **kwargs,
        )

    @classmethod
    def flag(
        cls,
        reason: str,
        severity: Severity = Severity.LOW,
        escalate: bool = False,
        **kwargs: Any,
    ) -> "GuardrailVerdict":
        return cls(
            flagged=True,
            escalate=escalate,
            reason=reason,
            severity=severity,
            flags=[reason],
            **kwargs,
        )

    def to_metadata(self) -> dict[str, Any]:
        """Compact form stored on the message row"""
        data: dict[str, Any] = {"flags": list(self.flags)}
        if self.blocked:
            data["blocked"] = True
            data["blocked_reason"] = self.reason
        if self.escalate:
            data["escalation_reason"] = self.reason
        if self.severity is not None:
            data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class Rule:
    """One classifier in a chain.

    ``blocking`` rules fail closed: if the classifier raises, the pre-send
    chain blocks with ``guardrail_error`` instead of letting the text through.
    """

    name: str
    check: Callable[..., GuardrailVerdict]
    blocking: bool = True


def max_severity(*severities: Severity | None) -> Severity | None:
    present = [s for s in severities if s is not None]
    if not present:
        return None
    return max(present, key=lambda s: s.rank)


def _call_rule(rule: Rule, *args: Any) -> GuardrailVerdict | None:
    """Run a classifier; a raised error is logged and reported as None"""
    try:
        return rule.check(*args)
    except Exception as e:
        logger.error(
            "Guardrail classifier raised",
            extra_data={"rule": rule.name, "error": type(e).__name__},
            exc_info=True,
        )
        return None


def run_chain(rules: tuple[Rule, ...], *args: Any, error_message: str = "") -> GuardrailVerdict:
    """
    Fold an ordered chain: stop at the first blocked verdict, accumulate flags.

    Returns:
        The blocking verdict (carrying every flag raised before it), or an
        unblocked verdict merging all flags, notes and annotations.
    """
    merged = GuardrailVerdict()

    for rule in rules:
        verdict = _call_rule(rule, *args)

        if verdict is None:
            if rule.blocking:
                verdict = GuardrailVerdict.block(
                    GUARDRAIL_ERROR, error_message, severity=Severity.HIGH
                )
            else:
                continue

        if verdict.blocked:
            verdict.flags = merged.flags + [f for f in verdict.flags if f not in merged.flags]
            verdict.context_notes = merged.context_notes + verdict.context_notes
            if verdict.redacted_text is None:
                verdict.redacted_text = merged.redacted_text
            verdict.details = {**merged.details, **verdict.details}
            return verdict

        if not verdict.matched:
            continue

        if merged.reason is None:
            merged.reason = verdict.reason
        merged.flagged = merged.flagged or verdict.flagged
        merged.escalate = merged.escalate or verdict.escalate
        merged.severity = max_severity(merged.severity, verdict.severity)
        merged.flags.extend(f for f in verdict.flags if f not in merged.flags)
        merged.context_notes.extend(verdict.context_notes)
        merged.needs_medical_disclaimer = (
            merged.needs_medical_disclaimer or verdict.needs_medical_disclaimer
        )
        if verdict.redacted_text is not None:
            merged.redacted_text = verdict.redacted_text
        merged.details.update(verdict.details)

    return merged


def collect(rules: tuple[Rule, ...], *args: Any) -> list[GuardrailVerdict]:
    """Run every rule and return the verdicts that matched, in chain order"""
    fired = []
    for rule in rules:
        verdict = _call_rule(rule, *args)
        if verdict is not None and verdict.matched:
            fired.append(verdict)
    return fired
