"""
Post-receive guardrail chain.

``check_escalation`` runs every rule of ``POST_RECEIVE_RULES`` against the
model reply (and the user's message) and combines the results:

- all fired reasons land in ``flags``, in chain order
- the first rewrite wins (critical rules come first)
- ``reason`` is the user-message trigger when one fired, otherwise the first
  escalating model-side reason, otherwise the first flag

``post_process`` turns the reply plus verdict into the text actually sent.
"""
import re
from dataclasses import dataclass

from steambot.core.config import settings
from steambot.core.logging import get_logger
from steambot.core.validation import EmailValidator, PhoneNumberValidator
from steambot.domain.guardrails import patterns as p
from steambot.domain.guardrails.pre_send import (
    classify_url,
    find_card_numbers,
    find_competitors,
    find_ssns,
    find_urls,
)
from steambot.domain.guardrails.verdict import GuardrailVerdict, Rule, Severity, collect, max_severity

logger = get_logger(__name__)

MIN_SENTENCE_CUT = 200
ELLIPSIS = "…"
_SENTENCE_END = re.compile(r"[.!?][\"')\]*_]*(?=\s|$)")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class PostReceiveInput:
    model_text: str
    user_text: str
    grounding_text: str | None = None


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().lower()


def _negated(text: str, start: int) -> bool:
    return p.NEGATED_BEFORE.search(text[max(0, start - 60):start]) is not None


# ============================================================================
# Classifiers, in chain order
# ============================================================================

def check_enrollment_confirmation(data: PostReceiveInput) -> GuardrailVerdict:
    match = p.ENROLLMENT_CONFIRMATION.search(data.model_text)
    if match is None:
        return GuardrailVerdict()
    return GuardrailVerdict.flag(
        p.ENROLLMENT_CONFIRMATION_DETECTED,
        severity=Severity.CRITICAL,
        escalate=True,
        rewrite_text=p.render(p.ENROLLMENT_REDIRECT_MESSAGE),
        details={"phrase": match.group(0).lower()},
    )


def check_pii_echo(data: PostReceiveInput) -> GuardrailVerdict:
    sensitive = find_card_numbers(data.user_text) + find_ssns(data.user_text)
    if not sensitive:
        return GuardrailVerdict()

    reply_digits = re.sub(r"\D", "", data.model_text)
    for digits in sensitive:
        last_four = re.compile(rf"(?<!\d){digits[-4:]}(?!\d)")
        if digits in reply_digits or last_four.search(data.model_text):
            return GuardrailVerdict.flag(
                p.PII_ECHO_DETECTED,
                severity=Severity.CRITICAL,
                escalate=True,
                rewrite_text=p.render(p.PII_REMOVED_MESSAGE),
            )
    return GuardrailVerdict()


def check_contact_info(data: PostReceiveInput) -> GuardrailVerdict:
    text = data.model_text
    mismatches: list[str] = []

    mismatches.extend(
        email for email in EmailValidator.find_all(text)
        if not EmailValidator.is_organization_address(email)
    )
    mismatches.extend(
        phone for phone in PhoneNumberValidator.find_all(text)
        if not PhoneNumberValidator.is_organization_number(phone)
    )
    mismatches.extend(url for url in find_urls(text) if classify_url(url) is not None)

    if not mismatches:
        return GuardrailVerdict()
    return GuardrailVerdict.flag(
        p.CONTACT_INFO_MISMATCH,
        severity=Severity.MEDIUM,
        append_text=p.render(p.CONTACT_BLOCK),
        details={"mismatched_contacts": len(mismatches)},
    )


def check_hallucination(data: PostReceiveInput) -> GuardrailVerdict:
    grounding = _normalize(data.grounding_text) if data.grounding_text else ""
    tags = []
    for tag, pattern in p.HALLUCINATION_MARKERS:
        for match in pattern.finditer(data.model_text):
            if grounding and _normalize(match.group(0)) in grounding:
                continue
            if tag in p.NEGATABLE_MARKERS and _negated(data.model_text, match.start()):
                continue
            tags.append(tag)
            break

    if not tags:
        return GuardrailVerdict()
    return GuardrailVerdict.flag(
        p.HALLUCINATION_SUSPECTED,
        severity=Severity.MEDIUM,
        escalate=True,
        details={"hallucination_tags": tags},
    )


def check_competitor_in_response(data: PostReceiveInput) -> GuardrailVerdict:
    if find_competitors(data.model_text):
        return GuardrailVerdict.flag(p.COMPETITOR_IN_RESPONSE, severity=Severity.LOW)
    return GuardrailVerdict()


def check_tone(data: PostReceiveInput) -> GuardrailVerdict:
    if p.HOSTILE_TONE_PATTERN.search(data.model_text):
        return GuardrailVerdict.flag(
            p.HOSTILE_TONE,
            severity=Severity.HIGH,
            rewrite_text=p.render(p.APOLOGETIC_MESSAGE),
        )
    return GuardrailVerdict()


def check_user_triggers(data: PostReceiveInput) -> GuardrailVerdict:
    fired = [rule for rule in p.USER_ESCALATION_TRIGGERS if rule.pattern.search(data.user_text)]
    if not fired:
        return GuardrailVerdict()
    return GuardrailVerdict(
        flagged=True,
        escalate=True,
        reason=fired[0].reason,
        severity=max_severity(*(rule.severity for rule in fired)),
        flags=[rule.reason for rule in fired],
        details={"user_trigger": True},
    )


def check_ai_handoff(data: PostReceiveInput) -> GuardrailVerdict:
    if p.HANDOFF_LANGUAGE.search(data.model_text):
        return GuardrailVerdict.flag(p.AI_SUGGESTED_HANDOFF, severity=Severity.LOW, escalate=True)
    return GuardrailVerdict()


POST_RECEIVE_RULES: tuple[Rule, ...] = (
    Rule("enrollment_confirmation", check_enrollment_confirmation),
    Rule("pii_echo", check_pii_echo),
    Rule("contact_info", check_contact_info),
    Rule("hallucination", check_hallucination),
    Rule("competitor_in_response", check_competitor_in_response),
    Rule("tone", check_tone),
    Rule("user_triggers", check_user_triggers),
    Rule("ai_handoff", check_ai_handoff),
)


def combine(fired: list[GuardrailVerdict]) -> GuardrailVerdict:
    """Merge the verdicts of one post-receive run"""
    combined = GuardrailVerdict()
    user_reason = None
    escalation_reason = None

    for verdict in fired:
        combined.flagged = combined.flagged or verdict.flagged
        combined.escalate = combined.escalate or verdict.escalate
        combined.severity = max_severity(combined.severity, verdict.severity)
        combined.flags.extend(f for f in verdict.flags if f not in combined.flags)
        if combined.rewrite_text is None and verdict.rewrite_text:
            combined.rewrite_text = verdict.rewrite_text
        if combined.append_text is None and verdict.append_text:
            combined.append_text = verdict.append_text
        if verdict.details.get("user_trigger"):
            user_reason = user_reason or verdict.reason
        elif verdict.escalate:
            escalation_reason = escalation_reason or verdict.reason
        combined.details.update({k: v for k, v in verdict.details.items() if k != "user_trigger"})

    combined.reason = user_reason or escalation_reason or (combined.flags[0] if combined.flags else None)
    return combined


def check_escalation(
    model_text: str,
    user_text: str,
    *,
    grounding_text: str | None = None,
    rules: tuple[Rule, ...] = POST_RECEIVE_RULES,
) -> GuardrailVerdict:
    """
    Classify a model reply and the message that prompted it.

    Args:
        model_text: Raw model output
        user_text: The user's (sanitized) message
        grounding_text: Knowledge the reply may legitimately repeat

    Returns:
        Combined verdict; never blocked, possibly with a rewrite
    """
    data = PostReceiveInput(model_text or "", user_text or "", grounding_text)
    verdict = combine(collect(rules, data))

    if verdict.flags:
        logger.info(
            "Post-receive guardrail fired",
            extra_data={
                "reason": verdict.reason,
                "flags": verdict.flags,
                "escalate": verdict.escalate,
                "rewritten": verdict.rewrite_text is not None,
            }
        )
    return verdict


def truncate_reply(text: str, limit: int | None = None) -> str:
    """
    Cut a reply to ``limit`` characters at the last sentence boundary.

    Falls back to a word-boundary cut with an ellipsis when no sentence ends
    beyond ``MIN_SENTENCE_CUT`` characters.
    """
    if limit is None:
        limit = settings.MAX_RESPONSE_CHARS
    if len(text) <= limit:
        return text

    window = text[:limit]
    cut = 0
    for match in _SENTENCE_END.finditer(window):
        cut = match.end()
    if cut > MIN_SENTENCE_CUT:
        return window[:cut].rstrip()

    window = text[: limit - len(ELLIPSIS)]
    boundary = max(window.rfind(" "), window.rfind("\n"))
    if boundary > 0:
        window = window[:boundary]
    return window.rstrip() + ELLIPSIS


def with_footer(text: str, footer: str | None) -> str:
    """``text`` cut so that it and the appended ``footer`` fit the reply limit"""
    if not footer:
        return text
    suffix = f"\n\n{footer}"
    return truncate_reply(text, settings.MAX_RESPONSE_CHARS - len(suffix)) + suffix

def post_process(
    model_text: str,
    verdict: GuardrailVerdict,
    *,
    needs_medical_disclaimer: bool = False,
    footer: str | None = None,
) -> str:
    """
    Build the reply actually sent.

    The rewrite (or the model text) is truncated first so that appended
    blocks, disclaimer, escalation invitation and ``footer`` always survive
    the limit.
    """
    body = verdict.rewrite_text or (model_text or "").strip()
    additions: list[str] = []

    if verdict.append_text and not verdict.rewrite_text:
        additions.append(verdict.append_text)

    if needs_medical_disclaimer or verdict.needs_medical_disclaimer:
        if not p.MEDICAL_DISCLAIMER_PRESENT.search(body):
            additions.append(p.MEDICAL_DISCLAIMER)

    if verdict.escalate:
        if not p.HANDOFF_LANGUAGE.search(" ".join([body, *additions])):
            additions.append(p.render(p.ESCALATION_INVITATION))

    if footer:
        additions.append(footer)

    suffix = "".join(f"\n\n{addition}" for addition in additions)
    body = truncate_reply(body, settings.MAX_RESPONSE_CHARS - len(suffix))
    return body + suffix
