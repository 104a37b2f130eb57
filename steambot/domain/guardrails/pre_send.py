"""
Pre-send guardrail chain.

Runs against sanitized user text before the model is called. The chain is
the ordered ``PRE_SEND_RULES`` tuple folded by ``run_chain``: the first
blocking verdict wins, flags (date of birth, competitor, off-topic, medical)
accumulate and travel with the verdict as context hints.
"""
import ipaddress
import re
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from urllib.parse import urlsplit

import redis

from steambot.core.config import settings
from steambot.core.logging import get_logger
from steambot.core.validation import PhoneNumberValidator
from steambot.domain.guardrails import patterns as p
from steambot.domain.guardrails.verdict import GuardrailVerdict, Rule, Severity, run_chain
from steambot.domain.services.flood_monitor import FloodMonitor, get_flood_monitor

logger = get_logger(__name__)


@dataclass
class PreSendContext:
    session_id: str
    flood_monitor: FloodMonitor
    today: date = field(default_factory=date.today)


def mask_session_id(session_id: str) -> str:
    """SMS session ids embed the sender's number"""
    if session_id.startswith("sms_"):
        return PhoneNumberValidator.mask(session_id)
    return session_id


# ============================================================================
# Detectors shared with the post-receive chain
# ============================================================================

def find_card_numbers(text: str) -> list[str]:
    """
    Card-like digit runs (digits only).

    Any 16-digit run counts; 13-15 digit runs count only with a major issuer
    prefix.
    """
    found = []
    for match in p.CARD_CANDIDATE.finditer(text or ""):
        digits = re.sub(r"\D", "", match.group(0))
        if len(digits) == 16 or p.CARD_ISSUER_PREFIX.match(digits):
            found.append(digits)
    return found


def _is_valid_ssn(area: str, group: str, serial: str) -> bool:
    area_number = int(area)
    return (
        1 <= area_number <= 899
        and area_number != 666
        and group != "00"
        and serial != "0000"
    )


def find_ssns(text: str) -> list[str]:
    """SSN-shaped sequences passing the area/group/serial range check (digits only)"""
    return [
        f"{m.group(1)}{m.group(3)}{m.group(4)}"
        for m in p.SSN_CANDIDATE.finditer(text or "")
        if _is_valid_ssn(m.group(1), m.group(3), m.group(4))
    ]


def _redact_cards(text: str) -> str:
    def replace(match: re.Match) -> str:
        digits = re.sub(r"\D", "", match.group(0))
        if len(digits) == 16 or p.CARD_ISSUER_PREFIX.match(digits):
            return p.CARD_REDACTION
        return match.group(0)

    return p.CARD_CANDIDATE.sub(replace, text)


def _redact_ssns(text: str) -> str:
    def replace(match: re.Match) -> str:
        if _is_valid_ssn(match.group(1), match.group(3), match.group(4)):
            return p.SSN_REDACTION
        return match.group(0)

    return p.SSN_CANDIDATE.sub(replace, text)


def age_range_for(birth_date: date, today: date) -> str:
    age = today.year - birth_date.year - ((today.month, today.day) < (birth_date.month, birth_date.day))
    if age < 0:
        return p.UNKNOWN_AGE_RANGE
    for upper, label in p.AGE_RANGES:
        if age < upper:
            return label
    return p.ADULT_AGE_RANGE


def _parse_birth_date(match: re.Match, today: date) -> date | None:
    g = match.groupdict()
    try:
        if g["y1"]:
            year = int(g["y1"])
            if year < 100:
                year += 2000 if year <= today.year % 100 else 1900
            return date(year, int(g["m1"]), int(g["d1"]))
        if g["y2"]:
            return date(int(g["y2"]), int(g["m2"]), int(g["d2"]))
        if g["y3"]:
            return date(int(g["y3"]), p.MONTH_NUMBERS[g["mon3"][:3].lower()], int(g["d3"]))
        if g["y4"]:
            return date(int(g["y4"]), p.MONTH_NUMBERS[g["mon4"][:3].lower()], int(g["d4"]))
    except ValueError:
        return None
    return None


def redact_dates_of_birth(text: str, today: date) -> tuple[str, list[str]]:
    """Replace each disclosed birth date with its age range; return the ranges"""
    ranges: list[str] = []

    def replace(match: re.Match) -> str:
        birth_date = _parse_birth_date(match, today)
        age_range = age_range_for(birth_date, today) if birth_date else p.UNKNOWN_AGE_RANGE
        ranges.append(age_range)
        prefix = match.group(0)[: match.start("date") - match.start()]
        return prefix + p.DOB_REDACTION.format(age_range=age_range)

    return p.DOB_PATTERN.sub(replace, text), ranges


def redact_sensitive(text: str, today: date | None = None) -> str:
    """Text safe to persist: card, ID, account, credential and birth-date details removed"""
    redacted = _redact_cards(text)
    redacted = _redact_ssns(redacted)
    for rule in p.BANK_ACCOUNT_RULES:
        redacted = rule.pattern.sub(p.ACCOUNT_REDACTION, redacted)
    for rule in p.CREDENTIAL_RULES:
        redacted = rule.pattern.sub(p.CREDENTIAL_REDACTION, redacted)
    redacted, _ = redact_dates_of_birth(redacted, today or date.today())
    return redacted


def is_allowed_host(host: str) -> bool:
    host = host.lower().rstrip(".")
    return any(host == d or host.endswith("." + d) for d in settings.allowed_link_domains)


def classify_url(candidate: str) -> str | None:
    """None for an allowed link, otherwise ``unsafe_url`` or ``malformed_url``"""
    url = candidate.rstrip(p.URL_TRAILING_PUNCTUATION)
    if not url:
        return None

    try:
        parts = urlsplit(url if "://" in url else f"http://{url}")
        host = parts.hostname
        parts.port  # raises ValueError on a bad port
    except ValueError:
        return p.MALFORMED_URL

    if parts.scheme not in ("http", "https"):
        return p.UNSAFE_URL
    if not host:
        return p.MALFORMED_URL

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        return p.UNSAFE_URL

    if not p.HOSTNAME.match(host):
        return p.MALFORMED_URL
    if parts.username or parts.password or not is_allowed_host(host):
        return p.UNSAFE_URL
    return None


def find_urls(text: str) -> list[str]:
    """Explicit links plus bare domain names ending in a known TLD"""
    text = text or ""
    urls = [m.group(0) for m in p.URL_CANDIDATE.finditer(text)]
    for match in p.BARE_DOMAIN_CANDIDATE.finditer(text):
        labels = match.group(0).split("/", 1)[0].lower().split(".")
        if any(label in p.LINK_TLDS for label in labels[1:]):
            urls.append(match.group(0))
    return urls


@lru_cache(maxsize=8)
def _competitor_pattern(names: tuple[str, ...]) -> re.Pattern | None:
    if not names:
        return None
    alternatives = "|".join(r"\s+".join(map(re.escape, name.split())) for name in names)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


def find_competitors(text: str) -> list[str]:
    pattern = _competitor_pattern(tuple(settings.competitor_names))
    if pattern is None:
        return []
    return [m.group(0) for m in pattern.finditer(text or "")]


# ============================================================================
# Classifiers, in chain order
# ============================================================================

def check_flood(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    try:
        result = ctx.flood_monitor.check_flood(ctx.session_id)
    except redis.RedisError as e:
        # flood state is best-effort: a store outage lets the message through
        logger.warning(
            "Flood store unavailable",
            extra_data={"session_id": mask_session_id(ctx.session_id), "error": type(e).__name__}
        )
        return GuardrailVerdict()

    if result.blocked:
        return GuardrailVerdict.block(
            result.reason, result.message, severity=Severity.MEDIUM,
            details={"messages_in_window": result.count},
        )
    return GuardrailVerdict()


def check_garbage(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    if not text:
        return GuardrailVerdict.block(p.EMPTY_INPUT, p.EMPTY_INPUT_MESSAGE, severity=Severity.LOW)

    garbage = (
        (len(text) == 1 and not text.isalnum())
        or p.REPEATED_CHARACTER.search(text) is not None
        or (
            len(text) > p.GARBAGE_MIN_LENGTH
            and sum(c.isalnum() or c == " " for c in text) / len(text) < p.GARBAGE_MIN_ALNUM_RATIO
        )
    )
    if garbage:
        return GuardrailVerdict.block(p.GARBAGE_INPUT, p.GARBAGE_INPUT_MESSAGE, severity=Severity.LOW)
    return GuardrailVerdict()


def check_prompt_injection(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    rule = p.first_match(p.PROMPT_INJECTION_RULES, text)
    if rule:
        return GuardrailVerdict.block(
            rule.reason, p.render(rule.message), severity=rule.severity,
            details={"pattern": rule.pattern.pattern[:60]},
        )
    return GuardrailVerdict()


def check_sensitive_pii(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    if find_card_numbers(text):
        reason, message = p.CREDIT_CARD_DETECTED, p.CREDIT_CARD_MESSAGE
    elif find_ssns(text):
        reason, message = p.SSN_DETECTED, p.SSN_MESSAGE
    else:
        rule = p.first_match(p.BANK_ACCOUNT_RULES + p.CREDENTIAL_RULES, text)
        if rule is None:
            return GuardrailVerdict()
        reason, message = rule.reason, rule.message

    return GuardrailVerdict.block(
        reason,
        p.render(message),
        severity=Severity.CRITICAL,
        redacted_text=redact_sensitive(text, ctx.today),
    )


def check_date_of_birth(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    redacted, ranges = redact_dates_of_birth(text, ctx.today)
    if not ranges:
        return GuardrailVerdict()
    return GuardrailVerdict.flag(
        p.DOB_DETECTED,
        severity=Severity.MEDIUM,
        redacted_text=redacted,
        context_notes=[p.DOB_CONTEXT_NOTE.format(age_range=ranges[0])],
        details={"age_range": ranges[0]},
    )


def check_age_inappropriate(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    rule = p.first_match(p.AGE_INAPPROPRIATE_RULES, text)
    if rule:
        return GuardrailVerdict.block(
            rule.reason, p.render(rule.message), severity=rule.severity, escalate=rule.escalate
        )
    return GuardrailVerdict()


def check_abuse(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    rule = p.first_match(p.ABUSE_RULES, text)
    if rule:
        return GuardrailVerdict.block(
            rule.reason, p.render(rule.message), severity=rule.severity, escalate=rule.escalate
        )
    return GuardrailVerdict()


def check_urls(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    if p.DANGEROUS_SCHEME.search(text):
        return GuardrailVerdict.block(p.UNSAFE_URL, p.render(p.UNSAFE_URL_MESSAGE))

    for candidate in find_urls(text):
        reason = classify_url(candidate)
        if reason == p.UNSAFE_URL:
            return GuardrailVerdict.block(reason, p.render(p.UNSAFE_URL_MESSAGE))
        if reason == p.MALFORMED_URL:
            return GuardrailVerdict.block(reason, p.render(p.MALFORMED_URL_MESSAGE), severity=Severity.MEDIUM)
    return GuardrailVerdict()


def check_off_topic(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    verdict = GuardrailVerdict()

    competitors = find_competitors(text)
    if competitors:
        verdict = GuardrailVerdict.flag(
            p.COMPETITOR_MENTION,
            context_notes=[p.render(p.COMPETITOR_CONTEXT_NOTE)],
            details={"competitors": sorted({c.lower() for c in competitors})},
        )

    rule = p.first_match(p.OFF_TOPIC_RULES, text)
    if rule:
        if verdict.flagged:
            verdict.flags.append(rule.reason)
            verdict.context_notes.append(p.render(rule.message))
        else:
            verdict = GuardrailVerdict.flag(rule.reason, context_notes=[p.render(rule.message)])
    return verdict


def check_medical(text: str, ctx: PreSendContext) -> GuardrailVerdict:
    rule = p.first_match(p.MEDICAL_RULES, text)
    if rule:
        return GuardrailVerdict.flag(
            rule.reason,
            needs_medical_disclaimer=True,
            context_notes=[rule.message],
        )
    return GuardrailVerdict()


PRE_SEND_RULES: tuple[Rule, ...] = (
    Rule("flood", check_flood),
    Rule("garbage", check_garbage),
    Rule("prompt_injection", check_prompt_injection),
    Rule("sensitive_pii", check_sensitive_pii),
    Rule("date_of_birth", check_date_of_birth, blocking=False),
    Rule("age_inappropriate", check_age_inappropriate),
    Rule("abuse", check_abuse),
    Rule("urls", check_urls),
    Rule("off_topic", check_off_topic, blocking=False),
    Rule("medical", check_medical, blocking=False),
)


def apply_guardrails(
    sanitized_text: str,
    session_id: str,
    *,
    flood_monitor: FloodMonitor | None = None,
    today: date | None = None,
    rules: tuple[Rule, ...] = PRE_SEND_RULES,
) -> GuardrailVerdict:
    """
    Run the pre-send chain over sanitized user text.

    Returns:
        A blocked verdict with the canned reply in ``message``, or an
        unblocked verdict carrying any flags and context notes.
    """
    ctx = PreSendContext(
        session_id=session_id,
        flood_monitor=flood_monitor or get_flood_monitor(),
        today=today or date.today(),
    )
    verdict = run_chain(rules, sanitized_text, ctx, error_message=p.render(p.GUARDRAIL_ERROR_MESSAGE))

    if verdict.blocked:
        logger.info(
            "Pre-send guardrail blocked message",
            extra_data={
                "session_id": mask_session_id(session_id),
                "reason": verdict.reason,
                "severity": verdict.severity.value if verdict.severity else None,
            }
        )
    elif verdict.flags:
        logger.info(
            "Pre-send guardrail flagged message",
            extra_data={"session_id": mask_session_id(session_id), "flags": verdict.flags}
        )
    return verdict
