"""
Declarative guardrail tables.

Every rule is a row: compiled pattern -> reason code -> user-facing message
(plus severity / escalation where relevant). Classifiers in ``pre_send`` and
``post_receive`` only walk these tables; adding a phrase never touches
control flow.

Messages are templates rendered with the organization settings
(``{org_name}``, ``{contact}``, ``{domain}``, ``{registration_url}``...).
"""
import re
from dataclasses import dataclass

from steambot.core.config import settings
from steambot.domain.guardrails.verdict import Severity

_I = re.IGNORECASE
_APOS = "['’]"


@dataclass(frozen=True)
class PatternRule:
    pattern: re.Pattern
    reason: str
    message: str = ""
    severity: Severity = Severity.HIGH
    escalate: bool = False


def render(template: str) -> str:
    """Fill organization placeholders into a message template"""
    return template.format(
        org_name=settings.ORG_NAME,
        email=settings.ORG_EMAIL,
        phone=settings.ORG_PHONE,
        website=settings.ORG_WEBSITE,
        domain=settings.org_domain,
        registration_url=settings.ORG_REGISTRATION_URL,
        contact=settings.contact_line,
    )


def first_match(rules: tuple[PatternRule, ...], text: str) -> PatternRule | None:
    for rule in rules:
        if rule.pattern.search(text):
            return rule
    return None


# ============================================================================
# Reason codes
# ============================================================================

EMPTY_INPUT = "empty_input"
GARBAGE_INPUT = "garbage_input"
PROMPT_INJECTION = "prompt_injection"
CREDIT_CARD_DETECTED = "credit_card_detected"
SSN_DETECTED = "ssn_detected"
BANK_ACCOUNT_DETECTED = "bank_account_detected"
CREDENTIAL_DETECTED = "credential_detected"
SENSITIVE_PII_REASONS = frozenset({
    CREDIT_CARD_DETECTED, SSN_DETECTED, BANK_ACCOUNT_DETECTED, CREDENTIAL_DETECTED,
})
DOB_DETECTED = "dob_detected"
SELF_HARM_CONTENT = "self_harm_content"
VIOLENCE_CONTENT = "violence_content"
SEXUAL_CONTENT = "sexual_content"
DRUG_CONTENT = "drug_content"
HATE_SPEECH = "hate_speech"
THREAT_DETECTED = "threat_detected"
PROFANITY_DETECTED = "profanity_detected"
UNSAFE_URL = "unsafe_url"
MALFORMED_URL = "malformed_url"
COMPETITOR_MENTION = "competitor_mention"
OFF_TOPIC = "off_topic"
MEDICAL_KEYWORD = "medical_keyword"

ENROLLMENT_CONFIRMATION_DETECTED = "enrollment_confirmation_detected"
PII_ECHO_DETECTED = "pii_echo_detected"
CONTACT_INFO_MISMATCH = "contact_info_mismatch"
HALLUCINATION_SUSPECTED = "hallucination_suspected"
COMPETITOR_IN_RESPONSE = "competitor_in_response"
HOSTILE_TONE = "hostile_tone"
AI_SUGGESTED_HANDOFF = "ai_suggested_handoff"

ENROLLMENT_REQUEST = "enrollment_request"
SPECIAL_NEEDS_INQUIRY = "special_needs_inquiry"
COMPLAINT = "complaint"
CANCELLATION_REQUEST = "cancellation_request"
HUMAN_HANDOFF_REQUEST = "human_handoff_request"
SCHEDULING_CONFLICT = "scheduling_conflict"
PARTNERSHIP_INQUIRY = "partnership_inquiry"
SAFETY_INCIDENT = "safety_incident"
MEDIA_INQUIRY = "media_inquiry"


# ============================================================================
# Pre-send: canned replies
# ============================================================================

EMPTY_INPUT_MESSAGE = (
    "I didn't catch that. Could you tell me a little more about what you're looking for?"
)
GARBAGE_INPUT_MESSAGE = (
    "I'm not sure I understood that. Could you rephrase your question about our "
    "programs, camps or events?"
)
PROMPT_INJECTION_MESSAGE = (
    "I'm the {org_name} assistant, and I'm here to help with questions about our "
    "STEAM programs for kids. What would you like to know?"
)
GUARDRAIL_ERROR_MESSAGE = (
    "Sorry, I couldn't process that message. Please try rephrasing it, or reach our "
    "team directly at {contact}."
)


# ============================================================================
# Pre-send: garbage input
# ============================================================================

REPEATED_CHARACTER = re.compile(r"(.)\1{15,}", re.DOTALL)
GARBAGE_MIN_LENGTH = 10
GARBAGE_MIN_ALNUM_RATIO = 0.2


# ============================================================================
# Pre-send: prompt injection / jailbreak
# ============================================================================

PROMPT_INJECTION_RULES: tuple[PatternRule, ...] = tuple(
    PatternRule(re.compile(p, flags), PROMPT_INJECTION, PROMPT_INJECTION_MESSAGE, Severity.HIGH)
    for p, flags in (
        # instruction override
        (
            r"\b(?:ignore|forget|disregard|override|bypass|skip)\s+(?:all\s+|any\s+)?"
            r"(?:(?:of\s+)?(?:your|the|my|these|those)\s+)?"
            r"(?:previous|prior|above|earlier|system|original|initial)\s+"
            r"(?:instructions?|prompts?|rules?|guidelines?|directives?|programming|context)",
            _I,
        ),
        (
            r"\b(?:ignore|forget|disregard)\s+(?:all\s+)?(?:of\s+)?your\s+"
            r"(?:instructions?|rules?|guidelines?|programming|training|restrictions?)",
            _I,
        ),
        (
            r"\b(?:do\s+not|don" + _APOS + r"?t)\s+follow\s+(?:your|the|any)\s+"
            r"(?:previous\s+)?(?:instructions?|rules?|guidelines?)",
            _I,
        ),
        (r"\bnew\s+(?:system\s+)?(?:prompt|instructions?|rules)\s*(?::|are\b|follow)", _I),
        (r"\bfrom\s+now\s+on,?\s+(?:you|your)\s+(?:will|must|should|are)\b", _I),
        # role reassignment
        (r"\byou\s+are\s+(?:now|no\s+longer)\s+(?:a|an|the|my|in|called)\b", _I),
        (r"\b(?:pretend|imagine)\s+(?:that\s+)?you" + _APOS + r"?(?:re|\s+are)\b", _I),
        (r"(?:^|\b(?:you|please|now|can\s+you|could\s+you)\s+)pretend\s+to\s+be\b", _I),
        (
            r"\b(?:act|roleplay|role-play)\s+as\s+(?:if\s+you|an?\s+(?:ai|assistant|chatbot|bot|"
            r"different|unrestricted|unfiltered|evil|uncensored))\b",
            _I,
        ),
        # delimiter / context escape
        (r"\[\s*/?\s*(?:system|inst|sys|assistant)\s*\]", _I),
        (r"<\|?\s*/?\s*(?:system|im_start|im_end|endoftext)\s*\|?>", _I),
        (r"^\s*#{1,6}\s*(?:system|instructions?)\b", _I | re.MULTILINE),
        (r"```\s*(?:system|instructions?|prompt)\b", _I),
        # instruction leak
        (
            r"\b(?:reveal|show|print|repeat|tell\s+me)\s+(?:me\s+)?(?:your|the)\s+"
            r"(?:system\s+|hidden\s+|initial\s+)?(?:prompt|instructions)\b",
            _I,
        ),
        # named jailbreaks
        (r"\b(?:DAN\s+(?:mode|prompt|jailbreak)|you\s+are\s+DAN|as\s+DAN)\b", 0),
        (r"\bdo\s+anything\s+now\b", _I),
        (r"\b(?:developer|god|jailbreak|admin|sudo|unrestricted|unfiltered|evil)\s+mode\b", _I),
        (r"\bjailbreak(?:ing|ed)?\b", _I),
        # filter bypass
        (
            r"\b(?:bypass|disable|turn\s+off|get\s+around|ignore|remove)\s+(?:your\s+|the\s+|all\s+)?"
            r"(?:safety\s+|content\s+)?(?:filters?|guardrails?|restrictions|safety\s+rules|"
            r"censorship|moderation)\b",
            _I,
        ),
        (r"\bwithout\s+(?:any\s+)?(?:filters?|restrictions|censorship|guardrails)\b", _I),
    )
)


# ============================================================================
# Pre-send: sensitive PII
# ============================================================================

CREDIT_CARD_MESSAGE = (
    "For your security, please don't share payment card information in chat. Our team "
    "will collect payment details securely when you're ready to enroll. Would you like "
    "me to connect you with someone?"
)
SSN_MESSAGE = (
    "For your privacy, please don't share sensitive personal identification numbers in "
    "chat. Is there something else I can help you with?"
)
BANK_ACCOUNT_MESSAGE = (
    "For your security, please don't share bank account or routing numbers in chat. "
    "Our team handles payments through a secure channel. Is there anything else I can help with?"
)
CREDENTIAL_MESSAGE = (
    "Please don't share passwords or login details in chat; our team will never ask "
    "for them. How else can I help you today?"
)

# 13-16 digits, optionally separated by single spaces or dashes
CARD_CANDIDATE = re.compile(r"(?<![\d-])(?:\d[ -]?){12,15}\d(?![\d])")
CARD_ISSUER_PREFIX = re.compile(r"^(?:4|5[1-5]|2[2-7]|3[47]|6011|64[4-9]|65)")

# AAA-GG-SSSS with one consistent separator (or none)
SSN_CANDIDATE = re.compile(r"(?<![\d-])(\d{3})([- ]?)(\d{2})\2(\d{4})(?![\d-])")

BANK_ACCOUNT_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:routing|bank\s+account|checking(?:\s+account)?|savings(?:\s+account)?|account|acct|aba)"
            r"\s*(?:number|num|no\.?|#)\s*(?:is\s*|:\s*|=\s*)?\d[\d -]{4,}\d",
            _I,
        ),
        BANK_ACCOUNT_DETECTED, BANK_ACCOUNT_MESSAGE, Severity.CRITICAL,
    ),
    PatternRule(
        re.compile(r"\brouting\b[^\d\n]{0,20}\d{9}\b", _I),
        BANK_ACCOUNT_DETECTED, BANK_ACCOUNT_MESSAGE, Severity.CRITICAL,
    ),
    PatternRule(
        re.compile(r"\biban\s*(?:is\s*|:\s*)?[A-Z]{2}\d{2}[A-Z0-9 ]{10,}", _I),
        BANK_ACCOUNT_DETECTED, BANK_ACCOUNT_MESSAGE, Severity.CRITICAL,
    ),
)

# words that describe an account rather than disclose a secret
_NOT_A_SECRET = (
    r"(?:not|no|never|broken|working|wrong|incorrect|invalid|expired|locked|disabled|reset|changed|"
    r"forgotten|lost|stuck|slow|down|fine|ok|okay|correct|required|needed|case|the|my|your|a|an|"
    r"still|also|too|very|really|so|being|getting|going|what|how|where|that|this|it|in|on|for|to)"
)

CREDENTIAL_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:my\s+|the\s+)?(?:password|passcode|passwd|pwd|pin(?:\s+number)?|login)"
            r"\s*(?:(?:is|was)\s+(?!" + _NOT_A_SECRET + r"\b)|[:=]\s*)\S+",
            _I,
        ),
        CREDENTIAL_DETECTED, CREDENTIAL_MESSAGE, Severity.CRITICAL,
    ),
    PatternRule(
        re.compile(r"\bhere" + _APOS + r"?s?\s+(?:is\s+)?my\s+(?:password|login|pin|passcode)\b", _I),
        CREDENTIAL_DETECTED, CREDENTIAL_MESSAGE, Severity.CRITICAL,
    ),
    PatternRule(
        re.compile(r"\busername\s*(?:is|:)\s*\S+\s+(?:and\s+)?password\b", _I),
        CREDENTIAL_DETECTED, CREDENTIAL_MESSAGE, Severity.CRITICAL,
    ),
)

CARD_REDACTION = "[card number removed]"
SSN_REDACTION = "[ID number removed]"
ACCOUNT_REDACTION = "[account details removed]"
CREDENTIAL_REDACTION = "[credentials removed]"


# ============================================================================
# Pre-send: date of birth (flag + redact to an age range)
# ============================================================================

_MONTHS = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|"
    r"sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
DOB_PATTERN = re.compile(
    r"\b(?:born\s+(?:on\s+)?|birth\s*(?:day|date)\s*(?:is\s+|was\s+|:\s*)?|"
    r"d\.?o\.?b\.?\s*(?:is\s+|:\s*)?|date\s+of\s+birth\s*(?:is\s+|:\s*)?)"
    r"(?P<date>"
    r"(?P<m1>\d{1,2})[/.-](?P<d1>\d{1,2})[/.-](?P<y1>\d{4}|\d{2})"
    r"|(?P<y2>\d{4})-(?P<m2>\d{1,2})-(?P<d2>\d{1,2})"
    r"|(?P<mon3>" + _MONTHS + r")\.?\s+(?P<d3>\d{1,2})(?:st|nd|rd|th)?,?\s+(?P<y3>\d{4})"
    r"|(?P<d4>\d{1,2})(?:st|nd|rd|th)?\s+(?P<mon4>" + _MONTHS + r")\.?,?\s+(?P<y4>\d{4})"
    r")",
    _I,
)
MONTH_NUMBERS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
# (upper bound exclusive, label)
AGE_RANGES: tuple[tuple[int, str], ...] = (
    (5, "under 5"),
    (8, "5-7"),
    (11, "8-10"),
    (13, "11-12"),
    (18, "13-17"),
)
ADULT_AGE_RANGE = "18+"
UNKNOWN_AGE_RANGE = "unknown"
DOB_REDACTION = "[date of birth removed; age {age_range}]"
DOB_CONTEXT_NOTE = (
    "The parent shared a date of birth. It has been removed; refer only to the "
    "child's age range ({age_range}) and never ask for or repeat exact birth dates."
)


# ============================================================================
# Pre-send: age-inappropriate content
# ============================================================================

CRISIS_MESSAGE = (
    "It sounds like you or someone you care about may be going through something really "
    "hard. Please reach out to the 988 Suicide & Crisis Lifeline by calling or texting "
    "988, or call 911 if someone is in immediate danger. Our team is here for you too "
    "at {contact}."
)
VIOLENCE_MESSAGE = (
    "I'm not able to discuss that topic. I'm here to help with questions about {org_name}'s "
    "STEAM programs for kids. What can I help you with?"
)
SEXUAL_CONTENT_MESSAGE = (
    "That's not something I can help with here. I'm happy to answer questions about our "
    "STEAM programs, camps and events for kids."
)
DRUG_CONTENT_MESSAGE = (
    "I can't help with that topic. If you have questions about our programs, camps or "
    "events, I'd be glad to help!"
)
HATE_SPEECH_MESSAGE = (
    "I'm not able to engage with that kind of language. {org_name} welcomes every family. "
    "Is there something about our programs I can help with?"
)

AGE_INAPPROPRIATE_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:kill(?:ing)?\s+(?:my|him|her|them)sel(?:f|ves)|suicid(?:e|al)|self[-\s]?harm(?:ing)?|"
            r"(?:cut|cutting|hurt|hurting)\s+myself|want\s+to\s+die|wants\s+to\s+die|"
            r"end\s+(?:my|his|her|their)\s+(?:own\s+)?life|no\s+reason\s+to\s+live)\b",
            _I,
        ),
        SELF_HARM_CONTENT, CRISIS_MESSAGE, Severity.CRITICAL, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:how\s+(?:to|do\s+i|can\s+i)\s+(?:make|build)\s+(?:a\s+)?(?:bomb|gun|weapon|explosive)s?|"
            r"(?:school|mass)\s+shooting|shoot(?:ing)?\s+up\s+(?:a|the)\b|murder(?:ing)?(?!\s+myster(?:y|ies))|"
            r"stab(?:bing)?\s+(?:someone|people|him|her|them)|behead\w*|tortur(?:e|ing))\b",
            _I,
        ),
        VIOLENCE_CONTENT, VIOLENCE_MESSAGE, Severity.HIGH,
    ),
    PatternRule(
        re.compile(
            r"\b(?:porn\w*|nudes?|naked\s+(?:pics?|photos?|kids?|children)|"
            r"sex(?:ual|y)?\s+(?:pics?|photos?|videos?|content|acts?|chat)|"
            r"explicit\s+(?:pics?|photos?|content|videos?)|onlyfans|"
            r"hook(?:ing)?\s*up\s+with\s+(?:girls|guys|women|men|strangers|older\s+(?:men|women|guys|girls)))\b",
            _I,
        ),
        SEXUAL_CONTENT, SEXUAL_CONTENT_MESSAGE, Severity.CRITICAL,
    ),
    PatternRule(
        re.compile(
            r"\b(?:cocaine|heroin|meth(?:amphetamine)?|fentanyl|marijuana|cannabis|weed|lsd|"
            r"ecstasy|mdma|get(?:ting)?\s+high|(?:buy|sell|selling|buying)\s+drugs|vape\s+pens?|"
            r"thc\s+(?:gummies|edibles|carts?))\b",
            _I,
        ),
        DRUG_CONTENT, DRUG_CONTENT_MESSAGE, Severity.HIGH,
    ),
    PatternRule(
        re.compile(
            r"\b(?:i\s+hate\s+(?:all\s+)?(?:jews|muslims|christians|blacks|whites|asians|"
            r"mexicans|gays|immigrants|latinos)|white\s+power|heil\s+hitler|"
            r"go\s+back\s+to\s+your\s+(?:own\s+)?country|(?:racial|ethnic)\s+cleansing)\b",
            _I,
        ),
        HATE_SPEECH, HATE_SPEECH_MESSAGE, Severity.HIGH,
    ),
)


# ============================================================================
# Pre-send: abuse / threats
# ============================================================================

THREAT_MESSAGE = (
    "I'm not able to continue with messages like that. If there's a concern, please "
    "contact our team directly at {contact}."
)
PROFANITY_MESSAGE = (
    "Let's keep things friendly! I'm happy to help with questions about our STEAM "
    "programs, camps and events."
)

ABUSE_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:i(?:" + _APOS + r"ll|\s+will|\s+am\s+going\s+to|" + _APOS + r"m\s+going\s+to|"
            r"" + _APOS + r"m\s+gonna|\s+gonna)\s+(?:kill|hurt|beat\s+up|shoot|stab|destroy|find)\s+"
            r"(?:you|your|them|everyone|all\s+of\s+you)|"
            r"you(?:" + _APOS + r"d|\s+had)\s+better\s+watch\s+(?:out|your\s+back)|"
            r"watch\s+your\s+back|i\s+know\s+where\s+you\s+(?:live|work)|"
            r"(?:bomb|burn\s+down|shoot\s+up)\s+your\s+(?:building|school|office|center))\b",
            _I,
        ),
        THREAT_DETECTED, THREAT_MESSAGE, Severity.CRITICAL, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:f+u+c+k\w*|motherf\w*|sh[i1]t(?:ty|s|head)?|bullshit|b[i1]tch\w*|"
            r"assholes?|bastards?|cunts?|piss\s+off|damn\s+you|wtf|stfu|dumbass)\b",
            _I,
        ),
        PROFANITY_DETECTED, PROFANITY_MESSAGE, Severity.MEDIUM,
    ),
)


# ============================================================================
# Pre-send: URLs
# ============================================================================

UNSAFE_URL_MESSAGE = (
    "For safety, I can't open or discuss links from outside {domain}. Could you "
    "describe what you're asking about instead?"
)
MALFORMED_URL_MESSAGE = (
    "That link doesn't look right, so I can't use it. Could you describe what you're "
    "asking about instead?"
)

URL_CANDIDATE = re.compile(
    r"(?<![@\w.-])(?:(?:https?|ftp)://[^\s<>\"']*|www\.[^\s<>\"']+)",
    _I,
)
# dotted names; a link only when one of the later labels is a known TLD
BARE_DOMAIN_CANDIDATE = re.compile(
    r"(?<![@\w./-])(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,63}\b(?!@)(?:/[^\s<>\"']*)?",
    _I,
)
LINK_TLDS = frozenset({
    "com", "net", "org", "edu", "gov", "io", "co", "ly", "xyz", "info", "biz", "ru", "cn",
    "app", "dev", "me", "us", "uk", "ca", "au", "gg", "link", "click", "top", "site",
    "online", "tk", "zip", "mov", "ai", "tv",
})
DANGEROUS_SCHEME = re.compile(r"\b(?:javascript:|vbscript:|data:text/html|file://)", _I)
HOSTNAME = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)
URL_TRAILING_PUNCTUATION = ".,;:!?)]}'\""


# ============================================================================
# Pre-send: off-topic / competitor (flag + context note)
# ============================================================================

COMPETITOR_CONTEXT_NOTE = (
    "The parent mentioned another education provider. Do not discuss, compare with or "
    "disparage competitors; focus on what {org_name} offers."
)
OFF_TOPIC_CONTEXT_NOTE = (
    "The message touches on a topic outside {org_name}'s programs. Do not engage with "
    "the topic; politely steer the conversation back to our STEAM programs."
)

OFF_TOPIC_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:elections?|democrats?|republicans?|trump|biden|politic(?:s|al|ians?)|abortion|"
            r"gun\s+control|immigration\s+policy|bitcoin|crypto(?:currency)?|stock\s+(?:market|tips?)|"
            r"lottery|gambling|casino|sports\s+betting|religio(?:n|us)\s+debate)\b",
            _I,
        ),
        OFF_TOPIC, OFF_TOPIC_CONTEXT_NOTE, Severity.LOW,
    ),
)


# ============================================================================
# Pre-send: medical keywords (flag + disclaimer)
# ============================================================================

MEDICAL_CONTEXT_NOTE = (
    "The message touches on a medical topic. Do not give medical advice; suggest "
    "consulting the child's pediatrician."
)
MEDICAL_DISCLAIMER = "*Please consult your child's pediatrician for specific medical guidance.*"
MEDICAL_DISCLAIMER_PRESENT = re.compile(
    r"\b(?:pediatrician|doctor|physician|healthcare\s+provider|medical\s+professional)\b", _I
)

MEDICAL_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:diagnos(?:is|ed|e)|medications?|prescriptions?|medical\s+conditions?|"
            r"adhd\s+medication|dosage|dose|treatment\s+plan|medical\s+advice|"
            r"should\s+i\s+give\s+my\s+(?:child|kid|son|daughter)|is\s+it\s+safe\s+to|"
            r"epipen|inhaler|insulin|seizures?|symptoms?|allerg(?:y|ies|ic))\b",
            _I,
        ),
        MEDICAL_KEYWORD, MEDICAL_CONTEXT_NOTE, Severity.LOW,
    ),
)


# ============================================================================
# Post-receive: model output checks
# ============================================================================

ENROLLMENT_REDIRECT_MESSAGE = (
    "I'd love to help you get started! I can't complete enrollment or take payments here "
    "in chat, but you can register securely at {registration_url}, and our team is happy "
    "to help at {contact}."
)
PII_REMOVED_MESSAGE = (
    "For your security, I've removed sensitive information from this reply. Please don't "
    "share card or ID numbers in chat; our team will collect anything needed securely. "
    "You can reach us at {contact}."
)
CONTACT_BLOCK = (
    "For accurate contact details, reach {org_name} at {email} or {phone}, or visit {website}."
)
APOLOGETIC_MESSAGE = (
    "I'm sorry, I didn't phrase that well. I'm here to help! Could you tell me a little "
    "more about what you're looking for? You can also reach our team directly at {contact}."
)
ESCALATION_INVITATION = (
    "Would you like me to connect you with a team member who can help further? You can "
    "reach our team at {contact}."
)

ENROLLMENT_CONFIRMATION_PHRASES: tuple[str, ...] = (
    r"you\s+are\s+now\s+(?:officially\s+)?enrolled",
    r"you" + _APOS + r"re\s+now\s+(?:officially\s+)?enrolled",
    r"(?:you|your\s+(?:child|son|daughter|kid))\s+(?:has|have)\s+been\s+(?:enrolled|registered|signed\s+up)",
    r"(?:you|they|he|she)" + _APOS + r"(?:ve|s)\s+been\s+(?:enrolled|registered|signed\s+up)",
    r"enrollment\s+(?:is\s+)?(?:confirmed|complete)",
    r"registration\s+(?:is\s+)?(?:confirmed|complete)",
    r"payment\s+(?:has\s+been\s+|was\s+)?(?:processed|received|confirmed)",
    r"your\s+spot\s+(?:is|has\s+been)\s+(?:reserved|secured|confirmed|held)",
    r"i(?:" + _APOS + r"ve|\s+have)\s+(?:reserved|booked|secured)\s+(?:a|your)\s+spot",
    r"you" + _APOS + r"re\s+all\s+set",
    r"you\s+are\s+all\s+set",
    r"(?:booking|reservation)\s+(?:is\s+)?confirmed",
    r"your\s+(?:booking|reservation)\s+(?:is|has\s+been)\s+confirmed",
)
ENROLLMENT_CONFIRMATION = re.compile(
    r"\b(?:" + "|".join(ENROLLMENT_CONFIRMATION_PHRASES) + r")\b", _I
)

# (tag, pattern)
HALLUCINATION_MARKERS: tuple[tuple[str, re.Pattern], ...] = (
    (
        "address",
        re.compile(
            r"\b\d{1,5}\s+(?:[NSEW]\.?\s+)?(?:[A-Z][a-z]+\s+){1,3}"
            r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|"
            r"Place|Pl|Parkway|Pkwy|Highway|Hwy)\b\.?"
        ),
    ),
    (
        "hours",
        re.compile(
            r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)\s*(?:-|to|until|–)\s*"
            r"\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)"
            r"|\b(?:open|hours\s+are)\s+(?:daily|every\s+day|monday|weekdays|from)\b[^.\n]{0,30}?"
            r"\d{1,2}(?::\d{2})?\s*(?:am|pm)",
            _I,
        ),
    ),
    (
        "founding",
        re.compile(
            r"\b(?:founded|established|started|opened)\s+(?:back\s+)?in\s+(?:19|20)\d{2}\b"
            r"|\bsince\s+(?:19|20)\d{2}\b",
            _I,
        ),
    ),
    (
        "statistic",
        re.compile(
            r"\b\d{1,3}(?:\.\d+)?\s*(?:%|percent)\s+of\s+(?:our\s+)?"
            r"(?:students|kids|children|parents|families|graduates|participants|campers)\b"
            r"|\b(?:over|more\s+than)\s+\d[\d,]*\s+(?:students|kids|children|families|graduates|campers)\b",
            _I,
        ),
    ),
    (
        "guarantee",
        re.compile(
            r"\b(?:we|i)\s+(?:can\s+|will\s+|do\s+)?guarantee[sd]?\b"
            r"|\bguaranteed\s+(?:spot|seat|placement|admission|acceptance|results?|success)\b"
            r"|\b100\s*%\s+(?:guaranteed|success|satisfaction)\b",
            _I,
        ),
    ),
    (
        "discount",
        re.compile(
            r"\b\d{1,3}\s*(?:%|percent)\s*off\b|\b(?:discount(?:s|ed)?|promo(?:tion(?:al)?)?\s+code|"
            r"coupon|special\s+offer|free\s+(?:trial|class|session|week|month))\b",
            _I,
        ),
    ),
)

# markers that a refusal mentions too ("I can't guarantee...", "no discounts")
NEGATABLE_MARKERS = frozenset({"guarantee", "discount"})

# up to three words between the negation and the marker, none across punctuation
NEGATED_BEFORE = re.compile(
    r"\b(?:not|no|never|cannot|unable\s+to|(?:can|don|won|isn|aren|doesn)" + _APOS + r"?t)"
    r"(?:\s+[\w'’]+){0,3}\s+$",
    _I,
)

HOSTILE_TONE_PATTERN = re.compile(
    r"\b(?:(?:that" + _APOS + r"?s|that\s+is|this\s+is|what)\s+a\s+(?:really\s+)?"
    r"(?:stupid|dumb|silly|ridiculous|pointless)\s+question"
    r"|you" + _APOS + r"?re\s+(?:being\s+)?(?:an?\s+)?(?:stupid|idiot(?:ic)?|dumb|ridiculous|annoying)"
    r"|you\s+are\s+(?:being\s+)?(?:an?\s+)?(?:stupid|idiot(?:ic)?|dumb|ridiculous|annoying)"
    r"|shut\s+up|that" + _APOS + r"?s\s+not\s+my\s+problem|figure\s+it\s+out\s+yourself"
    r"|obviously\s+you\s+(?:didn|don|can)|read\s+the\s+(?:website|faq)\s+yourself"
    r"|(?:you\s+(?:need|have)\s+to|just)\s+calm\s+down"
    r"|(?<!n.t\s)(?<!never\s)stop\s+(?:asking|bothering)\s+(?:me|us)"
    r"|as\s+i\s+already\s+(?:said|told\s+you))\b"
    r"|(?:^|[.!?]\s+)(?:calm\s+down|i\s+don" + _APOS + r"?t\s+care)\b(?!\s+(?:for|about|of|if|whether|which))",
    _I | re.MULTILINE,
)

HANDOFF_LANGUAGE = re.compile(
    r"\b(?:connect\s+you\s+with|team\s+member|let\s+me\s+get\s+someone|"
    r"someone\s+from\s+our\s+team|reach\s+(?:out\s+to\s+)?our\s+team|our\s+team\s+(?:is|will|can)|"
    r"contact\s+our\s+team)\b",
    _I,
)


# ============================================================================
# Post-receive: user-message escalation triggers (ordered)
# ============================================================================

USER_ESCALATION_TRIGGERS: tuple[PatternRule, ...] = (
    PatternRule(
        re.compile(
            r"\b(?:injur(?:y|ed|ies)|got\s+hurt|was\s+hurt|bullied|bullying|unsafe|abused?|"
            r"inappropriate(?:ly)?\s+touch\w*|emergency|accident|allergic\s+reaction|"
            r"went\s+missing|hospital)\b",
            _I,
        ),
        SAFETY_INCIDENT, severity=Severity.CRITICAL, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:cancel\w*|withdraw(?:al)?|billing|bill\s+(?:me|us)|charged\s+twice|"
            r"double[-\s]charged|overcharged|invoice|payment\s+(?:issue|problem))\b",
            _I,
        ),
        CANCELLATION_REQUEST, severity=Severity.MEDIUM, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:complain\w*|refund\w*|unhappy|disappointed|terrible|worst|unacceptable|"
            r"not\s+happy|poor\s+experience|frustrat(?:ed|ing))\b",
            _I,
        ),
        COMPLAINT, severity=Severity.HIGH, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:special\s+needs|accommodations?|iep|disabilit(?:y|ies)|disabled|504\s+plan|"
            r"autis(?:m|tic)|adhd|sensory\s+(?:issues|needs|processing)|wheelchair|"
            r"learning\s+(?:difference|disabilit(?:y|ies)))\b",
            _I,
        ),
        SPECIAL_NEEDS_INQUIRY, severity=Severity.MEDIUM, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:enroll\w*|sign(?:ing)?\s+(?:\w+\s+){0,2}up|signup|register(?:ing|ed)?|"
            r"registration|join(?:ing)?)\b",
            _I,
        ),
        ENROLLMENT_REQUEST, severity=Severity.MEDIUM, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:(?:speak|talk)\s+(?:to|with)\s+(?:someone|somebody|a\s+(?:real\s+)?(?:person|human)|"
            r"a\s+manager|a\s+representative|staff|your\s+team|a\s+team\s+member)|real\s+person|"
            r"live\s+agent|manager|are\s+you\s+(?:a\s+)?(?:human|real|a\s+bot)|call\s+me\s+back)\b",
            _I,
        ),
        HUMAN_HANDOFF_REQUEST, severity=Severity.MEDIUM, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:schedul(?:e|ing)\s+conflict|can" + _APOS + r"?t\s+make\s+it|reschedul\w*|"
            r"change\s+the\s+(?:time|date|day)|miss(?:ing)?\s+(?:a|the|next)\s+(?:class|session)|"
            r"make[-\s]?up\s+(?:class|session))\b",
            _I,
        ),
        SCHEDULING_CONFLICT, severity=Severity.LOW, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:partner(?:ship|ing)?\s+with|partnerships?|collaborat\w*|sponsor\w*|"
            r"school\s+district|host\s+(?:a|your)\s+(?:program|class|workshop)\s+at|franchis\w*|vendor)\b",
            _I,
        ),
        PARTNERSHIP_INQUIRY, severity=Severity.LOW, escalate=True,
    ),
    PatternRule(
        re.compile(
            r"\b(?:reporter|journalist|press\s+(?:inquiry|release|contact)|interview|"
            r"news\s+(?:story|segment)|writing\s+(?:an\s+)?article|podcast|media\s+inquiry)\b",
            _I,
        ),
        MEDIA_INQUIRY, severity=Severity.LOW, escalate=True,
    ),
)
