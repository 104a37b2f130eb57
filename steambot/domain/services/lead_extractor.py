"""
Lead Extractor - contact details and program interest from one user message

Pure and total: a field without a match stays None.
"""
import re
from dataclasses import asdict, dataclass

from steambot.core.validation import EmailValidator, PhoneNumberValidator

# Trigger phrase is case-insensitive; the captured name must be capitalized
NAME_PATTERN = re.compile(
    r"(?i:\b(?:my\s+name\s+is|i['’]m|i\s+am|this\s+is|call\s+me))\s+"
    r"([A-Z][a-z]+(?:[ ][A-Z][a-z]+)?)\b"
)

# Capitalized words that follow "I'm" / "This is" without being names
NOT_A_NAME = frozenset({
    "Interested", "Looking", "Wondering", "Calling", "Trying", "Hoping", "Just",
    "Not", "Here", "So", "Very", "Really", "The", "A", "An", "Also", "Still",
    "Curious", "Checking", "Asking", "Writing", "Reaching", "Sorry", "Thinking",
})

# Ordered keyword -> label table; the first row that matches wins
PROGRAM_INTERESTS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\brobot(?:ics|s)?\b", re.IGNORECASE), "Robotics"),
    (re.compile(r"\b(?:coding|code|programming)\b", re.IGNORECASE), "Coding"),
    (re.compile(r"\blego\b", re.IGNORECASE), "LEGO"),
    (re.compile(r"\bcamps?\b", re.IGNORECASE), "Summer Camp"),
    (re.compile(r"\bpart(?:y|ies)\b", re.IGNORECASE), "Birthday Party"),
    (re.compile(r"\bworkshops?\b", re.IGNORECASE), "Workshop"),
    (re.compile(r"\bfield[\s-]?trips?\b", re.IGNORECASE), "Field Trip"),
    (re.compile(r"\bafter[\s-]?school\b", re.IGNORECASE), "After-School"),
)


@dataclass
class LeadInfo:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    program_interest: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(asdict(self).values())


def _extract_name(text: str) -> str | None:
    for match in NAME_PATTERN.finditer(text):
        words = match.group(1).split()
        if words[0] in NOT_A_NAME:
            continue
        if len(words) == 2 and words[1] in NOT_A_NAME:
            words = words[:1]
        return " ".join(words)
    return None


def _extract_email(text: str) -> str | None:
    return next(
        (e for e in EmailValidator.find_all(text) if not EmailValidator.is_organization_address(e)),
        None,
    )


def _extract_phone(text: str) -> str | None:
    return next(
        (p for p in PhoneNumberValidator.find_all(text) if not PhoneNumberValidator.is_organization_number(p)),
        None,
    )


def _extract_program(text: str) -> str | None:
    return next((label for pattern, label in PROGRAM_INTERESTS if pattern.search(text)), None)


def extract_lead_info(raw_text: str) -> LeadInfo:
    """
    Pull lead fields out of a user message.

    Example:
        >>> extract_lead_info("Hi, I'm Jane Smith, my email is jane@example.com")
        LeadInfo(name='Jane Smith', email='jane@example.com', phone=None, program_interest=None)
    """
    if not isinstance(raw_text, str) or not raw_text:
        return LeadInfo()
    return LeadInfo(
        name=_extract_name(raw_text),
        email=_extract_email(raw_text),
        phone=_extract_phone(raw_text),
        program_interest=_extract_program(raw_text),
    )
