"""
Input Validation Utilities

Provides validation and cleaning for inbound text:
- Markup / invisible-character sanitization of raw chat input
- North-American phone number detection and normalization
- Email detection
"""
import re

from steambot.core.config import settings


class ValidationPatterns:
    """Regex patterns for validation"""

    # North-American number: optional +1/1 prefix, area code 2-9XX, 7-digit local part
    PHONE_NANP = re.compile(
        r"(?<![\d+])"
        r"(?:\+?1[-.\s]?)?"
        r"\(?([2-9]\d{2})\)?[-.\s]?"
        r"(\d{3})[-.\s]?(\d{4})"
        r"(?!\d)"
    )

    # E.164 with leading +1
    PHONE_E164_US = re.compile(r"^\+1[2-9]\d{9}$")

    EMAIL = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}")

    # Script / style blocks including their bodies (unclosed blocks run to end of text)
    SCRIPT_STYLE_BLOCK = re.compile(
        r"<\s*(script|style)\b[^>]*>.*?(?:<\s*/\s*\1\s*>|$)",
        re.IGNORECASE | re.DOTALL,
    )
    HTML_COMMENT = re.compile(r"<!--.*?(?:-->|$)", re.DOTALL)
    HTML_TAG = re.compile(r"<\s*/?\s*[a-zA-Z!][^<>]*>")

    # Zero-width, bidi-control, BOM and soft-hyphen characters
    INVISIBLE_CHARS = re.compile(
        "[\u00ad\u200b-\u200f\u202a-\u202e\u2060-\u2064\u2066-\u2069\ufeff]"
    )
    # C0 controls (except tab/newline) and DEL
    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

    WHITESPACE_RUN = re.compile(r"\s{10,}")


class PhoneNumberValidator:
    """North-American phone number detection and normalization"""

    @staticmethod
    def find_all(text: str) -> list[str]:
        """All NANP numbers in ``text``, normalized to +1XXXXXXXXXX"""
        if not text:
            return []
        return [
            f"+1{area}{exchange}{line}"
            for area, exchange, line in ValidationPatterns.PHONE_NANP.findall(text)
        ]

    @staticmethod
    def normalize(phone: str) -> str | None:
        """
        Normalize a 10- or 11-digit North-American number to +1XXXXXXXXXX.

        Returns:
            Normalized number, or None when the input is not NANP-shaped
        """
        if not phone:
            return None

        digits = re.sub(r"\D", "", phone)
        if len(digits) == 11 and digits.startswith("1"):
            digits = digits[1:]
        if len(digits) != 10:
            return None

        normalized = f"+1{digits}"
        if not ValidationPatterns.PHONE_E164_US.match(normalized):
            return None
        return normalized

    @staticmethod
    def validate(phone: str) -> bool:
        return PhoneNumberValidator.normalize(phone) is not None

    @staticmethod
    def is_organization_number(phone: str) -> bool:
        normalized = PhoneNumberValidator.normalize(phone)
        return normalized is not None and normalized == PhoneNumberValidator.normalize(settings.ORG_PHONE)

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., +1503506****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class EmailValidator:
    """Email detection"""

    @staticmethod
    def find_all(text: str) -> list[str]:
        if not text:
            return []
        return [m.lower() for m in ValidationPatterns.EMAIL.findall(text)]

    @staticmethod
    def is_organization_address(email: str) -> bool:
        domain = email.rsplit("@", 1)[-1].lower()
        org = settings.org_domain
        return domain == org or domain.endswith("." + org)


class TextSanitizer:
    """Text sanitization for inbound chat messages"""

    @staticmethod
    def strip_markup(text: str) -> str:
        """
        Remove script/style blocks, comments and tags.

        Repeats until nothing changes, so fragments such as ``<scr<b>ipt>``
        cannot reassemble into a tag after one pass.
        """
        previous = None
        while previous != text:
            previous = text
            text = ValidationPatterns.SCRIPT_STYLE_BLOCK.sub("", text)
            text = ValidationPatterns.HTML_COMMENT.sub("", text)
            text = ValidationPatterns.HTML_TAG.sub("", text)
        return text

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Drop invisible/bidi characters and control characters (keeps \\n and \\t)"""
        if not text:
            return ""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = ValidationPatterns.INVISIBLE_CHARS.sub("", text)
        return ValidationPatterns.CONTROL_CHARS.sub("", text)

    @staticmethod
    def sanitize(text: object, max_length: int | None = None) -> str:
        """
        Sanitize raw inbound text.

        Never raises. Steps, in order: invisible/control characters,
        markup, whitespace runs of 10+ collapsed to 3, trim, truncate.
        The result is a fixed point: ``sanitize(sanitize(x)) == sanitize(x)``.

        Args:
            text: Raw input (non-strings yield "")
            max_length: Maximum allowed length (defaults to MAX_INPUT_CHARS)

        Returns:
            Sanitized text
        """
        if not isinstance(text, str) or not text:
            return ""

        limit = max_length if max_length is not None else settings.MAX_INPUT_CHARS

        # invisible characters first: removing them must not be able to form new tags
        cleaned = TextSanitizer.remove_control_characters(text)
        cleaned = TextSanitizer.strip_markup(cleaned)
        cleaned = ValidationPatterns.WHITESPACE_RUN.sub(lambda m: m.group(0)[:3], cleaned)
        cleaned = cleaned.strip()[:limit]
        return cleaned.rstrip()


def sanitize(raw: object) -> str:
    """Module-level shortcut used by the chat pipeline"""
    return TextSanitizer.sanitize(raw)
