"""
Tests for input sanitization, phone and email helpers
"""
import pytest

from steambot.core.validation import (
    EmailValidator,
    PhoneNumberValidator,
    TextSanitizer,
    sanitize,
)


class TestSanitize:
    """Raw inbound text cleanup"""

    @pytest.mark.unit
    def test_non_string_yields_empty(self):
        assert sanitize(None) == ""
        assert sanitize(42) == ""
        assert sanitize("") == ""

    @pytest.mark.unit
    def test_script_block_removed_with_body(self):
        assert sanitize("Hello <script>alert('x')</script>world") == "Hello world"

    @pytest.mark.unit
    def test_unclosed_script_runs_to_end(self):
        assert sanitize("Hi there <script>alert(1)") == "Hi there"

    @pytest.mark.unit
    def test_tags_removed_text_kept(self):
        assert sanitize("<b>Robotics</b> camp?") == "Robotics camp?"

    @pytest.mark.unit
    def test_nested_fragments_do_not_reassemble(self):
        result = sanitize("<scr<b>ipt>alert(1)</script>")
        assert "<script" not in result.lower()

    @pytest.mark.unit
    def test_html_comment_removed(self):
        assert sanitize("before<!-- hidden -->after") == "beforeafter"

    @pytest.mark.unit
    def test_invisible_characters_removed(self):
        text = "ig\u200bnore\u202e me\ufeff"
        assert sanitize(text) == "ignore me"

    @pytest.mark.unit
    def test_control_characters_removed_newlines_kept(self):
        assert sanitize("line one\x00\x07\nline two") == "line one\nline two"

    @pytest.mark.unit
    def test_carriage_returns_normalized(self):
        assert sanitize("a\r\nb\rc") == "a\nb\nc"

    @pytest.mark.unit
    def test_long_whitespace_runs_collapsed(self):
        assert sanitize("a" + " " * 25 + "b") == "a   b"

    @pytest.mark.unit
    def test_short_whitespace_runs_kept(self):
        assert sanitize("a     b") == "a     b"

    @pytest.mark.unit
    def test_truncated_to_max_length(self):
        assert len(TextSanitizer.sanitize("x" * 50, max_length=10)) == 10

    @pytest.mark.unit
    def test_idempotent_on_examples(self):
        for raw in ("  <i>hi</i>  ", "a" + "\t" * 12 + "b", "<scr<b>ipt>x", "plain"):
            once = sanitize(raw)
            assert sanitize(once) == once


class TestPhoneNumberValidator:
    """North-American phone numbers"""

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "(503) 555-1234",
        "503-555-1234",
        "503.555.1234",
        "5035551234",
        "+1 503 555 1234",
        "1-503-555-1234",
    ])
    def test_normalize_formats(self, raw: str):
        assert PhoneNumberValidator.normalize(raw) == "+15035551234"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["", "12345", "+44 20 7946 0958", "(103) 555-1234"])
    def test_normalize_rejects(self, raw: str):
        assert PhoneNumberValidator.normalize(raw) is None

    @pytest.mark.unit
    def test_find_all(self):
        text = "Call me at 503-555-1234 or (971) 555-0000 tomorrow"
        assert PhoneNumberValidator.find_all(text) == ["+15035551234", "+19715550000"]

    @pytest.mark.unit
    def test_organization_number(self):
        assert PhoneNumberValidator.is_organization_number("503.506.3287")
        assert not PhoneNumberValidator.is_organization_number("503-555-1234")

    @pytest.mark.unit
    def test_mask(self):
        assert PhoneNumberValidator.mask("+15035551234") == "+1503555****"
        assert PhoneNumberValidator.mask("12") == "****"


class TestEmailValidator:

    @pytest.mark.unit
    def test_find_all_lowercases(self):
        assert EmailValidator.find_all("Reach Jane@Example.com please") == ["jane@example.com"]

    @pytest.mark.unit
    def test_organization_address(self):
        assert EmailValidator.is_organization_address("getintouch@journeytosteam.com")
        assert EmailValidator.is_organization_address("camps@mail.journeytosteam.com")
        assert not EmailValidator.is_organization_address("help@journeytosteam.co")
