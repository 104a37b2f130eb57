"""
Tests for channel formatting and SMS segmentation
"""
import pytest

from steambot.db.models.conversation import Channel
from steambot.domain.services.response_formatter import (
    format_for_channel,
    segment_sms,
    strip_markdown,
)


class TestStripMarkdown:

    @pytest.mark.unit
    def test_styling_links_and_bullets(self):
        text = "**Robotics** is _fun_. See [our site](https://journeytosteam.com)\n- item one\n# Header"

        assert strip_markdown(text) == "Robotics is fun. See our site\nitem one\nHeader"

    @pytest.mark.unit
    def test_code_removed(self):
        assert strip_markdown("Before\n```\ncode\n```\nAfter") == "Before\n\nAfter"
        assert strip_markdown("Use `python` today") == "Use python today"

    @pytest.mark.unit
    def test_numbered_list(self):
        assert strip_markdown("1. Robotics\n2) Coding") == "Robotics\nCoding"

    @pytest.mark.unit
    def test_snake_case_untouched(self):
        assert strip_markdown("session_id_value") == "session_id_value"


class TestSegmentSms:

    @pytest.mark.unit
    def test_short_text_single_segment(self):
        assert segment_sms("a" * 160) == ["a" * 160]

    @pytest.mark.unit
    def test_empty(self):
        assert segment_sms("") == []

    @pytest.mark.unit
    def test_whole_sentences_kept(self):
        first = "A" * 100 + "."
        second = "B" * 100 + "."

        assert segment_sms(f"{first} {second}") == [first, second]

    @pytest.mark.unit
    def test_sentences_packed(self):
        text = " ".join(
            f"Sentence number {i} talks about our robotics program." for i in range(8)
        )

        segments = segment_sms(text)

        assert len(segments) > 1
        assert all(len(s) <= 160 for s in segments)
        assert " ".join(segments) == text

    @pytest.mark.unit
    def test_long_word_split(self):
        assert [len(s) for s in segment_sms("x" * 400)] == [160, 160, 80]

    @pytest.mark.unit
    def test_custom_limit(self):
        segments = segment_sms("one two three four five six", limit=10)

        assert all(len(s) <= 10 for s in segments)
        assert " ".join(segments) == "one two three four five six"

    @pytest.mark.unit
    def test_dots_inside_words_do_not_split(self):
        text = (
            "Our summer robotics camp runs Monday through Friday from 9am to 3pm, and every "
            "student builds a working rover by the end of the week. Reach us at "
            "getintouch@journeytosteam.com or visit journeytosteam.com/camps. Camp is $249.99 per week."
        )

        segments = segment_sms(text)
        joined = " ".join(segments)

        assert len(segments) > 1
        assert joined == text
        assert any("getintouch@journeytosteam.com" in s for s in segments)
        assert any("journeytosteam.com/camps." in s for s in segments)
        assert any("$249.99 per week." in s for s in segments)

    @pytest.mark.unit
    def test_line_breaks_collapse_between_segments(self):
        first = "A" * 100
        second = "B" * 100

        assert segment_sms(f"{first}\n\n{second}") == [first, second]

    @pytest.mark.unit
    def test_long_word_pieces_rejoin(self):
        segments = segment_sms("Link: " + "x" * 300 + " done", limit=160)

        assert segments == ["Link:", "x" * 160, "x" * 140 + " done"]


class TestFormatForChannel:

    @pytest.mark.unit
    def test_web_unchanged(self):
        assert format_for_channel("**Hi** there", Channel.WEB) == "**Hi** there"

    @pytest.mark.unit
    def test_sms_plain_segments(self):
        assert format_for_channel("**Hi** there", "sms") == ["Hi there"]
