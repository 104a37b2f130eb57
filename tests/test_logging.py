"""
Tests for Logging Infrastructure
"""
import pytest
import json
import logging
from io import StringIO

from steambot.core.logging import (
    ContextFilter,
    JSONFormatter,
    bind_session,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    scrub,
    set_correlation_id,
)


class TestCorrelationId:
    """Tests for correlation ID management"""

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        assert set_correlation_id("test1234") == "test1234"
        assert get_correlation_id() == "test1234"

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        result = set_correlation_id(None)

        assert len(result) == 8
        assert get_correlation_id() == result


class TestJSONFormatter:
    """Tests for JSON log formatting"""

    @pytest.fixture
    def log_stream(self) -> StringIO:
        return StringIO()

    @pytest.fixture
    def json_logger(self, log_stream: StringIO):
        handler = logging.StreamHandler(log_stream)
        handler.setFormatter(JSONFormatter(app_name="steambot-test"))
        logger = get_logger("test_json_logger")
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        yield logger
        logger.removeHandler(handler)

    @pytest.mark.unit
    def test_json_format_basic(self, log_stream: StringIO, json_logger):
        json_logger.info("Test message")

        entry = json.loads(log_stream.getvalue())
        assert entry["level"] == "INFO"
        assert entry["message"] == "Test message"
        assert entry["app"] == "steambot-test"
        assert entry["logger"] == "test_json_logger"
        assert entry["timestamp"].endswith("Z")

    @pytest.mark.unit
    def test_extra_data_and_correlation_id(self, log_stream: StringIO, json_logger):
        set_correlation_id("abcd1234")
        json_logger.warning("Flagged", extra_data={"reason": "off_topic"})

        entry = json.loads(log_stream.getvalue())
        assert entry["extra"] == {"reason": "off_topic"}
        assert entry["correlation_id"] == "abcd1234"

    @pytest.mark.unit
    def test_exception_included(self, log_stream: StringIO, json_logger):
        try:
            raise ValueError("boom")
        except ValueError:
            json_logger.error("Failed", exc_info=True)

        entry = json.loads(log_stream.getvalue())
        assert "ValueError: boom" in entry["exception"]


class TestContextFilter:

    @pytest.mark.unit
    def test_filter_adds_ids_and_scrubs(self):
        set_correlation_id("filter01")
        bind_session("web_abc")
        record = logging.LogRecord(
            "x", logging.INFO, __file__, 1, "Lead %s captured", ("jane.doe@example.com",), None
        )

        try:
            assert ContextFilter().filter(record)
        finally:
            bind_session(None)

        assert record.correlation_id == "filter01"
        assert record.session_id == "web_abc"
        assert record.getMessage() == "Lead j***@example.com captured"

    @pytest.mark.unit
    def test_unbound_session_is_dash(self):
        bind_session(None)
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)

        ContextFilter().filter(record)

        assert record.session_id == "-"


class TestScrub:

    @pytest.mark.unit
    def test_email_local_part(self):
        assert scrub("write to jane.doe@example.com") == "write to j***@example.com"

    @pytest.mark.unit
    def test_phone_digits_keep_last_four(self):
        assert scrub("sms_15035551234") == "sms_*******1234"

    @pytest.mark.unit
    def test_short_numbers_untouched(self):
        assert scrub("ages 7-10, 2025 camp, zip 97201") == "ages 7-10, 2025 camp, zip 97201"

    @pytest.mark.unit
    def test_containers(self):
        scrubbed = scrub({"phone": "5035551234", "tags": ["a@b.org", 3], "count": 2})

        assert scrubbed == {"phone": "******1234", "tags": ["a***@b.org", 3], "count": 2}

    @pytest.mark.unit
    def test_bound_session_in_json_entry(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        logger = get_logger("test_session_logger")
        logger.addHandler(handler)
        logger.propagate = False

        bind_session("sms_15035551234")
        try:
            logger.warning("Escalated", extra_data={"contact": "jane@example.com"})
        finally:
            bind_session(None)
            logger.removeHandler(handler)

        entry = json.loads(stream.getvalue())
        assert entry["session_id"] == "sms_*******1234"
        assert entry["extra"] == {"contact": "j***@example.com"}

class TestLogAsyncOperation:

    @pytest.mark.unit
    async def test_returns_result(self):
        @log_async_operation("unit_op")
        async def op(x):
            return x * 2

        assert await op(21) == 42

    @pytest.mark.unit
    async def test_reraises(self):
        @log_async_operation("unit_op")
        async def op():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await op()
