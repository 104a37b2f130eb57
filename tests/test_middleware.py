"""
Tests for middleware and exception handlers (steambot/core/middleware.py)

Covers:
- CorrelationIdMiddleware: correlation ID propagation
- SecurityHeadersMiddleware: headers per DEBUG mode
- Exception handlers: AppException, StorageError and unexpected errors
- mask_path_pii: phone digits in SMS session paths
"""
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from steambot.core.config import settings
from steambot.core.exceptions import (
    AppException,
    ErrorCode,
    NotFoundException,
    StorageError,
    ValidationException,
)
from steambot.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    app_exception_handler,
    generic_exception_handler,
    mask_path_pii,
    storage_exception_handler,
)


# ============================================================================
# Helpers
# ============================================================================


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _not_found(request: Request) -> PlainTextResponse:
    raise NotFoundException("Conversation", 7, error_code=ErrorCode.CONVERSATION_NOT_FOUND)


def _storage(request: Request) -> PlainTextResponse:
    raise StorageError("save_message")


def _crash(request: Request) -> PlainTextResponse:
    raise ValueError("unexpected")


def _build_app(*, debug: bool = True) -> Starlette:
    app = Starlette(
        routes=[
            Route("/hello", _hello),
            Route("/not-found", _not_found),
            Route("/storage", _storage),
            Route("/crash", _crash),
        ],
        exception_handlers={
            StorageError: storage_exception_handler,
            AppException: app_exception_handler,
            Exception: generic_exception_handler,
        },
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=debug)
    return app


class TestCorrelationIdMiddleware:

    @pytest.mark.unit
    def test_generates_correlation_id(self):
        response = TestClient(_build_app()).get("/hello")

        assert response.status_code == 200
        assert len(response.headers["X-Correlation-ID"]) == 8

    @pytest.mark.unit
    def test_echoes_incoming_correlation_id(self):
        response = TestClient(_build_app()).get("/hello", headers={"X-Correlation-ID": "abc12345"})
        assert response.headers["X-Correlation-ID"] == "abc12345"


class TestSecurityHeaders:

    @pytest.mark.unit
    def test_debug_skips_hsts(self):
        response = TestClient(_build_app(debug=True)).get("/hello")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.unit
    def test_production_adds_hsts_and_csp(self):
        response = TestClient(_build_app(debug=False)).get("/hello")

        assert response.headers["Strict-Transport-Security"].startswith("max-age=")
        assert response.headers["Content-Security-Policy"] == "upgrade-insecure-requests"


class TestExceptionHandlers:

    @pytest.mark.unit
    def test_app_exception(self):
        response = TestClient(_build_app()).get("/not-found")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == ErrorCode.CONVERSATION_NOT_FOUND.value

    @pytest.mark.unit
    def test_storage_error_carries_fallback(self):
        response = TestClient(_build_app()).get("/storage")

        body = response.json()
        assert response.status_code == 500
        assert body["error"]["code"] == ErrorCode.STORAGE_FAILURE.value
        assert body["fallback"] == settings.fallback_message

    @pytest.mark.unit
    def test_unexpected_error(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == ErrorCode.INTERNAL_ERROR.value

    @pytest.mark.unit
    def test_validation_exception_shape(self):
        exc = ValidationException("Message is required", field="message")

        assert exc.status_code == 400
        assert exc.to_dict()["error"]["details"] == {"field": "message"}


class TestMaskPathPii:

    @pytest.mark.unit
    def test_masks_sms_session_digits(self):
        assert mask_path_pii("/api/chat/history/sms_15035551234") == "/api/chat/history/sms_1503****1234"

    @pytest.mark.unit
    def test_leaves_other_paths(self):
        assert mask_path_pii("/api/chat/history/web_abc") == "/api/chat/history/web_abc"
