"""
HTTP middleware and exception handlers.

Request path, outermost first: SecurityHeaders -> CorrelationId ->
RequestLogging -> routes. Every error body carries the correlation id header,
and errors a parent could see mid-chat also carry the fallback reply.
"""
import re
import time
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from steambot.core.config import settings
from steambot.core.exceptions import AppException, ErrorCode, StorageError
from steambot.core.logging import bind_session, get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# sms_15035551234 -> sms_1503****1234
_PHONE_IN_PATH_RE = re.compile(r"(\+?\d{4})\d{3,}(\d{4})")

_ALWAYS_HEADERS = {"X-Content-Type-Options": "nosniff"}
_HTTPS_HEADERS = {
    "Content-Security-Policy": "upgrade-insecure-requests",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def mask_path_pii(path: str) -> str:
    return _PHONE_IN_PATH_RE.sub(r"\1****\2", path)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopts the caller's X-Correlation-ID (or mints one) and echoes it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        bind_session(None)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line per request outcome; phone digits in the path are masked"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        fields: dict[str, Any] = {
            "method": request.method,
            "path": mask_path_pii(request.url.path),
        }
        try:
            response = await call_next(request)
        except Exception as e:
            fields.update(error=type(e).__name__, duration_seconds=round(time.monotonic() - started, 4))
            logger.error("Request failed", extra_data=fields, exc_info=True)
            raise

        fields.update(status_code=response.status_code, duration_seconds=round(time.monotonic() - started, 4))
        if response.status_code >= 400:
            logger.warning("Request completed with error status", extra_data=fields)
        else:
            logger.info("Request completed", extra_data=fields)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    nosniff everywhere; HSTS and CSP upgrade-insecure-requests only outside
    DEBUG so plain-HTTP local development keeps working.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._headers = dict(_ALWAYS_HEADERS)
        if not debug:
            self._headers.update(_HTTPS_HEADERS)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self._headers)
        return response


def _error_response(status_code: int, content: dict, *, with_fallback: bool = False) -> JSONResponse:
    if with_fallback:
        content = {**content, "fallback": settings.fallback_message}
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        exc.message,
        extra_data={
            "error_code": exc.error_code.value,
            "details": exc.details,
            "path": mask_path_pii(request.url.path),
        }
    )
    return _error_response(exc.status_code, exc.to_dict())


async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
    """The conversation could not be read or written; the parent still gets a reply"""
    logger.error(
        "Storage failure reached the web boundary",
        extra_data={
            "operation": exc.details.get("operation"),
            "path": mask_path_pii(request.url.path),
        }
    )
    return _error_response(exc.status_code, exc.to_dict(), with_fallback=True)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra_data={"path": mask_path_pii(request.url.path)},
        exc_info=True
    )
    body = {
        "error": {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {},
        }
    }
    return _error_response(500, body, with_fallback=True)


def setup_middleware(app: FastAPI) -> None:
    # added innermost first
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
