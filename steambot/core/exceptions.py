"""
Application error types.

Each class fixes its own error code and HTTP status; the web layer renders
any of them with ``to_dict``. Guardrail rules never raise: a rejected
message is a verdict, not an error.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # request (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # conversation store (2xxx)
    CONVERSATION_NOT_FOUND = "ERR_2001"
    STORAGE_FAILURE = "ERR_2002"

    # upstreams (5xxx)
    MODEL_PROVIDER_ERROR = "ERR_5001"
    SMS_PROVIDER_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"


class AppException(Exception):
    """Root of every error the API knows how to render"""

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.status_code = status_code or self.default_status
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationException(AppException):
    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 400

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    default_code = ErrorCode.NOT_FOUND
    default_status = 404

    def __init__(self, resource: str, identifier: Any, error_code: ErrorCode | None = None):
        super().__init__(
            f"{resource} not found: {identifier}",
            error_code=error_code,
            details={"resource": resource, "identifier": str(identifier)},
        )


class StorageError(AppException):
    """
    The conversation store could not be read or written.

    The one failure that reaches the channel boundary: without storage the
    conversation cannot be kept consistent, so the caller answers with the
    fallback reply instead of guessing.
    """

    default_code = ErrorCode.STORAGE_FAILURE

    def __init__(self, operation: str, message: str | None = None):
        super().__init__(
            message or f"Storage operation failed: {operation}",
            details={"operation": operation},
        )


class ExternalServiceException(AppException):
    """An upstream (model provider, SMS carrier) failed or is unavailable"""

    default_code = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE
    default_status = 503
    service_name = "external"

    def __init__(self, message: str, details: dict[str, Any] | None = None, service_name: str | None = None):
        super().__init__(message, details=details)
        if service_name:
            self.service_name = service_name
        self.details["service"] = self.service_name


class ModelProviderError(ExternalServiceException):
    """
    Classified failure of a language-model call.

    ``kind`` drives the retry policy: only ``rate_limited`` is retried,
    ``overloaded`` and ``other`` fall back straight away.
    """

    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    OTHER = "other"

    default_code = ErrorCode.MODEL_PROVIDER_ERROR
    service_name = "model_provider"

    def __init__(
        self,
        kind: str,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(
            f"Model provider error ({kind}): {message}",
            details={"kind": kind, "provider_status": status_code},
        )
        self.kind = kind
        self.provider_status = status_code
        self.retry_after = retry_after


class SmsDeliveryError(ExternalServiceException):
    default_code = ErrorCode.SMS_PROVIDER_ERROR
    service_name = "twilio"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"SMS delivery error: {message}", details=details)

    @classmethod
    def from_response(cls, operation: str, response: Any, *, max_response_chars: int = 500) -> "SmsDeliveryError":
        """Wrap a rejected carrier response (httpx.Response or lookalike)"""
        status_code = getattr(response, "status_code", None)
        body = getattr(response, "text", "") or ""
        return cls(
            f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": body[:max_response_chars],
            },
        )


class CircuitBreakerOpenError(ExternalServiceException):
    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            f"{service_name} is temporarily unavailable (circuit breaker open)",
            details={"retry_after_seconds": retry_after_seconds},
            service_name=service_name,
        )
