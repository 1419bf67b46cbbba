"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    INVALID_PARAMETER = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    TOO_LONG = "E1004"
    RATE_LIMITED = "E1005"
    CONFIG_INVALID = "E1006"
    REQUEST_TOO_LARGE = "E1007"

    # Authentication errors (2xxx)
    UNAUTHORIZED = "E2000"
    INVALID_CREDENTIAL = "E2001"

    # Authorization errors (3xxx)
    FORBIDDEN = "E3000"

    # Upstream provider errors (4xxx)
    UPSTREAM_ERROR = "E4001"
    UNSUPPORTED_MODEL = "E4002"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail.

    ``details`` is returned to callers. ``context`` is for logs only and may
    hold upstream diagnostics that must never reach a client.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.context = context
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


class InternalError(AppError):
    """Invariant violation (500)."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.INTERNAL_ERROR, message, 500, context=context)


class InvalidParameterError(AppError):
    """Parameter out of range or malformed structure (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.INVALID_PARAMETER, message, 400, details)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(ErrorCode.NOT_FOUND, message, 404)


class TooLongError(AppError):
    """Message or system prompt exceeds its configured bound (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.TOO_LONG, message, 400, details)


class RateLimitedError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str = "Rate limit exceeded", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, details)


class ConfigInvalidError(AppError):
    """Configuration missing or malformed (500)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.CONFIG_INVALID, message, 500, details)


class UnauthorizedError(AppError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Missing authentication token"):
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class InvalidCredentialError(AppError):
    """Presented token could not be verified (401)."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(ErrorCode.INVALID_CREDENTIAL, message, 401)


class ForbiddenError(AppError):
    """Access denied (403)."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class UnsupportedModelError(AppError):
    """No provider binding declares the requested model (400)."""

    def __init__(self, model: str):
        super().__init__(
            ErrorCode.UNSUPPORTED_MODEL,
            f"Model {model} is not supported",
            400,
            {"model": model},
        )


class UpstreamError(AppError):
    """Provider transport or protocol failure (502)."""

    def __init__(
        self,
        message: str = "Upstream provider error",
        status_code: int = 502,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.UPSTREAM_ERROR, message, status_code, context=context)


class UpstreamUnavailableError(UpstreamError):
    """Provider unreachable or failing server-side (503)."""

    def __init__(
        self, message: str = "Upstream provider unavailable", context: dict[str, Any] | None = None
    ):
        super().__init__(message, 503, context)


class UpstreamTimeoutError(UpstreamError):
    """Provider did not answer in time (504)."""

    def __init__(
        self, message: str = "Upstream provider timed out", context: dict[str, Any] | None = None
    ):
        super().__init__(message, 504, context)


class UpstreamBadResponseError(UpstreamError):
    """Provider returned a malformed response (502)."""

    def __init__(
        self,
        message: str = "Upstream provider returned an invalid response",
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, 502, context)


class UpstreamAuthError(UpstreamError):
    """Provider rejected our credential (502, never surfaced as a caller 401)."""

    def __init__(
        self,
        message: str = "Upstream provider rejected credentials",
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, 502, context)
