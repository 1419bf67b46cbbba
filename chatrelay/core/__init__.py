"""Core module with logging, errors, metrics, and locking helpers."""

from chatrelay.core.errors import (
    AppError,
    ConfigInvalidError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    InternalError,
    InvalidCredentialError,
    InvalidParameterError,
    NotFoundError,
    RateLimitedError,
    TooLongError,
    UnauthorizedError,
    UnsupportedModelError,
    UpstreamAuthError,
    UpstreamBadResponseError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from chatrelay.core.locks import KeyedAsyncLock, StripedLock
from chatrelay.core.logging import (
    get_logger,
    identity_ctx,
    request_id_ctx,
    setup_logging,
    stream_id_ctx,
)
from chatrelay.core.metrics import MetricsRegistry

__all__ = [
    # Errors
    "AppError",
    "ConfigInvalidError",
    "ErrorCode",
    "ErrorResponse",
    "ForbiddenError",
    "InternalError",
    "InvalidCredentialError",
    "InvalidParameterError",
    "NotFoundError",
    "RateLimitedError",
    "TooLongError",
    "UnauthorizedError",
    "UnsupportedModelError",
    "UpstreamAuthError",
    "UpstreamBadResponseError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    # Locks
    "KeyedAsyncLock",
    "StripedLock",
    # Logging
    "get_logger",
    "identity_ctx",
    "request_id_ctx",
    "setup_logging",
    "stream_id_ctx",
    # Metrics
    "MetricsRegistry",
]
