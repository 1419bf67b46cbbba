"""
Application middleware for observability and request hygiene.

Includes request ID injection, request size limits, and error handling.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.errors import AppError, ErrorCode, ErrorResponse, UpstreamError
from chatrelay.core.logging import get_logger, identity_ctx, request_id_ctx, stream_id_ctx

logger = get_logger(__name__)


def _json_error(status_code: int, error_response: ErrorResponse) -> JSONResponse:
    request_id = error_response.request_id
    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict(),
        headers={"X-Request-ID": request_id} if request_id else {},
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to inject request ID and track request context."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with context injection."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        request_id_token = request_id_ctx.set(request_id)
        identity_token = identity_ctx.set(None)  # Set by the auth dependency
        stream_id_token = stream_id_ctx.set(None)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                data={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )

            return response

        finally:
            request_id_ctx.reset(request_id_token)
            identity_ctx.reset(identity_token)
            stream_id_ctx.reset(stream_id_token)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request body size limits."""

    def __init__(self, app: FastAPI, max_bytes: int = 1048576):
        """
        Initialize middleware.

        Args:
            app: FastAPI application
            max_bytes: Maximum request body size in bytes (default 1MB)
        """
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check request size before processing."""
        content_length = request.headers.get("content-length")
        request_id = request_id_ctx.get()

        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            logger.warning(
                "Request too large",
                data={
                    "content_length": content_length,
                    "max_bytes": self.max_bytes,
                },
            )
            return _json_error(
                413,
                ErrorResponse(
                    code=ErrorCode.REQUEST_TOO_LARGE,
                    message=f"Request body exceeds {self.max_bytes} bytes",
                    request_id=request_id,
                ),
            )

        return await call_next(request)


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers for the application."""
    from fastapi.exceptions import RequestValidationError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request structure maps to InvalidParameter."""
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _json_error(
            400,
            ErrorResponse(
                code=ErrorCode.INVALID_PARAMETER,
                message="Invalid request parameters",
                request_id=request_id_ctx.get(),
                details={"errors": errors},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle HTTP exceptions with structured response."""
        code_map = {
            404: ErrorCode.NOT_FOUND,
            405: ErrorCode.METHOD_NOT_ALLOWED,
        }
        error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        return _json_error(
            exc.status_code,
            ErrorResponse(
                code=error_code,
                message=str(exc.detail) if exc.detail else "HTTP error",
                request_id=request_id_ctx.get(),
            ),
        )

    @app.exception_handler(AppError)
    async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        """Handle application errors with structured response."""
        data = {"code": exc.code.value, "details": exc.details}
        if exc.context:
            data["context"] = exc.context
        if isinstance(exc, UpstreamError) or exc.status_code >= 500:
            logger.error(f"Application error: {exc.message}", data=data)
        else:
            logger.warning(f"Application error: {exc.message}", data=data)
        return _json_error(exc.status_code, exc.to_response(request_id=request_id_ctx.get()))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors without exposing internals."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            data={"path": request.url.path, "method": request.method},
        )
        return _json_error(
            500,
            ErrorResponse(
                code=ErrorCode.INTERNAL_ERROR,
                message="An unexpected error occurred",
                request_id=request_id_ctx.get(),
            ),
        )
