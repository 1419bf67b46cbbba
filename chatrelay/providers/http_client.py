"""
Shared HTTP client helpers for provider adapters.

Provides consistent timeouts, retry behavior, and error mapping so provider
adapters raise stable UpstreamError instances. Raw upstream bodies only ever
land in ``AppError.context`` (logged), never in caller-visible details.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from chatrelay.core import (
    UpstreamAuthError,
    UpstreamBadResponseError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    get_logger,
    request_id_ctx,
)

logger = get_logger(__name__)

_CONNECTION_ERRORS = (httpx.ConnectError, httpx.NetworkError)


def create_http_client(
    base_url: str,
    timeout_seconds: float,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        base_url: Base URL for the provider.
        timeout_seconds: Connect/read/write timeout for requests.
        headers: Default headers to include.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(
        timeout_seconds, connect=timeout_seconds, read=timeout_seconds, write=timeout_seconds
    )
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=timeout,
        headers=headers or {},
        transport=transport,
    )


def _with_request_id(kwargs: dict[str, Any]) -> dict[str, Any]:
    headers = kwargs.pop("headers", {}) or {}
    request_id = request_id_ctx.get()
    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id
    kwargs["headers"] = headers
    return kwargs


def map_transport_error(exc: httpx.HTTPError) -> UpstreamError:
    """Translate an httpx exception into the matching UpstreamError."""
    context = {"reason": str(exc), "type": type(exc).__name__}
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError(context=context)
    if isinstance(exc, _CONNECTION_ERRORS):
        return UpstreamUnavailableError(context=context)
    return UpstreamError("Upstream request failed", context=context)


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int,
    **kwargs: Any,
) -> httpx.Response:
    """
    Execute an HTTP request with lightweight retries and mapped errors.

    Retries are only applied to connection-level failures, not HTTP status
    codes and not timeouts.
    """
    kwargs = _with_request_id(kwargs)
    for attempt in range(max_retries + 1):
        try:
            return await client.request(method, url, **kwargs)
        except _CONNECTION_ERRORS as exc:
            if attempt < max_retries:
                await asyncio.sleep(min(0.1 * (attempt + 1), 1.0))
                continue
            raise map_transport_error(exc) from exc
        except httpx.HTTPError as exc:
            raise map_transport_error(exc) from exc
    raise UpstreamUnavailableError()  # pragma: no cover - loop always returns or raises


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int,
    **kwargs: Any,
) -> AsyncIterator[httpx.Response]:
    """
    Open a streaming request with the same retry semantics as request_with_retries.

    The response is closed when the context exits, including on cancellation.
    """
    kwargs = _with_request_id(kwargs)
    request = client.build_request(method, url, **kwargs)
    response: httpx.Response | None = None
    for attempt in range(max_retries + 1):
        try:
            response = await client.send(request, stream=True)
            break
        except _CONNECTION_ERRORS as exc:
            if attempt < max_retries:
                await asyncio.sleep(min(0.1 * (attempt + 1), 1.0))
                continue
            raise map_transport_error(exc) from exc
        except httpx.HTTPError as exc:
            raise map_transport_error(exc) from exc

    if response is None:
        raise UpstreamUnavailableError()
    try:
        yield response
    except httpx.HTTPError as exc:
        raise map_transport_error(exc) from exc
    finally:
        await response.aclose()


async def raise_for_status(response: httpx.Response) -> None:
    """
    Map HTTP status codes to stable UpstreamError types.

    Works for both buffered and streamed responses (the body is read first).
    """
    status = response.status_code
    if status < 400:
        return

    context = await _safe_error_context(response)
    logger.warning("Upstream returned an error status", data=context)

    if status in (401, 403):
        raise UpstreamAuthError(context=context)
    if status == 408 or status == 504:
        raise UpstreamTimeoutError(context=context)
    if status == 429:
        raise UpstreamError("Upstream provider rate limit exceeded", context=context)
    if status >= 500:
        raise UpstreamUnavailableError(context=context)
    raise UpstreamError("Upstream provider rejected the request", context=context)


def parse_json(response: httpx.Response) -> Any:
    """
    Parse JSON with consistent error handling.
    """
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        snippet = response.text[:500] if response.text else ""
        raise UpstreamBadResponseError(context={"body": snippet}) from exc


async def _safe_error_context(response: httpx.Response) -> dict[str, Any]:
    """Return a small error payload for logs."""
    body_snippet = ""
    try:
        await response.aread()
        body_snippet = response.text[:300]
    except httpx.HTTPError:  # pragma: no cover - stream already broken
        body_snippet = ""

    return {
        "status": response.status_code,
        "body": body_snippet,
        "url": str(response.request.url),
    }
