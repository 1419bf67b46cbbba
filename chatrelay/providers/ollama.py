"""Ollama native provider adapter."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from chatrelay.config.relay import ProviderKind
from chatrelay.core import UpstreamBadResponseError
from chatrelay.providers.base import (
    BaseProvider,
    ChatChunk,
    ChatMessage,
    ChatRequest,
    ChatResponse,
)
from chatrelay.providers.http_client import (
    create_http_client,
    open_stream,
    parse_json,
    raise_for_status,
    request_with_retries,
)


class OllamaProvider(BaseProvider):
    """Adapter for Ollama's native HTTP API."""

    kind = ProviderKind.OLLAMA

    def __init__(
        self,
        base_url: str,
        timeout: float,
        max_retries: int,
        display_name: str = "Ollama",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.display_name = display_name
        self.max_retries = max_retries
        self.client = create_http_client(
            base_url=base_url,
            timeout_seconds=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def chat_once(self, request: ChatRequest) -> ChatResponse:
        """Send a single chat request (non-streaming)."""
        response = await request_with_retries(
            self.client,
            "POST",
            "/api/chat",
            json=_build_payload(request, stream=False),
            max_retries=self.max_retries,
        )
        await raise_for_status(response)
        data = parse_json(response)

        message = (data.get("message") or {}).get("content") if isinstance(data, dict) else None
        if not isinstance(message, str):
            raise UpstreamBadResponseError(context={"body": str(data)[:500]})

        finish_reason = data.get("done_reason") or ("stop" if data.get("done") else None)

        return ChatResponse(
            content=message,
            model=data.get("model", request.model),
            finish_reason=finish_reason or "stop",
            prompt_tokens=data.get("prompt_eval_count"),
            completion_tokens=data.get("eval_count"),
            total_tokens=None,
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]:
        """Stream chat responses as JSON lines."""
        async with open_stream(
            self.client,
            "POST",
            "/api/chat",
            json=_build_payload(request, stream=True),
            max_retries=self.max_retries,
        ) as stream:
            await raise_for_status(stream)
            async for line in stream.aiter_lines():
                if not line:
                    continue
                try:
                    chunk_obj = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise UpstreamBadResponseError(context={"line": line[:300]}) from exc
                if not isinstance(chunk_obj, dict):
                    raise UpstreamBadResponseError(context={"line": line[:300]})

                content = (chunk_obj.get("message") or {}).get("content") or ""
                finish_reason = chunk_obj.get("done_reason") if chunk_obj.get("done") else None

                if content or finish_reason:
                    yield ChatChunk(
                        content=content,
                        finish_reason=finish_reason,
                        model=chunk_obj.get("model", request.model),
                    )

                if chunk_obj.get("done"):
                    break


def _build_payload(request: ChatRequest, *, stream: bool) -> dict[str, Any]:
    return {
        "model": request.model,
        "messages": _format_messages(request.messages),
        "options": {"temperature": request.temperature},
        "stream": stream,
    }


def _format_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert ChatMessage objects to Ollama's expected shape."""
    return [{"role": msg.role, "content": msg.content} for msg in messages]
