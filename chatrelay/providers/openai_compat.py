"""OpenAI-compatible chat-completions adapter (DeepSeek, Kimi, Qwen, OpenRouter, LM Studio...)."""

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

COMPLETIONS_PATH = "/chat/completions"


class OpenAICompatProvider(BaseProvider):
    """Adapter for any endpoint speaking the OpenAI chat-completions protocol."""

    kind = ProviderKind.OPENAI_COMPAT

    def __init__(
        self,
        base_url: str,
        timeout: float,
        max_retries: int,
        api_key: str | None = None,
        display_name: str = "OpenAI-compatible",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.display_name = display_name
        self.max_retries = max_retries
        # Some deployments configure the full completions URL as the base.
        base = base_url.rstrip("/")
        if base.endswith(COMPLETIONS_PATH):
            base = base[: -len(COMPLETIONS_PATH)]
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = create_http_client(
            base_url=base,
            timeout_seconds=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def chat_once(self, request: ChatRequest) -> ChatResponse:
        """Send a single chat request (non-streaming)."""
        response = await request_with_retries(
            self.client,
            "POST",
            COMPLETIONS_PATH,
            json=_build_payload(request, stream=False),
            max_retries=self.max_retries,
        )
        await raise_for_status(response)
        data = parse_json(response)

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamBadResponseError(
                context={"provider": self.display_name, "body": str(data)[:500]}
            ) from exc
        if not isinstance(content, str):
            raise UpstreamBadResponseError(
                context={"provider": self.display_name, "body": str(data)[:500]}
            )

        usage = data.get("usage") or {}
        return ChatResponse(
            content=content,
            model=data.get("model", request.model),
            finish_reason=choice.get("finish_reason") or "stop",
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]:
        """Stream chat responses from server-sent ``data:`` lines."""
        async with open_stream(
            self.client,
            "POST",
            COMPLETIONS_PATH,
            json=_build_payload(request, stream=True),
            max_retries=self.max_retries,
        ) as response:
            await raise_for_status(response)
            async for line in response.aiter_lines():
                line = line.strip()
                if not line or not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk_obj = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise UpstreamBadResponseError(
                        context={"provider": self.display_name, "line": line[:300]}
                    ) from exc

                choices = chunk_obj.get("choices") if isinstance(chunk_obj, dict) else None
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}
                content = delta.get("content") or ""
                finish_reason = choice.get("finish_reason")
                if not content and not finish_reason:
                    continue

                yield ChatChunk(
                    content=content,
                    finish_reason=finish_reason,
                    model=chunk_obj.get("model", request.model),
                )


def _build_payload(request: ChatRequest, *, stream: bool) -> dict[str, Any]:
    return {
        "model": request.model,
        "messages": _format_messages(request.messages),
        "temperature": request.temperature,
        "stream": stream,
    }


def _format_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]
