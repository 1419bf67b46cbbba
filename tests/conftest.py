"""Shared fixtures and stubs for chatrelay tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from chatrelay.config import (
    ProviderConfig,
    ProviderKind,
    RateLimitConfig,
    RelayConfig,
    SessionConfig,
)
from chatrelay.core import MetricsRegistry
from chatrelay.providers import (
    BaseProvider,
    ChatChunk,
    ChatRequest,
    ChatResponse,
    ProviderRegistry,
)
from chatrelay.services import ChatOrchestrator, ConversationStore, RateLimiter

TEST_MODEL = "test-model"


class StubProvider(BaseProvider):
    """Provider stub that echoes the last user message or plays a scripted stream."""

    kind = ProviderKind.OPENAI_COMPAT

    def __init__(
        self,
        chunks: list[str | Exception] | None = None,
        error: Exception | None = None,
        delays: list[float] | None = None,
    ):
        self.display_name = "stub"
        self.chunks = chunks
        self.error = error
        self.delays = list(delays or [])
        self.requests: list[ChatRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def _pause(self) -> None:
        index = len(self.requests) - 1
        delay = self.delays[index] if index < len(self.delays) else 0.0
        await asyncio.sleep(delay)

    async def chat_once(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        await self._pause()
        if self.error is not None:
            raise self.error
        return ChatResponse(
            content=f"echo:{request.messages[-1].content}",
            model=request.model,
            finish_reason="stop",
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncGenerator[ChatChunk, None]:
        self.requests.append(request)
        steps = self.chunks if self.chunks is not None else [f"echo:{request.messages[-1].content}"]
        for step in steps:
            await self._pause()
            if isinstance(step, Exception):
                raise step
            yield ChatChunk(content=step)
        if self.error is not None:
            raise self.error


class FakeClock:
    """Settable wall clock returning aware UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_relay_config(
    models: tuple[str, ...] = (TEST_MODEL,),
    cap: int = 10,
    window_seconds: float = 60.0,
    max_message_length: int = 4000,
    max_system_prompt_length: int = 2000,
    expiration_hours: float = 24.0,
) -> RelayConfig:
    return RelayConfig(
        providers={
            "stub": ProviderConfig(base_url="http://stub.test", api_key="k", models=list(models)),
        },
        rate_limits=RateLimitConfig(
            requests_per_window=cap,
            window_seconds=window_seconds,
            max_message_length=max_message_length,
            max_system_prompt_length=max_system_prompt_length,
        ),
        session=SessionConfig(expiration_hours=expiration_hours),
    )


def make_orchestrator(
    provider: BaseProvider,
    config: RelayConfig | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> ChatOrchestrator:
    config = config or make_relay_config()
    clock = clock or FakeClock()
    registry = ProviderRegistry(config, adapter_overrides={"stub": provider})
    limits = config.rate_limits
    return ChatOrchestrator(
        store=ConversationStore(clock=clock),
        limiter=RateLimiter(limits.requests_per_window, limits.window_seconds),
        registry=registry,
        limits=limits,
        session=config.session,
        metrics=MetricsRegistry(),
        clock=clock,
        **kwargs,
    )


def parse_sse_units(raw: str) -> list[dict[str, Any]]:
    """Decode every ``data:`` unit of an SSE body, skipping comments."""
    units: list[dict[str, Any]] = []
    for block in raw.split("\n\n"):
        block = block.strip()
        if not block or block.startswith(":"):
            continue
        assert block.startswith("data: "), block
        units.append(json.loads(block[len("data: "):]))
    return units


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
