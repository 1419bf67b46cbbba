"""
Base provider interface.

Every upstream connector exposes the same two capabilities: a buffered
exchange (``chat_once``) and an incremental exchange (``chat_stream``).
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from chatrelay.config.relay import ProviderKind


@dataclass(frozen=True)
class ProviderBinding:
    """Connection details for one upstream backend and the models it serves."""

    provider_name: str
    endpoint: str
    credential: str = field(repr=False)
    supported_models: frozenset[str]
    kind: ProviderKind = ProviderKind.OPENAI_COMPAT


@dataclass
class ChatMessage:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ChatRequest:
    """Request for chat completion."""

    messages: list[ChatMessage]
    model: str
    temperature: float = 0.7
    stream: bool = False


@dataclass
class ChatChunk:
    """A single chunk from streaming response."""

    content: str
    finish_reason: str | None = None
    model: str | None = None


@dataclass
class ChatResponse:
    """Complete chat response (non-streaming)."""

    content: str
    model: str
    finish_reason: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class BaseProvider(ABC):
    """
    Abstract base class for upstream providers.

    Adapters raise ``UpstreamError`` (or a subclass) for every transport,
    status, timeout, or protocol failure.
    """

    kind: ProviderKind
    display_name: str = "provider"

    async def aclose(self) -> None:
        """Close any underlying resources (optional)."""
        return None

    @abstractmethod
    async def chat_once(self, request: ChatRequest) -> ChatResponse:
        """
        Send a chat request and wait for complete response.

        Args:
            request: ChatRequest with messages and parameters

        Returns:
            Complete ChatResponse

        Raises:
            UpstreamError: If the provider fails or answers malformed data
        """
        ...

    @abstractmethod
    def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]:
        """
        Send a chat request and stream the response.

        Args:
            request: ChatRequest with messages and parameters

        Yields:
            ChatChunk objects as they arrive

        Raises:
            UpstreamError: If the provider fails mid-stream
        """
        ...
