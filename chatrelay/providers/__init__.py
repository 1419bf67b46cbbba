"""Upstream provider interfaces and implementations."""

from chatrelay.providers.base import (
    BaseProvider,
    ChatChunk,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ProviderBinding,
)
from chatrelay.providers.ollama import OllamaProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider
from chatrelay.providers.registry import ProviderRegistry

__all__ = [
    "BaseProvider",
    "ChatChunk",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ProviderBinding",
    "OllamaProvider",
    "OpenAICompatProvider",
    "ProviderRegistry",
]
