"""Conversation state, admission control, and chat orchestration."""

from chatrelay.services.channel import ChunkChannel, TurnStream
from chatrelay.services.chat_service import ActiveStreamManager, ChatOrchestrator
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.rate_limiter import RateLimiter
from chatrelay.services.stream_relay import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    StreamRelay,
    event_payload,
    format_sse_event,
)
from chatrelay.services.sweeper import ExpirySweeper
from chatrelay.services.types import (
    ChunkEvent,
    Conversation,
    Role,
    Turn,
    TurnRequest,
    TurnResult,
    new_message_id,
    utcnow,
)

__all__ = [
    "ActiveStreamManager",
    "ChatOrchestrator",
    "ChunkChannel",
    "ChunkEvent",
    "Conversation",
    "ConversationStore",
    "ExpirySweeper",
    "RateLimiter",
    "Role",
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "StreamRelay",
    "Turn",
    "TurnRequest",
    "TurnResult",
    "TurnStream",
    "event_payload",
    "format_sse_event",
    "new_message_id",
    "utcnow",
]
