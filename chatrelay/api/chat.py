"""Chat endpoints: buffered send and SSE streaming."""

from __future__ import annotations

from typing import Any
from urllib.parse import unquote

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatrelay.auth import RequireIdentity
from chatrelay.core import InvalidParameterError, get_logger
from chatrelay.core.logging import request_id_ctx
from chatrelay.services import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    ChatOrchestrator,
    StreamRelay,
    TurnRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

AGENT_CONFIG_ERROR = (
    "Invalid agentConfig: must contain name, model, temperature, and systemPrompt"
)


class AgentConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    # Range is enforced by the orchestrator after admission.
    temperature: float
    system_prompt: str = Field(..., alias="systemPrompt")


class ChatSendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(..., alias="agentId", min_length=1)
    session_id: str = Field(..., alias="sessionId", min_length=1)
    message: str = Field(..., min_length=1)
    agent_config: AgentConfig = Field(..., alias="agentConfig")


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_stream_relay(request: Request) -> StreamRelay:
    return request.app.state.stream_relay


def parse_agent_config(raw: str) -> AgentConfig:
    """Parse the JSON ``agentConfig`` query parameter (optionally still URL-encoded)."""
    text = raw.strip()
    if not text.startswith("{"):
        text = unquote(text)
    try:
        return AgentConfig.model_validate_json(text)
    except ValidationError as exc:
        raise InvalidParameterError(
            AGENT_CONFIG_ERROR,
            details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
        ) from exc


def _turn_request(
    identity: str, session_id: str, message: str, agent: AgentConfig
) -> TurnRequest:
    return TurnRequest(
        conversation_id=session_id,
        owner_identity=identity,
        message_text=message,
        model_name=agent.model,
        temperature=agent.temperature,
        system_prompt=agent.system_prompt,
    )


async def _stream_response(
    request: Request,
    turn: TurnRequest,
    orchestrator: ChatOrchestrator,
    relay: StreamRelay,
) -> StreamingResponse:
    stream = await orchestrator.stream_turn(turn)
    headers = dict(SSE_HEADERS)
    request_id = request_id_ctx.get()
    if request_id:
        headers["X-Request-ID"] = request_id
    return StreamingResponse(
        relay.relay(stream, request.is_disconnected),
        media_type=SSE_MEDIA_TYPE,
        headers=headers,
    )


@router.post("/send")
async def chat_send_route(
    identity: RequireIdentity,
    body: ChatSendRequest = Body(...),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    logger.debug(
        "Chat send",
        data={"agent_id": body.agent_id, "conversation_id": body.session_id},
    )
    result = await orchestrator.send_turn(
        _turn_request(identity, body.session_id, body.message, body.agent_config)
    )
    return {
        "messageId": result.message_id,
        "content": result.content,
        "timestamp": result.timestamp.isoformat(),
        "model": result.model,
    }


@router.get("/stream")
async def chat_stream_route(
    request: Request,
    identity: RequireIdentity,
    agent_id: str = Query(..., alias="agentId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    message: str = Query(..., min_length=1),
    agent_config: str = Query(..., alias="agentConfig", min_length=1),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    relay: StreamRelay = Depends(get_stream_relay),
) -> StreamingResponse:
    agent = parse_agent_config(agent_config)
    logger.debug(
        "Chat stream requested",
        data={"agent_id": agent_id, "conversation_id": session_id},
    )
    turn = _turn_request(identity, session_id, message, agent)
    return await _stream_response(request, turn, orchestrator, relay)


@router.post("/stream")
async def chat_stream_post_route(
    request: Request,
    identity: RequireIdentity,
    body: ChatSendRequest = Body(...),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    relay: StreamRelay = Depends(get_stream_relay),
) -> StreamingResponse:
    turn = _turn_request(identity, body.session_id, body.message, body.agent_config)
    return await _stream_response(request, turn, orchestrator, relay)
