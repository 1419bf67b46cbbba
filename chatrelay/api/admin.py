"""
Admin API endpoints.

Introspection and maintenance for the in-memory conversation store.
"""

from typing import Any

from fastapi import APIRouter, Depends

from chatrelay.api.chat import get_orchestrator
from chatrelay.auth import RequireAdmin
from chatrelay.core import NotFoundError
from chatrelay.services import ChatOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats")
async def stats_route(
    _admin: RequireAdmin,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return {
        "conversations": orchestrator.conversation_count(),
        "activeStreams": len(orchestrator.manager),
        "models": sorted(orchestrator.list_supported_models()),
        "metrics": orchestrator.metrics.snapshot(),
    }


@router.post("/sweep")
async def sweep_route(
    _admin: RequireAdmin,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    removed = orchestrator.force_expire_sweep()
    return {"removed": removed, "conversations": orchestrator.conversation_count()}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation_route(
    conversation_id: str,
    _admin: RequireAdmin,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    if not orchestrator.delete_conversation(conversation_id):
        raise NotFoundError("Conversation not found")
    return {"status": "deleted", "conversation_id": conversation_id}
