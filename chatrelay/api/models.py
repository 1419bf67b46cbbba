"""Model listing endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from chatrelay.api.chat import get_orchestrator
from chatrelay.auth import RequireIdentity
from chatrelay.services import ChatOrchestrator

router = APIRouter(tags=["models"])


@router.get("/models")
async def list_models_route(
    _identity: RequireIdentity,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Every model name served by a configured provider, sorted."""
    return {"models": sorted(orchestrator.list_supported_models())}
