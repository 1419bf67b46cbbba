"""
Health check endpoint.

Used by load balancers, orchestrators, and monitoring systems.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from chatrelay import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def healthcheck(request: Request) -> dict[str, Any]:
    """Basic liveness plus a few cheap readiness facts."""
    state = request.app.state
    orchestrator = getattr(state, "orchestrator", None)
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "providers": len(orchestrator.registry.bindings()) if orchestrator else 0,
        "conversations": orchestrator.conversation_count() if orchestrator else 0,
    }
