"""HTTP routers."""

from fastapi import APIRouter

from chatrelay.api import admin, chat, health, models

api_router = APIRouter(prefix="/api")
api_router.include_router(chat.router)
api_router.include_router(models.router)
api_router.include_router(admin.router)

__all__ = ["api_router", "health"]
