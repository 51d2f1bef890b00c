"""Top-level API router composition."""

from fastapi import APIRouter

from horde_text_bridge.api.routes import health_router, status_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(status_router)

__all__ = ["api_router"]
