"""Route modules public API."""

from horde_text_bridge.api.routes.health import router as health_router
from horde_text_bridge.api.routes.status import router as status_router

__all__ = ["health_router", "status_router"]
