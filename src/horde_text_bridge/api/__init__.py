"""Read-only status API."""

from fastapi import FastAPI

from horde_text_bridge import __version__
from horde_text_bridge.api.router import api_router
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard


def create_status_app(board: InMemoryStatusBoard) -> FastAPI:
    """Build the FastAPI application serving one status board."""

    app = FastAPI(title="Horde Text Bridge", version=__version__)
    app.state.status_board = board
    app.include_router(api_router)
    return app


__all__ = ["api_router", "create_status_app"]
