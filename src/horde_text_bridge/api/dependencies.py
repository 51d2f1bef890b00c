"""Dependency providers for FastAPI routes."""

from fastapi import Request

from horde_text_bridge.infrastructure.status import InMemoryStatusBoard


def get_status_board(request: Request) -> InMemoryStatusBoard:
    """Return the status board the app was built around."""

    return request.app.state.status_board


__all__ = ["get_status_board"]
