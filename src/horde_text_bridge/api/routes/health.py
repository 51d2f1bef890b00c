"""Liveness route for the bridge process."""

from fastapi import APIRouter, Depends, Response, status

from horde_text_bridge.api.dependencies import get_status_board
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz(
    response: Response,
    board: InMemoryStatusBoard = Depends(get_status_board),
) -> dict[str, str]:
    """Report `stopping` with 503 once a graceful shutdown was requested."""

    if board.graceful_shutdown_requested:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "stopping"}
    return {"status": "ok"}


__all__ = ["router"]
