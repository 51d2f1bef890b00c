"""Bridge status routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from horde_text_bridge.api.dependencies import get_status_board
from horde_text_bridge.domain.status_models import BridgeStatusResponse
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard

router = APIRouter(tags=["status"])


@router.get("/status", response_model=BridgeStatusResponse, status_code=200)
async def get_status(
    board: InMemoryStatusBoard = Depends(get_status_board),
) -> BridgeStatusResponse:
    """Counters, worker states, and recent jobs."""

    return board.snapshot()


__all__ = ["router"]
