"""Shared tokens-per-second limiter for all workers."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable

from horde_text_bridge.domain.ports import SleepFunction, ThroughputThrottle

logger = logging.getLogger(__name__)


class TokenRateThrottle(ThroughputThrottle):
    """FIFO virtual-time rate limiter.

    Each reservation occupies `ceil(tokens / max_tps * 1000)` milliseconds on a
    shared cursor. The cursor is read and advanced under one lock, so a later
    caller always waits behind every earlier reservation, including ones whose
    callers are still sleeping.
    """

    def __init__(
        self,
        max_tokens_per_second: float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        if max_tokens_per_second is not None and max_tokens_per_second <= 0:
            raise ValueError("max_tokens_per_second must be > 0 when set.")
        self._max_tokens_per_second = max_tokens_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_allowed_at = clock()

    @property
    def max_tokens_per_second(self) -> float | None:
        return self._max_tokens_per_second

    @property
    def next_allowed_at(self) -> float:
        return self._next_allowed_at

    async def reserve(self, token_count: int, job_id: str | None = None) -> float:
        """Wait until emitting `token_count` tokens keeps the shared rate; return the delay."""

        max_tps = self._max_tokens_per_second
        if max_tps is None or token_count <= 0:
            return 0.0

        async with self._lock:
            now = self._clock()
            slot_seconds = math.ceil(token_count / max_tps * 1000) / 1000
            finish_at = max(now, self._next_allowed_at) + slot_seconds
            self._next_allowed_at = finish_at
        delay = max(0.0, finish_at - now)

        if delay > 0:
            if job_id is not None:
                logger.debug(
                    "Throttling generation %s: %s tokens, waiting %.3fs to respect %s tps.",
                    job_id,
                    token_count,
                    delay,
                    max_tps,
                )
            await self._sleep(delay)
        return delay


__all__ = ["TokenRateThrottle"]
