"""Phase-offset scheduling of queue polls across workers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from horde_text_bridge.domain.ports import PollScheduler, SleepFunction

_MIN_WAIT_SECONDS = 0.01


class StaggeredPollScheduler(PollScheduler):
    """Spread worker polls evenly over the refresh interval.

    Worker `i` of `N` polls near `i * R / N` seconds past the shared epoch,
    modulo `R`. Negative worker ids are immediate probes and never wait.
    """

    def __init__(
        self,
        refresh_seconds: float,
        worker_count: int,
        epoch: float,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        self._refresh_seconds = refresh_seconds
        self._worker_count = worker_count
        self._epoch = epoch
        self._enabled = enabled
        self._clock = clock
        self._sleep = sleep

    @property
    def active(self) -> bool:
        return self._enabled and self._refresh_seconds > 0 and self._worker_count > 1

    def phase_offset(self, worker_id: int) -> float:
        """Return the worker's slot start within one refresh interval."""

        slot = self._refresh_seconds / self._worker_count
        return (worker_id % self._worker_count) * slot

    def delay_for(self, worker_id: int, now: float | None = None) -> float:
        """Return seconds until the worker's next slot, in [0, refresh)."""

        if worker_id < 0 or not self.active:
            return 0.0
        current = self._clock() if now is None else now
        elapsed_in_cycle = max(0.0, current - self._epoch) % self._refresh_seconds
        wait = self.phase_offset(worker_id) - elapsed_in_cycle
        if wait < 0:
            wait += self._refresh_seconds
        return wait

    async def wait_for_slot(self, worker_id: int) -> float:
        """Sleep until the worker's slot; waits under 10ms are skipped."""

        wait = self.delay_for(worker_id)
        if wait < _MIN_WAIT_SECONDS:
            return 0.0
        await self._sleep(wait)
        return wait


__all__ = ["StaggeredPollScheduler"]
