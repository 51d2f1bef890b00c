"""Process-wide runtime state shared by every worker."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from horde_text_bridge.domain.jobs import MAX_FAILED_REQUESTS, CycleOutcome

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    """Running flag, consecutive-failure counter, and poll epoch.

    Every mutation goes through `_lock` so concurrent workers never lose
    updates to the failure counter.
    """

    max_failed_requests: int = MAX_FAILED_REQUESTS
    poll_epoch: float = field(default_factory=time.monotonic)
    running: bool = True
    consecutive_failures: int = 0
    graceful_shutdown_requested: bool = False
    stop_reason: str | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self.max_failed_requests = max(1, self.max_failed_requests)

    async def record_outcome(self, outcome: CycleOutcome) -> bool:
        """Apply one cycle outcome; return whether the pool keeps running."""

        async with self._lock:
            if not outcome.counts_as_failure:
                self.consecutive_failures = 0
                return self.running

            self.consecutive_failures += 1
            if self.consecutive_failures >= self.max_failed_requests and self.running:
                logger.error(
                    "Failed %s cycles in a row, stopping all workers.",
                    self.consecutive_failures,
                )
                self.running = False
                self.stop_reason = "too many consecutive failures"
            return self.running

    async def request_stop(self, reason: str, *, graceful: bool = True) -> None:
        """Clear the running flag so no further cycles start."""

        async with self._lock:
            if graceful:
                self.graceful_shutdown_requested = True
            if not self.running:
                return
            self.running = False
            self.stop_reason = reason


__all__ = ["RuntimeState"]
