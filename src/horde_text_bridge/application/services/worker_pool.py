"""Concurrent worker loops sharing one circuit breaker."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from horde_text_bridge.application.services.job_cycle import JobCycle
from horde_text_bridge.domain.jobs import CycleOutcome, WorkerStatus
from horde_text_bridge.domain.ports import StatusReporter
from horde_text_bridge.domain.runtime import RuntimeState

logger = logging.getLogger(__name__)


class WorkerPool:
    """Run `worker_count` job-cycle loops until the shared running flag clears."""

    def __init__(
        self,
        cycle: JobCycle,
        runtime: RuntimeState,
        status: StatusReporter,
        *,
        worker_count: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be > 0.")
        self._cycle = cycle
        self._runtime = runtime
        self._status = status
        self._worker_count = worker_count
        self._clock = clock

    @property
    def worker_count(self) -> int:
        return self._worker_count

    async def run(self) -> None:
        logger.info("Starting %s worker(s).", self._worker_count)
        await asyncio.gather(
            *(self.run_worker(worker_id) for worker_id in range(self._worker_count))
        )
        logger.info("All workers stopped (%s).", self._runtime.stop_reason or "shutdown")

    async def run_worker(self, worker_id: int) -> None:
        started_at = self._clock()
        while self._runtime.running:
            try:
                outcome = await self._cycle.run(worker_id)
            except Exception as exc:
                logger.exception("Worker %s failed", worker_id)
                self._status.set_worker_state(worker_id, WorkerStatus.ERROR)
                self._status.set_last_error(f"worker {worker_id}: {exc}")
                outcome = CycleOutcome.FAILURE

            now = self._clock()
            self._status.record_cycle_runtime(now - started_at)
            started_at = now
            await self._runtime.record_outcome(outcome)

        self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
        logger.info("Worker %s shutting down.", worker_id)


__all__ = ["WorkerPool"]
