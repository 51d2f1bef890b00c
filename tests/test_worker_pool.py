from __future__ import annotations

import asyncio

import pytest

from horde_text_bridge.application.services import WorkerPool
from horde_text_bridge.domain.jobs import CycleOutcome, WorkerStatus
from horde_text_bridge.domain.runtime import RuntimeState
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard


class _ScriptedCycle:
    def __init__(self, outcomes: list[CycleOutcome | Exception]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[int] = []

    async def run(self, worker_id: int) -> CycleOutcome:
        self.calls.append(worker_id)
        await asyncio.sleep(0)
        outcome = self._outcomes.pop(0) if self._outcomes else CycleOutcome.FAILURE
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_pool_rejects_non_positive_worker_count() -> None:
    with pytest.raises(ValueError, match="worker_count"):
        WorkerPool(_ScriptedCycle([]), RuntimeState(), InMemoryStatusBoard(), worker_count=0)


def test_consecutive_failures_stop_the_pool() -> None:
    runtime = RuntimeState(max_failed_requests=3)
    status = InMemoryStatusBoard()
    cycle = _ScriptedCycle(
        [
            CycleOutcome.FAILURE,
            CycleOutcome.FAILURE,
            CycleOutcome.SUCCESS,
            CycleOutcome.FAILURE,
            CycleOutcome.NO_WORK,
        ]
    )
    pool = WorkerPool(cycle, runtime, status, worker_count=1)

    asyncio.run(pool.run())

    # SUCCESS and NO_WORK both reset the streak; three more failures trip it.
    assert len(cycle.calls) == 8
    assert runtime.running is False
    assert runtime.stop_reason == "too many consecutive failures"
    assert status.worker_state(0).status is WorkerStatus.IDLE
    assert status.last_cycle_seconds is not None


def test_worker_exception_counts_as_failure() -> None:
    runtime = RuntimeState(max_failed_requests=2)
    status = InMemoryStatusBoard()
    cycle = _ScriptedCycle([RuntimeError("boom"), RuntimeError("boom again")])
    pool = WorkerPool(cycle, runtime, status, worker_count=1)

    asyncio.run(pool.run())

    assert len(cycle.calls) == 2
    assert runtime.running is False
    assert status.last_error == "worker 0: boom again"


def test_every_worker_runs_until_stop_requested() -> None:
    runtime = RuntimeState()
    status = InMemoryStatusBoard()
    cycle = _ScriptedCycle([CycleOutcome.NO_WORK] * 100)
    pool = WorkerPool(cycle, runtime, status, worker_count=3)

    async def scenario() -> None:
        task = asyncio.create_task(pool.run())
        while len(cycle.calls) < 6:
            await asyncio.sleep(0)
        await runtime.request_stop("graceful shutdown requested")
        await task

    asyncio.run(scenario())

    assert set(cycle.calls) == {0, 1, 2}
    assert runtime.stop_reason == "graceful shutdown requested"
    assert runtime.graceful_shutdown_requested is True
    assert runtime.consecutive_failures == 0
