"""In-memory status collaborator for worker activity."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from horde_text_bridge.domain.jobs import WorkerStatus
from horde_text_bridge.domain.ports import StatusReporter
from horde_text_bridge.domain.status_models import (
    BridgeStatusResponse,
    JobResult,
    RecentJobResponse,
    WorkerState,
    WorkerStateResponse,
)

_DEFAULT_RECENT_JOBS_LIMIT = 7


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class _ActiveJob:
    received_at: datetime
    received_monotonic: float


@dataclass(slots=True)
class _FinishedJob:
    result: JobResult
    duration_seconds: float | None
    finished_at: datetime


class InMemoryStatusBoard(StatusReporter):
    """Collect worker states, counters, and recent job results for display."""

    def __init__(
        self,
        worker_name: str = "Worker",
        *,
        recent_jobs_limit: int = _DEFAULT_RECENT_JOBS_LIMIT,
        clock: Callable[[], datetime] = _utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._worker_name = worker_name
        self._clock = clock
        self._monotonic = monotonic
        self._started_at = clock()
        self._worker_states: dict[int, WorkerState] = {}
        self._active_jobs: dict[str, _ActiveJob] = {}
        self._recent_jobs: deque[_FinishedJob] = deque(maxlen=max(1, recent_jobs_limit))
        self.jobs_received = 0
        self.jobs_processed = 0
        self.total_tokens = 0
        self.total_reward = 0.0
        self.total_generation_seconds = 0.0
        self.moderation_triggers = 0
        self.last_error: str | None = None
        self.last_reward: float | None = None
        self.last_cycle_seconds: float | None = None
        self.maintenance_mode = False
        self.graceful_shutdown_requested = False

    @property
    def active_job_ids(self) -> list[str]:
        return list(self._active_jobs)

    @property
    def recent_results(self) -> list[JobResult]:
        """Most recent results first."""

        return [finished.result for finished in reversed(self._recent_jobs)]

    def worker_state(self, worker_id: int) -> WorkerState | None:
        return self._worker_states.get(worker_id)

    def set_worker_state(
        self,
        worker_id: int,
        status: WorkerStatus,
        job_id: str | None = None,
    ) -> None:
        previous = self._worker_states.get(worker_id)
        if previous is not None and previous.status == status and previous.job_id == job_id:
            return
        self._worker_states[worker_id] = WorkerState(
            worker_id=worker_id,
            status=status,
            job_id=job_id,
            since=self._clock(),
        )

    def set_last_error(self, error: str) -> None:
        self.last_error = error

    def set_maintenance_mode(self, enabled: bool) -> None:
        self.maintenance_mode = enabled

    def mark_job_received(self, job_id: str) -> None:
        self.jobs_received += 1
        self._active_jobs[job_id] = _ActiveJob(
            received_at=self._clock(),
            received_monotonic=self._monotonic(),
        )

    def record_job_result(self, result: JobResult) -> None:
        active = self._active_jobs.pop(result.job_id, None)
        duration = None if active is None else self._monotonic() - active.received_monotonic

        if result.counts_as_processed:
            self.jobs_processed += 1
            if result.tokens is not None:
                self.total_tokens += result.tokens
            self.last_reward = result.reward
            if result.reward is not None:
                self.total_reward += result.reward
            if result.generation_seconds is not None:
                self.total_generation_seconds += result.generation_seconds

        self._recent_jobs.append(
            _FinishedJob(result=result, duration_seconds=duration, finished_at=self._clock())
        )

    def record_moderation_trigger(self) -> None:
        self.moderation_triggers += 1

    def record_cycle_runtime(self, seconds: float) -> None:
        self.last_cycle_seconds = seconds

    def request_graceful_shutdown(self) -> None:
        self.graceful_shutdown_requested = True

    def snapshot(self) -> BridgeStatusResponse:
        """Return a serializable view of the current status."""

        return BridgeStatusResponse(
            worker_name=self._worker_name,
            started_at=self._started_at,
            jobs_received=self.jobs_received,
            jobs_processed=self.jobs_processed,
            total_tokens=self.total_tokens,
            total_reward=self.total_reward,
            total_generation_seconds=self.total_generation_seconds,
            moderation_triggers=self.moderation_triggers,
            active_jobs=self.active_job_ids,
            maintenance_mode=self.maintenance_mode,
            graceful_shutdown_requested=self.graceful_shutdown_requested,
            last_error=self.last_error,
            last_cycle_seconds=self.last_cycle_seconds,
            workers=[
                WorkerStateResponse(
                    worker_id=state.worker_id,
                    status=state.status,
                    job_id=state.job_id,
                    since=state.since,
                )
                for _, state in sorted(self._worker_states.items())
            ],
            recent_jobs=[
                RecentJobResponse(
                    job_id=finished.result.job_id,
                    status=finished.result.status,
                    reward=finished.result.reward,
                    tokens=finished.result.tokens,
                    tokens_per_second=finished.result.tokens_per_second,
                    duration_seconds=finished.duration_seconds,
                    moderation_score=finished.result.moderation_score,
                    moderation_flagged=finished.result.moderation_flagged,
                    finished_at=finished.finished_at,
                )
                for finished in reversed(self._recent_jobs)
            ],
        )


__all__ = ["InMemoryStatusBoard"]
