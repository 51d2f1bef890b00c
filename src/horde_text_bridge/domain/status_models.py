"""Status models for worker activity reporting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from horde_text_bridge.domain.jobs import WorkerStatus


@dataclass(slots=True, frozen=True)
class WorkerState:
    """Last reported state of one logical worker."""

    worker_id: int
    status: WorkerStatus
    job_id: str | None
    since: datetime


@dataclass(slots=True, frozen=True)
class JobResult:
    """Outcome record for one claimed job."""

    job_id: str
    status: str
    reward: float | None = None
    tokens: int | None = None
    generation_seconds: float | None = None
    counts_as_processed: bool = False
    moderation_score: float | None = None
    moderation_flagged: bool | None = None

    @property
    def tokens_per_second(self) -> float | None:
        if not self.tokens or not self.generation_seconds or self.generation_seconds <= 0:
            return None
        return self.tokens / self.generation_seconds


class StatusModel(BaseModel):
    """Base model for status routes."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class WorkerStateResponse(StatusModel):
    worker_id: int = Field(alias="workerId")
    status: WorkerStatus
    job_id: str | None = Field(default=None, alias="jobId")
    since: datetime


class RecentJobResponse(StatusModel):
    job_id: str = Field(alias="jobId")
    status: str
    reward: float | None = None
    tokens: int | None = None
    tokens_per_second: float | None = Field(default=None, alias="tokensPerSecond")
    duration_seconds: float | None = Field(default=None, alias="durationSeconds")
    moderation_score: float | None = Field(default=None, alias="moderationScore")
    moderation_flagged: bool | None = Field(default=None, alias="moderationFlagged")
    finished_at: datetime = Field(alias="finishedAt")


class BridgeStatusResponse(StatusModel):
    """Aggregate bridge status shown by the status API."""

    worker_name: str = Field(alias="workerName")
    started_at: datetime = Field(alias="startedAt")
    jobs_received: int = Field(alias="jobsReceived")
    jobs_processed: int = Field(alias="jobsProcessed")
    total_tokens: int = Field(alias="totalTokens")
    total_reward: float = Field(alias="totalReward")
    total_generation_seconds: float = Field(alias="totalGenerationSeconds")
    moderation_triggers: int = Field(alias="moderationTriggers")
    active_jobs: list[str] = Field(alias="activeJobs")
    maintenance_mode: bool = Field(alias="maintenanceMode")
    graceful_shutdown_requested: bool = Field(alias="gracefulShutdownRequested")
    last_error: str | None = Field(default=None, alias="lastError")
    last_cycle_seconds: float | None = Field(default=None, alias="lastCycleSeconds")
    workers: list[WorkerStateResponse]
    recent_jobs: list[RecentJobResponse] = Field(alias="recentJobs")


__all__ = [
    "BridgeStatusResponse",
    "JobResult",
    "RecentJobResponse",
    "WorkerState",
    "WorkerStateResponse",
]
