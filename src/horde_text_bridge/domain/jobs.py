"""Claimed job model and job-cycle state enums."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

MAX_POP_RETRIES = 3
MAX_GENERATION_RETRIES = 3
MAX_SUBMIT_RETRIES = 5
MAX_FAILED_REQUESTS = 6

DEFAULT_JOB_MAX_LENGTH = 80
DEFAULT_JOB_MAX_CONTEXT_LENGTH = 1024


class WorkerStatus(StrEnum):
    """Status of one logical worker as shown by the status collaborator."""

    IDLE = "idle"
    POLLING = "polling"
    GENERATING = "generating"
    SUBMITTING = "submitting"
    RETRYING_POP = "retrying-pop"
    RETRYING_GENERATION = "retrying-generation"
    MAINTENANCE = "maintenance"
    CSAM_BLOCK = "csam-block"
    CTX_LIMIT = "ctx-limit"
    SUBMIT_FAILED = "submit-failed"
    GENERATION_FAILED = "generation-failed"
    ERROR = "error"


class CycleOutcome(StrEnum):
    """Result of one claim/execute/submit iteration."""

    SUCCESS = "success"
    NO_WORK = "no_work"
    MAINTENANCE = "maintenance"
    HANDLED = "handled"
    FAILURE = "failure"

    @property
    def counts_as_failure(self) -> bool:
        """Return whether the outcome feeds the consecutive-failure counter."""

        return self is CycleOutcome.FAILURE


class FaultReason(StrEnum):
    """Why a job was returned to the queue as faulted."""

    CTX_LIMIT = "ctx_limit"
    GENERATION_FAILURE = "generation_failure"
    SUBMIT_FAILURE = "submit_failure"
    MODERATION_REGEX = "csam_regex"
    MODERATION_REMOTE = "csam_remote"
    MODERATION_REMOTE_UNAVAILABLE = "csam_remote_unavailable"
    MODERATION_RESPONSE_SUBMIT_FAILURE = "csam_response_submit_failure"


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return None
    return numeric if numeric > 0 else None


@dataclass(slots=True, frozen=True)
class Job:
    """A text generation job claimed from the Horde queue."""

    job_id: str
    prompt: str
    max_length: int
    max_context_length: int
    payload: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    received_monotonic: float = field(default_factory=time.monotonic)

    @classmethod
    def from_pop_response(cls, data: dict[str, Any]) -> Job | None:
        """Build a job from a pop response document, or return None when no job was given."""

        job_id = data.get("id")
        if not isinstance(job_id, str) or not job_id.strip():
            return None

        raw_payload = data.get("payload")
        payload: dict[str, Any] = dict(raw_payload) if isinstance(raw_payload, dict) else {}
        prompt = payload.get("prompt")
        if not isinstance(prompt, str):
            prompt = "" if prompt is None else str(prompt)

        max_length = _positive_int(payload.get("max_length")) or DEFAULT_JOB_MAX_LENGTH
        max_context_length = (
            _positive_int(payload.get("max_context_length")) or DEFAULT_JOB_MAX_CONTEXT_LENGTH
        )
        payload["prompt"] = prompt
        payload["max_length"] = max_length
        payload["max_context_length"] = max_context_length
        return cls(
            job_id=job_id,
            prompt=prompt,
            max_length=max_length,
            max_context_length=max_context_length,
            payload=payload,
        )

    def with_prompt(self, prompt: str) -> Job:
        """Return a copy of this job carrying a replacement prompt."""

        payload = dict(self.payload)
        payload["prompt"] = prompt
        return replace(self, prompt=prompt, payload=payload)


__all__ = [
    "CycleOutcome",
    "DEFAULT_JOB_MAX_CONTEXT_LENGTH",
    "DEFAULT_JOB_MAX_LENGTH",
    "FaultReason",
    "Job",
    "MAX_FAILED_REQUESTS",
    "MAX_GENERATION_RETRIES",
    "MAX_POP_RETRIES",
    "MAX_SUBMIT_RETRIES",
    "WorkerStatus",
]
