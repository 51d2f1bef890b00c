"""Ports for backend adapters, status reporting, audit logs, and moderation."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from horde_text_bridge.domain.horde_models import PopRequest, SubmitRequest
from horde_text_bridge.domain.jobs import Job, WorkerStatus
from horde_text_bridge.domain.status_models import JobResult

SleepFunction = Callable[[float], Awaitable[None]]


class BackendAdapter(Protocol):
    """Wire-protocol mapping for one inference backend dialect.

    Adapters are pure: they never perform I/O and hold no mutable state.
    """

    name: str
    health_path: str
    generate_path: str
    token_encode_path: str | None
    token_decode_path: str | None

    def build_request(self, job: Job) -> dict[str, Any]:
        """Map a claimed job to the backend-native generation request."""

    def extract_generation(self, data: Any, prompt: str) -> str:
        """Return generated text or raise `MalformedResponseError`."""

    def parse_tokens(self, data: Any) -> list[int] | None:
        """Return token ids from a token-encode response."""

    def parse_text(self, data: Any) -> str | None:
        """Return text from a token-decode response."""


class Tokenizer(Protocol):
    """Exact tokenization exposed by backends that support it."""

    @property
    def supports_tokenization(self) -> bool:
        """Return whether tokenize/detokenize are available."""

    async def tokenize(self, text: str) -> list[int] | None:
        """Return token ids, or None when unavailable."""

    async def detokenize(self, tokens: list[int]) -> str | None:
        """Return text for token ids, or None when unavailable."""


@dataclass(slots=True, frozen=True)
class RemoteModerationResult:
    """Minors-sexual-content verdict from a remote classifier."""

    flagged: bool
    score: float | None = None


class RemoteModerationClient(Protocol):
    """Remote prompt classifier."""

    async def classify(self, text: str) -> RemoteModerationResult:
        """Classify text or raise `ModerationUnavailableError`."""


class JobQueue(Protocol):
    """Outbound port to the remote job queue."""

    async def pop_job(self, request: PopRequest) -> Job | None:
        """Claim the next job, or return None when none is available."""

    async def submit(self, request: SubmitRequest) -> dict[str, Any]:
        """Submit a result and return the decoded response document."""


class InferenceBackend(Tokenizer, Protocol):
    """Outbound port to the local inference server."""

    last_health_error: str | None

    @property
    def adapter(self) -> BackendAdapter:
        """Return the wire-protocol adapter in use."""

    async def check_health(self, *, force: bool = False) -> bool:
        """Return whether the backend is reachable and healthy."""

    async def generate(self, request: dict[str, Any]) -> Any:
        """Send one backend-native generation request."""


class PollScheduler(Protocol):
    """Spreads claim calls of concurrent workers over the refresh interval."""

    async def wait_for_slot(self, worker_id: int) -> float:
        """Sleep until the worker phase slot; return the delay."""


class ThroughputThrottle(Protocol):
    """Shared tokens-per-second ceiling."""

    async def reserve(self, token_count: int, job_id: str | None = None) -> float:
        """Sleep until emitting the tokens keeps the shared rate; return the delay."""


class StatusReporter(Protocol):
    """Outbound port to the live status collaborator."""

    def set_worker_state(
        self,
        worker_id: int,
        status: WorkerStatus,
        job_id: str | None = None,
    ) -> None:
        """Record the current status of one worker."""

    def set_last_error(self, error: str) -> None:
        """Record the most recent failure description."""

    def set_maintenance_mode(self, enabled: bool) -> None:
        """Record whether the queue reported maintenance mode."""

    def mark_job_received(self, job_id: str) -> None:
        """Track a newly claimed job as in flight."""

    def record_job_result(self, result: JobResult) -> None:
        """Record a job result and drop it from the in-flight set."""

    def record_moderation_trigger(self) -> None:
        """Count one blocked prompt."""

    def record_cycle_runtime(self, seconds: float) -> None:
        """Record how long the last cycle took."""

    def request_graceful_shutdown(self) -> None:
        """Record that a graceful shutdown was requested."""


class AuditLog(Protocol):
    """Best-effort append-only audit side-channels."""

    def log_prompt(self, job_id: str, prompt: str) -> None:
        """Append a claimed prompt."""

    def log_moderation_trigger(
        self,
        *,
        job_id: str,
        reason: str,
        mode: str,
        prompt: str,
        remote_score: float | None = None,
        threshold: float | None = None,
    ) -> None:
        """Append one blocked-prompt record."""


__all__ = [
    "AuditLog",
    "BackendAdapter",
    "InferenceBackend",
    "JobQueue",
    "PollScheduler",
    "RemoteModerationClient",
    "RemoteModerationResult",
    "SleepFunction",
    "StatusReporter",
    "ThroughputThrottle",
    "Tokenizer",
]
