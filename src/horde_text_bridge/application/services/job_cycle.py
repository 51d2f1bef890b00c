"""One claim/moderate/generate/submit iteration of a logical worker."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from horde_text_bridge.application.services.moderation_service import ModerationService
from horde_text_bridge.application.services.token_counter import TokenCounter
from horde_text_bridge.domain.errors import (
    BackendClientError,
    HordeClientError,
    MalformedResponseError,
    WorkerMaintenanceError,
)
from horde_text_bridge.domain.horde_models import PopRequest, SubmitRequest
from horde_text_bridge.domain.jobs import (
    MAX_GENERATION_RETRIES,
    MAX_POP_RETRIES,
    MAX_SUBMIT_RETRIES,
    CycleOutcome,
    FaultReason,
    Job,
    WorkerStatus,
)
from horde_text_bridge.domain.moderation import ModerationDecision, PositiveAction
from horde_text_bridge.domain.ports import (
    AuditLog,
    InferenceBackend,
    JobQueue,
    PollScheduler,
    SleepFunction,
    StatusReporter,
    ThroughputThrottle,
)
from horde_text_bridge.domain.status_models import JobResult

DEFAULT_BLOCKED_RESPONSE = "Your request has been filtered by this worker safety policy."
DEFAULT_MODERATION_METADATA_REF = "omni-moderation-latest sexual/minors"
DEFAULT_SUBMIT_RETRY_SECONDS = 10.0

_STATUS_SENT = "sent"
_STATUS_MODERATION_RESPONDED = "csam_responded"

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WorkerProfile:
    """What a worker advertises when claiming and how it treats claimed jobs."""

    worker_name: str
    model: str
    max_length: int
    max_context_length: int
    bridge_agent: str
    nsfw: bool = False
    priority_usernames: tuple[str, ...] = ()
    threads: int = 1
    enforce_ctx_limit: bool = False
    server_model: str | None = None
    positive_action: PositiveAction = PositiveAction.RESPOND
    blocked_response: str = DEFAULT_BLOCKED_RESPONSE
    moderation_metadata_ref: str = DEFAULT_MODERATION_METADATA_REF
    refresh_seconds: float = 5.0
    submit_retry_seconds: float = DEFAULT_SUBMIT_RETRY_SECONDS

    def pop_request(self) -> PopRequest:
        return PopRequest(
            name=self.worker_name,
            models=[self.model],
            nsfw=self.nsfw,
            max_length=self.max_length,
            max_context_length=self.max_context_length,
            priority_usernames=list(self.priority_usernames),
            threads=self.threads,
            softprompts=[],
            bridge_agent=self.bridge_agent,
        )


def _reward_from(response: dict[str, Any]) -> float | None:
    value = response.get("reward")
    if value is None or isinstance(value, bool):
        return None
    try:
        reward = float(value)
    except (TypeError, ValueError):
        return None
    return reward if math.isfinite(reward) else None


class JobCycle:
    """Run one job from claim to submission.

    This is the only place that decides between retrying, escalating to a
    fault submission, and giving up. Collaborators report failures through
    typed errors; the cycle turns them into a `CycleOutcome`.
    """

    def __init__(
        self,
        profile: WorkerProfile,
        queue: JobQueue,
        backend: InferenceBackend,
        moderation: ModerationService,
        token_counter: TokenCounter,
        throttle: ThroughputThrottle,
        scheduler: PollScheduler,
        status: StatusReporter,
        audit: AuditLog | None = None,
        *,
        sleep: SleepFunction = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._profile = profile
        self._queue = queue
        self._backend = backend
        self._moderation = moderation
        self._token_counter = token_counter
        self._throttle = throttle
        self._scheduler = scheduler
        self._status = status
        self._audit = audit
        self._sleep = sleep
        self._clock = clock

    @property
    def profile(self) -> WorkerProfile:
        return self._profile

    async def run(self, worker_id: int) -> CycleOutcome:
        await self._scheduler.wait_for_slot(worker_id)
        self._status.set_worker_state(worker_id, WorkerStatus.POLLING)

        if not await self._backend.check_health():
            self._status.set_last_error(self._backend.last_health_error or "backend unhealthy")
            self._status.set_worker_state(worker_id, WorkerStatus.ERROR)
            await self._sleep(self._profile.refresh_seconds)
            return CycleOutcome.FAILURE

        claimed = await self._poll(worker_id)
        if isinstance(claimed, CycleOutcome):
            return claimed
        job = claimed

        decision = await self._moderation.evaluate(job.prompt)
        if decision.blocked:
            return await self._handle_blocked(worker_id, job, decision)

        if self._profile.enforce_ctx_limit:
            outcome = await self._check_context(worker_id, job)
            if outcome is not None:
                return outcome

        return await self._generate_and_submit(worker_id, job, decision)

    async def _poll(self, worker_id: int) -> Job | CycleOutcome:
        refresh = self._profile.refresh_seconds
        request = self._profile.pop_request()

        for attempt in range(1, MAX_POP_RETRIES + 1):
            try:
                job = await self._queue.pop_job(request)
            except WorkerMaintenanceError as exc:
                logger.warning("Worker maintenance: %s. Waiting %ss.", exc, refresh)
                self._status.set_maintenance_mode(True)
                self._status.set_worker_state(worker_id, WorkerStatus.MAINTENANCE)
                self._status.set_last_error("worker maintenance mode")
                await self._sleep(refresh)
                return CycleOutcome.MAINTENANCE
            except HordeClientError as exc:
                logger.warning("Pop attempt %s/%s failed: %s", attempt, MAX_POP_RETRIES, exc)
                self._status.set_maintenance_mode(False)
                self._status.set_last_error(str(exc))
                self._status.set_worker_state(worker_id, WorkerStatus.RETRYING_POP)
                await self._sleep(refresh)
                continue

            self._status.set_maintenance_mode(False)
            if job is None:
                self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
                await self._sleep(refresh)
                return CycleOutcome.NO_WORK

            logger.info(
                "New job %s received for %s tokens and %s max context.",
                job.job_id,
                job.max_length,
                job.max_context_length,
            )
            self._status.mark_job_received(job.job_id)
            self._status.set_worker_state(worker_id, WorkerStatus.GENERATING, job.job_id)
            if self._audit is not None:
                self._audit.log_prompt(job.job_id, job.prompt)
            return job

        logger.error("No job claimed after %s pop attempts.", MAX_POP_RETRIES)
        self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
        return CycleOutcome.NO_WORK

    async def _handle_blocked(
        self,
        worker_id: int,
        job: Job,
        decision: ModerationDecision,
    ) -> CycleOutcome:
        fault_reason = decision.fault_reason
        logger.warning("Prompt for job %s blocked by moderation (%s).", job.job_id, fault_reason)
        self._status.record_moderation_trigger()
        if self._audit is not None:
            self._audit.log_moderation_trigger(
                job_id=job.job_id,
                reason=fault_reason.value,
                mode=decision.mode.value,
                prompt=job.prompt,
                remote_score=decision.remote_score,
            )
        self._status.set_worker_state(worker_id, WorkerStatus.CSAM_BLOCK, job.job_id)

        if decision.resolve_action(self._profile.positive_action) is PositiveAction.RESPOND:
            body = SubmitRequest.moderation_response(
                job.job_id,
                text=self._profile.blocked_response,
                metadata_ref=self._profile.moderation_metadata_ref,
            )
            handled = await self._submit(
                job, body, status_label=_STATUS_MODERATION_RESPONDED, decision=decision
            )
            if not handled:
                handled = await self._submit_fault(
                    job, FaultReason.MODERATION_RESPONSE_SUBMIT_FAILURE, decision
                )
        else:
            handled = await self._submit_fault(job, fault_reason, decision)

        self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
        return CycleOutcome.HANDLED if handled else CycleOutcome.FAILURE

    async def _check_context(self, worker_id: int, job: Job) -> CycleOutcome | None:
        allowed = self._profile.max_context_length - max(0, job.max_length)
        prompt_tokens = await self._token_counter.count_prompt_tokens(job.prompt)
        if allowed > 0 and prompt_tokens <= allowed:
            return None

        message = f"ctx limit: prompt {prompt_tokens} > allowed {max(0, allowed)}"
        logger.warning("Job %s rejected, %s.", job.job_id, message)
        self._status.set_last_error(message)
        self._status.set_worker_state(worker_id, WorkerStatus.CTX_LIMIT, job.job_id)
        handled = await self._submit_fault(job, FaultReason.CTX_LIMIT)
        self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
        return CycleOutcome.HANDLED if handled else CycleOutcome.FAILURE

    async def _generate_and_submit(
        self,
        worker_id: int,
        job: Job,
        decision: ModerationDecision,
    ) -> CycleOutcome:
        request, prompt = await self._build_backend_request(job)
        adapter = self._backend.adapter
        started_at = self._clock()

        for attempt in range(1, MAX_GENERATION_RETRIES + 1):
            try:
                data = await self._backend.generate(request)
                generation = adapter.extract_generation(data, prompt)
            except (BackendClientError, MalformedResponseError) as exc:
                logger.warning(
                    "Generation attempt %s/%s for %s failed: %s",
                    attempt,
                    MAX_GENERATION_RETRIES,
                    job.job_id,
                    exc,
                )
                self._status.set_last_error(f"generation retry {attempt} for {job.job_id}")
                self._status.set_worker_state(
                    worker_id, WorkerStatus.RETRYING_GENERATION, job.job_id
                )
                if attempt < MAX_GENERATION_RETRIES:
                    await self._sleep(self._profile.refresh_seconds)
                continue

            self._status.set_worker_state(worker_id, WorkerStatus.SUBMITTING, job.job_id)
            tokens = await self._token_counter.count_generation_tokens(generation, job.max_length)
            generation_seconds = self._clock() - started_at
            await self._throttle.reserve(tokens, job.job_id)

            submitted = await self._submit(
                job,
                SubmitRequest(id=job.job_id, generation=generation),
                status_label=_STATUS_SENT,
                tokens=tokens,
                generation_seconds=generation_seconds,
                decision=decision,
            )
            if submitted:
                self._status.set_worker_state(worker_id, WorkerStatus.IDLE)
                return CycleOutcome.SUCCESS

            self._status.set_last_error(f"submit failed for {job.job_id}")
            self._status.set_worker_state(worker_id, WorkerStatus.SUBMIT_FAILED, job.job_id)
            await self._submit_fault(job, FaultReason.SUBMIT_FAILURE, decision)
            return CycleOutcome.FAILURE

        logger.error("Generation %s failed after %s attempts.", job.job_id, MAX_GENERATION_RETRIES)
        self._status.set_last_error(f"generation failed for {job.job_id}")
        self._status.set_worker_state(worker_id, WorkerStatus.GENERATION_FAILED, job.job_id)
        await self._submit_fault(job, FaultReason.GENERATION_FAILURE, decision)
        return CycleOutcome.FAILURE

    async def _build_backend_request(self, job: Job) -> tuple[dict[str, Any], str]:
        """Return the backend request and the prompt it actually carries."""

        adapter = self._backend.adapter
        request = adapter.build_request(job)
        prompt = job.prompt

        if self._backend.supports_tokenization:
            tokens = await self._backend.tokenize(job.prompt)
            keep_budget = job.max_context_length - job.max_length
            if tokens is not None and len(tokens) > keep_budget:
                half = max(0, keep_budget) // 2
                trimmed_prompt = None
                if half > 0:
                    trimmed = tokens[:half] + tokens[-half:]
                    trimmed_prompt = await self._backend.detokenize(trimmed)
                if trimmed_prompt:
                    logger.info(
                        "Trimmed prompt for %s from %s to %s tokens.",
                        job.job_id,
                        len(tokens),
                        half * 2,
                    )
                    prompt = trimmed_prompt
                    request = adapter.build_request(job.with_prompt(trimmed_prompt))
                else:
                    logger.warning(
                        "Prompt for %s exceeds %s tokens but could not be trimmed.",
                        job.job_id,
                        keep_budget,
                    )

        if self._profile.server_model:
            request["model"] = self._profile.server_model
        return request, prompt

    async def _submit(
        self,
        job: Job,
        body: SubmitRequest,
        *,
        status_label: str,
        tokens: int | None = None,
        generation_seconds: float | None = None,
        decision: ModerationDecision | None = None,
    ) -> bool:
        for attempt in range(1, MAX_SUBMIT_RETRIES + 1):
            if attempt > 1:
                await self._sleep(self._profile.submit_retry_seconds)
            try:
                response = await self._queue.submit(body)
            except HordeClientError as exc:
                logger.warning(
                    "Submit attempt %s/%s for %s failed: %s",
                    attempt,
                    MAX_SUBMIT_RETRIES,
                    job.job_id,
                    exc,
                )
                self._status.set_last_error(f"submit retry {attempt} for {job.job_id}")
                continue

            reward = _reward_from(response)
            if reward is None and not body.reward_bearing:
                reward = 0.0
            if reward is None:
                logger.error("Submit for %s returned no usable reward: %s", job.job_id, response)
                self._status.set_last_error(f"invalid reward for {job.job_id}")
                continue

            logger.info("Submitted %s and contributed for %.2f.", job.job_id, reward)
            self._status.record_job_result(
                JobResult(
                    job_id=job.job_id,
                    status=status_label,
                    reward=reward,
                    tokens=tokens,
                    generation_seconds=generation_seconds,
                    counts_as_processed=True,
                    moderation_score=None if decision is None else decision.remote_score,
                    moderation_flagged=None if decision is None else decision.remote_flagged,
                )
            )
            return True
        return False

    async def _submit_fault(
        self,
        job: Job,
        reason: FaultReason,
        decision: ModerationDecision | None = None,
    ) -> bool:
        body = SubmitRequest.faulted(job.job_id)
        moderation_score = None if decision is None else decision.remote_score
        moderation_flagged = None if decision is None else decision.remote_flagged

        for attempt in range(1, MAX_SUBMIT_RETRIES + 1):
            if attempt > 1:
                await self._sleep(self._profile.submit_retry_seconds)
            try:
                await self._queue.submit(body)
            except HordeClientError as exc:
                logger.warning(
                    "Faulted submit attempt %s/%s for %s failed: %s",
                    attempt,
                    MAX_SUBMIT_RETRIES,
                    job.job_id,
                    exc,
                )
                self._status.set_last_error(f"faulted submit retry {attempt} for {job.job_id}")
                continue

            logger.info("Submitted faulted state for %s (%s).", job.job_id, reason)
            self._status.record_job_result(
                JobResult(
                    job_id=job.job_id,
                    status=reason.value,
                    moderation_score=moderation_score,
                    moderation_flagged=moderation_flagged,
                )
            )
            return True

        logger.error("Failed to submit faulted state for %s (%s).", job.job_id, reason)
        self._status.set_last_error(f"failed faulted submit for {job.job_id}")
        self._status.record_job_result(
            JobResult(
                job_id=job.job_id,
                status=f"{reason.value}_submit_failed",
                moderation_score=moderation_score,
                moderation_flagged=moderation_flagged,
            )
        )
        return False


__all__ = [
    "DEFAULT_BLOCKED_RESPONSE",
    "DEFAULT_MODERATION_METADATA_REF",
    "JobCycle",
    "WorkerProfile",
]
