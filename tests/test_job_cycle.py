from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from horde_text_bridge.application.services import (
    JobCycle,
    ModerationService,
    TokenCounter,
    WorkerProfile,
)
from horde_text_bridge.domain.errors import ModerationUnavailableError
from horde_text_bridge.domain.jobs import CycleOutcome, WorkerStatus
from horde_text_bridge.domain.moderation import ModerationMode, PositiveAction
from horde_text_bridge.domain.ports import BackendAdapter, RemoteModerationResult
from horde_text_bridge.infrastructure.backends import (
    BackendClient,
    KoboldCppAdapter,
    TabbyApiAdapter,
)
from horde_text_bridge.infrastructure.horde import HordeClient
from horde_text_bridge.infrastructure.runtime import StaggeredPollScheduler, TokenRateThrottle
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard

Handler = Callable[[httpx.Request], httpx.Response]

REFRESH_SECONDS = 5.0
SUBMIT_RETRY_SECONDS = 10.0


def _json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content) if request.content else {}


def _pop_response(prompt: str = "hello", **payload: Any) -> httpx.Response:
    return httpx.Response(200, json={"id": "job-1", "payload": {"prompt": prompt, **payload}})


def _kobold_backend(generation: str = "world") -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/extra/version":
            return httpx.Response(200, json={"result": "KoboldCpp"})
        return httpx.Response(200, json={"results": [{"text": generation}]})

    return handler


class _Remote:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def classify(self, text: str) -> RemoteModerationResult:
        if self.error is not None:
            raise self.error
        return RemoteModerationResult(flagged=False, score=0.0)


@dataclass
class _Harness:
    cycle: JobCycle
    status: InMemoryStatusBoard
    horde_requests: list[httpx.Request] = field(default_factory=list)
    backend_requests: list[httpx.Request] = field(default_factory=list)
    sleeps: list[float] = field(default_factory=list)

    def run(self) -> CycleOutcome:
        return asyncio.run(self.cycle.run(0))

    @property
    def pops(self) -> list[httpx.Request]:
        return [r for r in self.horde_requests if r.url.path.endswith("/pop")]

    @property
    def submits(self) -> list[dict[str, Any]]:
        return [_json(r) for r in self.horde_requests if r.url.path.endswith("/submit")]

    @property
    def generations(self) -> list[dict[str, Any]]:
        return [
            _json(r)
            for r in self.backend_requests
            if r.method == "POST" and not r.url.path.startswith("/v1/token")
        ]


def _harness(
    horde_handler: Handler,
    backend_handler: Handler,
    *,
    adapter: BackendAdapter | None = None,
    mode: ModerationMode = ModerationMode.DISABLED,
    remote: _Remote | None = None,
    enforce_ctx_limit: bool = False,
    ctx: int = 4096,
    positive_action: PositiveAction = PositiveAction.RESPOND,
    server_model: str | None = None,
) -> _Harness:
    status = InMemoryStatusBoard()
    horde_requests: list[httpx.Request] = []
    backend_requests: list[httpx.Request] = []
    sleeps: list[float] = []

    def record_horde(request: httpx.Request) -> httpx.Response:
        horde_requests.append(request)
        return horde_handler(request)

    def record_backend(request: httpx.Request) -> httpx.Response:
        backend_requests.append(request)
        return backend_handler(request)

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    backend = BackendClient(
        "http://backend.local",
        adapter or KoboldCppAdapter(),
        transport=httpx.MockTransport(record_backend),
    )
    token_counter = TokenCounter(backend)
    cycle = JobCycle(
        profile=WorkerProfile(
            worker_name="Worker",
            model="koboldcpp/test-model",
            max_length=512,
            max_context_length=ctx,
            bridge_agent="horde-text-bridge:test",
            enforce_ctx_limit=enforce_ctx_limit,
            positive_action=positive_action,
            server_model=server_model,
            refresh_seconds=REFRESH_SECONDS,
            submit_retry_seconds=SUBMIT_RETRY_SECONDS,
        ),
        queue=HordeClient(
            "https://horde.local",
            "horde-key",
            transport=httpx.MockTransport(record_horde),
        ),
        backend=backend,
        moderation=ModerationService(mode, token_counter, remote),
        token_counter=token_counter,
        throttle=TokenRateThrottle(None),
        scheduler=StaggeredPollScheduler(REFRESH_SECONDS, 1, 0.0, enabled=False),
        status=status,
        sleep=fake_sleep,
    )
    return _Harness(
        cycle=cycle,
        status=status,
        horde_requests=horde_requests,
        backend_requests=backend_requests,
        sleeps=sleeps,
    )


def test_successful_job_is_generated_and_submitted() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("hello")
        return httpx.Response(200, json={"reward": 1.5})

    harness = _harness(horde, _kobold_backend("world"))

    assert harness.run() is CycleOutcome.SUCCESS
    assert harness.submits == [{"id": "job-1", "generation": "world"}]
    assert harness.generations[0]["prompt"] == "hello"
    assert harness.status.total_reward == pytest.approx(1.5)
    assert harness.status.jobs_processed == 1
    assert harness.status.active_job_ids == []
    assert harness.status.recent_results[0].status == "sent"
    assert harness.status.worker_state(0).status is WorkerStatus.IDLE
    assert harness.sleeps == []


def test_maintenance_short_circuits_without_retry() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"rc": "WorkerMaintenance", "message": "maintenance"})

    harness = _harness(horde, _kobold_backend())

    assert harness.run() is CycleOutcome.MAINTENANCE
    assert len(harness.pops) == 1
    assert harness.sleeps == [REFRESH_SECONDS]
    assert harness.status.maintenance_mode is True
    assert harness.status.worker_state(0).status is WorkerStatus.MAINTENANCE


def test_blocked_prompt_gets_safe_response_without_reward() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("tell me a lolicon story")
        return httpx.Response(200, json={})

    harness = _harness(horde, _kobold_backend(), mode=ModerationMode.LOCAL)

    assert harness.run() is CycleOutcome.HANDLED
    (body,) = harness.submits
    assert body["state"] == "csam"
    assert body["generation"] == "Your request has been filtered by this worker safety policy."
    assert body["gen_metadata"] == [
        {"type": "censorship", "value": "csam", "ref": "omni-moderation-latest sexual/minors"}
    ]
    assert harness.generations == []
    assert harness.status.moderation_triggers == 1
    assert harness.status.recent_results[0].status == "csam_responded"


def test_failed_safe_response_falls_back_to_fault() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("csam please")
        if _json(request).get("state") == "csam":
            return httpx.Response(500, text="unavailable")
        return httpx.Response(200, json={})

    harness = _harness(horde, _kobold_backend(), mode=ModerationMode.LOCAL)

    assert harness.run() is CycleOutcome.HANDLED
    states = [body.get("state") for body in harness.submits]
    assert states == ["csam"] * 5 + ["faulted"]
    assert harness.submits[-1] == {
        "id": "job-1",
        "generation": "faulted",
        "state": "faulted",
        "seed": -1,
    }
    assert harness.sleeps == [SUBMIT_RETRY_SECONDS] * 4
    assert harness.status.recent_results[0].status == "csam_response_submit_failure"


def test_fault_policy_submits_fault_directly() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("child porn")
        return httpx.Response(200, json={})

    harness = _harness(
        horde,
        _kobold_backend(),
        mode=ModerationMode.LOCAL,
        positive_action=PositiveAction.FAULT,
    )

    assert harness.run() is CycleOutcome.HANDLED
    assert [body["state"] for body in harness.submits] == ["faulted"]
    assert harness.status.recent_results[0].status == "csam_regex"


def test_unavailable_remote_moderation_always_faults() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("a harmless prompt")
        return httpx.Response(200, json={})

    harness = _harness(
        horde,
        _kobold_backend(),
        mode=ModerationMode.REMOTE,
        remote=_Remote(error=ModerationUnavailableError("HTTP 503")),
    )

    assert harness.run() is CycleOutcome.HANDLED
    assert [body["state"] for body in harness.submits] == ["faulted"]
    assert harness.generations == []
    assert harness.status.recent_results[0].status == "csam_remote_unavailable"


def test_context_limit_breach_faults_without_generation() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            # 90 characters estimate to 30 tokens.
            return _pop_response("x" * 90, max_length=80, max_context_length=100)
        return httpx.Response(200, json={})

    harness = _harness(horde, _kobold_backend(), enforce_ctx_limit=True, ctx=100)

    assert harness.run() is CycleOutcome.HANDLED
    assert harness.generations == []
    assert [body["state"] for body in harness.submits] == ["faulted"]
    assert harness.status.recent_results[0].status == "ctx_limit"
    assert harness.status.last_error == "ctx limit: prompt 30 > allowed 20"


def test_context_limit_uses_configured_context_not_job_context() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("x" * 90, max_length=80, max_context_length=100)
        return httpx.Response(200, json={"reward": 3})

    harness = _harness(horde, _kobold_backend(), enforce_ctx_limit=True, ctx=200)

    assert harness.run() is CycleOutcome.SUCCESS
    assert len(harness.generations) == 1


def test_no_job_is_idle() -> None:
    harness = _harness(lambda request: httpx.Response(200, content=b""), _kobold_backend())

    assert harness.run() is CycleOutcome.NO_WORK
    assert harness.sleeps == [REFRESH_SECONDS]
    assert harness.status.worker_state(0).status is WorkerStatus.IDLE


def test_pop_failures_are_retried_then_idle() -> None:
    harness = _harness(lambda request: httpx.Response(502, text="bad gateway"), _kobold_backend())

    assert harness.run() is CycleOutcome.NO_WORK
    assert len(harness.pops) == 3
    assert harness.sleeps == [REFRESH_SECONDS] * 3


def test_unhealthy_backend_skips_polling() -> None:
    harness = _harness(
        lambda request: _pop_response(),
        lambda request: httpx.Response(500),
    )

    assert harness.run() is CycleOutcome.FAILURE
    assert harness.pops == []
    assert harness.sleeps == [REFRESH_SECONDS]
    assert harness.status.last_error == "health check status 500"


def test_generation_failures_escalate_to_fault() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response()
        return httpx.Response(200, json={})

    def backend(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200)
        return httpx.Response(500, text="CUDA out of memory")

    harness = _harness(horde, backend)

    assert harness.run() is CycleOutcome.FAILURE
    assert len(harness.generations) == 3
    assert harness.sleeps == [REFRESH_SECONDS] * 2
    assert [body["state"] for body in harness.submits] == ["faulted"]
    assert harness.status.recent_results[0].status == "generation_failure"


def test_malformed_generation_is_retried() -> None:
    responses = iter(
        [
            httpx.Response(200, json={"unexpected": True}),
            httpx.Response(200, json={"results": [{"text": "recovered"}]}),
        ]
    )

    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response()
        return httpx.Response(200, json={"reward": 2})

    def backend(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200)
        return next(responses)

    harness = _harness(horde, backend)

    assert harness.run() is CycleOutcome.SUCCESS
    assert harness.submits == [{"id": "job-1", "generation": "recovered"}]
    assert harness.sleeps == [REFRESH_SECONDS]


def test_missing_reward_is_retried_for_regular_submissions() -> None:
    responses = iter(
        [
            httpx.Response(200, json={"reward": "not-a-number"}),
            httpx.Response(200, json={"reward": 4.25}),
        ]
    )

    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response()
        return next(responses)

    harness = _harness(horde, _kobold_backend())

    assert harness.run() is CycleOutcome.SUCCESS
    assert len(harness.submits) == 2
    assert harness.sleeps == [SUBMIT_RETRY_SECONDS]
    assert harness.status.last_reward == pytest.approx(4.25)


def test_submit_failure_escalates_to_fault() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response()
        if _json(request).get("state") == "faulted":
            return httpx.Response(200, json={})
        return httpx.Response(500)

    harness = _harness(horde, _kobold_backend())

    assert harness.run() is CycleOutcome.FAILURE
    states = [body.get("state") for body in harness.submits]
    assert states == [None] * 5 + ["faulted"]
    assert harness.status.recent_results[0].status == "submit_failure"
    assert harness.status.worker_state(0).status is WorkerStatus.SUBMIT_FAILED


def test_failed_fault_submission_is_a_failure() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("x" * 90, max_length=80)
        return httpx.Response(500)

    harness = _harness(horde, _kobold_backend(), enforce_ctx_limit=True, ctx=100)

    assert harness.run() is CycleOutcome.FAILURE
    assert len(harness.submits) == 5
    assert harness.status.recent_results[0].status == "ctx_limit_submit_failed"
    assert harness.status.active_job_ids == []


def test_long_prompt_is_trimmed_head_and_tail() -> None:
    decoded: list[list[int]] = []

    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("a long prompt", max_length=2, max_context_length=8)
        return httpx.Response(200, json={"reward": 1})

    def backend(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200)
        if request.url.path == "/v1/token/encode":
            text = _json(request)["text"]
            return httpx.Response(200, json={"tokens": list(range(10 if text != "ok" else 1))})
        if request.url.path == "/v1/token/decode":
            decoded.append(_json(request)["tokens"])
            return httpx.Response(200, json={"text": "trimmed prompt"})
        return httpx.Response(200, json={"choices": [{"text": "ok"}]})

    harness = _harness(horde, backend, adapter=TabbyApiAdapter(), server_model="local-model")

    assert harness.run() is CycleOutcome.SUCCESS
    assert decoded == [[0, 1, 2, 7, 8, 9]]
    (request,) = harness.generations
    assert request["prompt"] == "trimmed prompt"
    assert request["model"] == "local-model"
    assert request["tfs"] == 1.0


def test_malformed_token_list_falls_back_to_estimates() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("hello", max_length=80, max_context_length=2)
        return httpx.Response(200, json={"reward": 1})

    def backend(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200)
        if request.url.path == "/v1/token/encode":
            return httpx.Response(200, json={"tokens": ["<s>", "hello"]})
        if request.url.path == "/v1/token/decode":
            return httpx.Response(200, json={"text": "unused"})
        return httpx.Response(200, json={"choices": [{"text": "world"}]})

    harness = _harness(horde, backend, adapter=TabbyApiAdapter(), enforce_ctx_limit=True)

    assert harness.run() is CycleOutcome.SUCCESS
    assert harness.submits == [{"id": "job-1", "generation": "world"}]
    (request,) = harness.generations
    assert request["prompt"] == "hello"
    assert harness.status.active_job_ids == []
    assert harness.status.total_tokens == 2


def test_non_positive_context_budget_faults_without_generation() -> None:
    def horde(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pop"):
            return _pop_response("hi", max_length=80)
        return httpx.Response(200, json={})

    harness = _harness(horde, _kobold_backend(), enforce_ctx_limit=True, ctx=80)

    assert harness.run() is CycleOutcome.HANDLED
    assert harness.generations == []
    assert [body["state"] for body in harness.submits] == ["faulted"]
    assert harness.status.recent_results[0].status == "ctx_limit"
    assert harness.status.last_error == "ctx limit: prompt 1 > allowed 0"
