from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from horde_text_bridge.domain.errors import HordeClientError, WorkerMaintenanceError
from horde_text_bridge.domain.horde_models import PopRequest, SubmitRequest
from horde_text_bridge.infrastructure.horde import HordeClient


def _pop_request() -> PopRequest:
    return PopRequest(
        name="Worker",
        models=["koboldcpp/test-model"],
        max_length=512,
        max_context_length=4096,
        priority_usernames=["alice#1"],
        threads=2,
        bridge_agent="horde-text-bridge:0.1.0",
    )


def test_pop_job_posts_capabilities_and_parses_job() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={"id": "job-1", "payload": {"prompt": "hello", "max_length": 50}},
        )

    client = HordeClient(
        "https://aihorde.net/api/v2/",
        "horde-key",
        transport=httpx.MockTransport(handler),
    )
    job = asyncio.run(client.pop_job(_pop_request()))

    assert job is not None
    assert job.job_id == "job-1"
    assert job.max_length == 50
    assert job.max_context_length == 1024
    request = requests[0]
    assert str(request.url) == "https://aihorde.net/api/v2/generate/text/pop"
    assert request.headers["apikey"] == "horde-key"
    body = json.loads(request.content)
    assert body["models"] == ["koboldcpp/test-model"]
    assert body["nsfw"] is False
    assert body["threads"] == 2
    assert body["softprompts"] == []
    assert body["priority_usernames"] == ["alice#1"]
    assert body["bridge_agent"] == "horde-text-bridge:0.1.0"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b""),
        httpx.Response(200, json={"id": None, "skipped": {"models": 3}}),
    ],
)
def test_pop_job_without_job_returns_none(response: httpx.Response) -> None:
    client = HordeClient(
        "https://aihorde.net",
        "horde-key",
        transport=httpx.MockTransport(lambda request: response),
    )

    assert asyncio.run(client.pop_job(_pop_request())) is None


def test_pop_job_raises_maintenance_error() -> None:
    client = HordeClient(
        "https://aihorde.net",
        "horde-key",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                403,
                json={"rc": "WorkerMaintenance", "message": "Worker is in maintenance"},
            )
        ),
    )

    with pytest.raises(WorkerMaintenanceError, match="Worker is in maintenance"):
        asyncio.run(client.pop_job(_pop_request()))


def test_other_forbidden_responses_are_plain_client_errors() -> None:
    client = HordeClient(
        "https://aihorde.net",
        "horde-key",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(403, json={"rc": "WrongCredentials", "message": "no"})
        ),
    )

    with pytest.raises(HordeClientError) as exc_info:
        asyncio.run(client.pop_job(_pop_request()))

    assert not isinstance(exc_info.value, WorkerMaintenanceError)
    assert exc_info.value.status_code == 403
    assert exc_info.value.payload == {"rc": "WrongCredentials", "message": "no"}


def test_submit_fault_body_shape() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"reward": 0})

    client = HordeClient("https://aihorde.net", "horde-key", transport=httpx.MockTransport(handler))
    response = asyncio.run(client.submit(SubmitRequest.faulted("job-9")))

    assert response == {"reward": 0}
    assert requests[0].url.path == "/api/v2/generate/text/submit"
    assert json.loads(requests[0].content) == {
        "id": "job-9",
        "generation": "faulted",
        "state": "faulted",
        "seed": -1,
    }


def test_submit_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = HordeClient("https://aihorde.net", "horde-key", transport=httpx.MockTransport(handler))

    with pytest.raises(HordeClientError, match="POST https://aihorde.net/api/v2/generate/text/submit"):
        asyncio.run(client.submit(SubmitRequest(id="job-1", generation="text")))


def test_worker_endpoints_send_both_key_headers() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "PUT":
            return httpx.Response(200, json={"info": "updated"})
        return httpx.Response(200, json={"id": "worker 1", "info": "hello"})

    client = HordeClient("https://aihorde.net", "horde-key", transport=httpx.MockTransport(handler))

    async def scenario() -> dict[str, object]:
        await client.update_worker_info("worker 1", "x" * 600)
        return await client.get_worker("worker 1")

    worker = asyncio.run(scenario())

    assert worker["info"] == "hello"
    put, get = requests
    assert put.url.raw_path == b"/api/v2/workers/worker%201"
    assert put.headers["apikey"] == "horde-key"
    assert put.headers["X-Api-Key"] == "horde-key"
    assert len(json.loads(put.content)["info"]) == 500
    assert get.method == "GET"
