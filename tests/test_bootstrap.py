from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest
from pydantic import ValidationError

from horde_text_bridge.bootstrap import Transports, build_bridge, sync_worker_info
from horde_text_bridge.config import DEFAULT_BRIDGE_AGENT, Settings
from horde_text_bridge.domain.moderation import ModerationMode, PositiveAction
from horde_text_bridge.infrastructure.backends import BackendEngine, TabbyApiAdapter
from horde_text_bridge.infrastructure.moderation import OpenAiModerationClient


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "api_key": "horde-key",
        "model": "koboldcpp/test-model",
        "ctx": 4096,
        "server_engine": "koboldcpp",
        "server_url": "http://backend.local",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_settings_defaults() -> None:
    settings = _settings()

    assert settings.cluster_url == "https://aihorde.net"
    assert settings.server_engine is BackendEngine.KOBOLDCPP
    assert settings.moderation_mode is ModerationMode.LOCAL
    assert settings.moderation_positive_action is PositiveAction.RESPOND
    assert settings.refresh_time_seconds == 5.0
    assert settings.thread_poll_stagger is False
    assert settings.bridge_agent == DEFAULT_BRIDGE_AGENT


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("regex", ModerationMode.LOCAL),
        ("openai", ModerationMode.REMOTE),
        ("false", ModerationMode.DISABLED),
        ("Disabled", ModerationMode.DISABLED),
        (True, ModerationMode.LOCAL),
    ],
)
def test_moderation_mode_aliases(raw: object, expected: ModerationMode) -> None:
    settings = _settings(moderation_mode=raw, openai_api_key="sk-test")

    assert settings.moderation_mode is expected


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HORDE_BRIDGE_API_KEY", "env-key")
    monkeypatch.setenv("HORDE_BRIDGE_MODEL", "env-model")
    monkeypatch.setenv("HORDE_BRIDGE_CTX", "8192")
    monkeypatch.setenv("HORDE_BRIDGE_SERVER_ENGINE", "TabbyAPI")
    monkeypatch.setenv("HORDE_BRIDGE_PRIORITY_USERNAMES", "alice#1, bob#2,,")
    monkeypatch.setenv("HORDE_BRIDGE_NSFW", "enabled")
    monkeypatch.setenv("HORDE_BRIDGE_ENFORCE_CTX_LIMIT", "disabled")
    monkeypatch.setenv("HORDE_BRIDGE_MAX_TPS", "")

    settings = Settings(_env_file=None)

    assert settings.api_key == "env-key"
    assert settings.ctx == 8192
    assert settings.server_engine is BackendEngine.TABBYAPI
    assert settings.priority_usernames == ["alice#1", "bob#2"]
    assert settings.nsfw is True
    assert settings.enforce_ctx_limit is False
    assert settings.max_tps is None


def test_priority_usernames_accept_json_arrays(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HORDE_BRIDGE_PRIORITY_USERNAMES", '["alice#1", "bob#2"]')

    settings = _settings()

    assert settings.priority_usernames == ["alice#1", "bob#2"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"api_key": ""},
        {"api_key": "0000000000"},
        {"model": None},
        {"ctx": 0},
        {"server_engine": None},
        {"server_engine": "ollama"},
        {"server_engine": "unknown-engine"},
        {"moderation_mode": "remote"},
        {"openai_moderation_max_tokens": 30001},
        {"max_tps": 0},
        {"threads": 0},
        {"status_api_port": 70000},
    ],
)
def test_settings_reject_invalid_configuration(overrides: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        _settings(**overrides)


def test_build_bridge_wires_configured_backend() -> None:
    bridge = build_bridge(
        _settings(server_engine="tabbyapi", server_api_key="backend-key", threads=3)
    )

    assert isinstance(bridge.backend.adapter, TabbyApiAdapter)
    assert bridge.backend.base_url == "http://backend.local"
    assert bridge.moderation_client is None
    assert bridge.pool.worker_count == 3
    assert bridge.runtime.max_failed_requests == 6
    asyncio.run(bridge.close())


def test_build_bridge_creates_remote_moderation_client() -> None:
    bridge = build_bridge(_settings(moderation_mode="remote", openai_api_key="sk-test"))

    assert isinstance(bridge.moderation_client, OpenAiModerationClient)
    asyncio.run(bridge.close())


def test_sync_worker_info_publishes_and_verifies() -> None:
    requests: list[httpx.Request] = []
    stored: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "PUT":
            stored.update(json.loads(request.content))
            return httpx.Response(200, json={"info": stored["info"]})
        return httpx.Response(200, json={"id": "worker-1", **stored})

    bridge = build_bridge(
        _settings(worker_id="worker-1", worker_info="x" * 600),
        transports=Transports(horde=httpx.MockTransport(handler)),
    )

    async def scenario() -> bool:
        try:
            return await sync_worker_info(bridge)
        finally:
            await bridge.close()

    assert asyncio.run(scenario()) is True
    assert [request.method for request in requests] == ["PUT", "GET"]
    assert requests[0].url.path == "/api/v2/workers/worker-1"
    assert requests[0].headers["apikey"] == "horde-key"
    assert len(stored["info"]) == 500


def test_sync_worker_info_reports_mismatch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"info": "stale"})

    bridge = build_bridge(
        _settings(worker_id="worker-1", worker_info="fresh"),
        transports=Transports(horde=httpx.MockTransport(handler)),
    )

    assert asyncio.run(sync_worker_info(bridge)) is False
    asyncio.run(bridge.close())


def test_sync_worker_info_failure_only_warns() -> None:
    bridge = build_bridge(
        _settings(worker_id="worker-1", worker_info="fresh"),
        transports=Transports(horde=httpx.MockTransport(lambda request: httpx.Response(401))),
    )

    assert asyncio.run(sync_worker_info(bridge)) is False
    asyncio.run(bridge.close())


def test_sync_worker_info_is_skipped_without_worker_id() -> None:
    bridge = build_bridge(_settings(worker_info="fresh"))

    assert asyncio.run(sync_worker_info(bridge)) is False
    asyncio.run(bridge.close())
