"""HTTP client for the local inference backend."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from horde_text_bridge.domain.errors import BackendClientError
from horde_text_bridge.domain.ports import BackendAdapter, InferenceBackend

_DEFAULT_HEALTH_CACHE_SECONDS = 30.0

logger = logging.getLogger(__name__)


class BackendClient(InferenceBackend):
    """Send generation, health, and tokenizer calls through one backend adapter."""

    def __init__(
        self,
        base_url: str,
        adapter: BackendAdapter,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 120.0,
        health_cache_seconds: float = _DEFAULT_HEALTH_CACHE_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = self._normalize_base_url(base_url)
        self._adapter = adapter
        self._headers = {"Authorization": api_key} if api_key else {}
        self._health_cache_seconds = max(health_cache_seconds, 0.0)
        self._clock = clock
        self._http = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers=self._headers,
            transport=transport,
        )
        self._health_checked_at: float | None = None
        self._healthy: bool | None = None
        self.last_health_error: str | None = None

    @property
    def adapter(self) -> BackendAdapter:
        return self._adapter

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def supports_tokenization(self) -> bool:
        return (
            self._adapter.token_encode_path is not None
            and self._adapter.token_decode_path is not None
        )

    async def close(self) -> None:
        """Release underlying HTTP resources."""

        await self._http.aclose()

    async def check_health(self, *, force: bool = False) -> bool:
        """GET the adapter health path; 200 means healthy. Results are cached."""

        now = self._clock()
        if (
            not force
            and self._healthy is not None
            and self._health_checked_at is not None
            and now - self._health_checked_at <= self._health_cache_seconds
        ):
            return self._healthy

        self._health_checked_at = now
        url = self._endpoint(self._adapter.health_path)
        try:
            response = await self._http.get(url)
        except httpx.ConnectError as exc:
            self._record_health(False, "generation server unreachable")
            logger.error("Server health check failed for %s: %s", url, exc)
            return False
        except httpx.HTTPError as exc:
            self._record_health(False, f"health check error: {exc}")
            logger.error("Server health check failed for %s: %s", url, exc)
            return False

        if response.status_code == 200:
            self._record_health(True, None)
            return True
        if response.status_code == 404:
            self._record_health(False, "health endpoint not found")
        else:
            self._record_health(False, f"health check status {response.status_code}")
        logger.error(
            "Server health check failed for %s: HTTP %s", url, response.status_code
        )
        return False

    async def generate(self, request: dict[str, Any]) -> Any:
        """POST a backend-native request to the generation path and return decoded JSON."""

        return await self._post_json(self._adapter.generate_path, request)

    async def tokenize(self, text: str) -> list[int] | None:
        """Return exact token ids, or None when unsupported or failing."""

        path = self._adapter.token_encode_path
        if path is None:
            return None
        try:
            data = await self._post_json(path, {"text": text})
        except BackendClientError as exc:
            logger.warning("Tokenize call failed: %s", exc)
            return None
        return self._adapter.parse_tokens(data)

    async def detokenize(self, tokens: list[int]) -> str | None:
        """Return text for token ids, or None when unsupported or failing."""

        path = self._adapter.token_decode_path
        if path is None:
            return None
        try:
            data = await self._post_json(path, {"tokens": tokens})
        except BackendClientError as exc:
            logger.warning("Detokenize call failed: %s", exc)
            return None
        return self._adapter.parse_text(data)

    async def _post_json(self, path: str, body: dict[str, Any]) -> Any:
        url = self._endpoint(path)
        try:
            response = await self._http.post(url, json=body)
        except httpx.HTTPError as exc:
            raise BackendClientError(f"POST {url} failed: {exc}") from exc
        if not response.is_success:
            raise BackendClientError(
                f"POST {url} failed: {response.status_code} {self._detail_from_response(response)}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendClientError(f"POST {url} returned invalid JSON.") from exc

    def _record_health(self, healthy: bool, error: str | None) -> None:
        self._healthy = healthy
        self.last_health_error = error

    def _endpoint(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _detail_from_response(self, response: httpx.Response) -> str:
        text = response.text.strip()
        return text or "<no response body>"

    def _normalize_base_url(self, base_url: str) -> str:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise BackendClientError("Backend server URL cannot be empty.")
        return normalized


__all__ = ["BackendClient"]
