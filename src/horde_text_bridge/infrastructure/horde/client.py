"""HTTP client for the Horde text generation queue."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from horde_text_bridge.domain.errors import HordeClientError, WorkerMaintenanceError
from horde_text_bridge.domain.horde_models import PopRequest, SubmitRequest, WorkerInfoUpdate
from horde_text_bridge.domain.jobs import Job
from horde_text_bridge.domain.ports import JobQueue

_MAINTENANCE_RC = "WorkerMaintenance"
_WORKER_INFO_TIMEOUT_SECONDS = 15.0


class HordeClient(JobQueue):
    """Wrapper around the Horde pop/submit and worker endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = self._normalize_base_url(base_url)
        self._generate_headers = {"apikey": api_key}
        self._worker_headers = {"apikey": api_key, "X-Api-Key": api_key}
        self._http = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def close(self) -> None:
        """Release underlying HTTP resources."""

        await self._http.aclose()

    async def pop_job(self, request: PopRequest) -> Job | None:
        """Call `/generate/text/pop`; return None when the queue has no job for us."""

        url = self._endpoint("/api/v2/generate/text/pop")
        response = await self._send(
            "POST",
            url,
            headers=self._generate_headers,
            json=request.model_dump(exclude_none=True),
        )
        if response.status_code == 403:
            payload = self._json_or_none(response)
            if isinstance(payload, dict) and payload.get("rc") == _MAINTENANCE_RC:
                message = payload.get("message")
                raise WorkerMaintenanceError(
                    message if isinstance(message, str) and message else "Worker in maintenance",
                    status_code=403,
                    payload=payload,
                )
        self._ensure_success(response)

        payload = self._json_or_none(response)
        if not isinstance(payload, dict):
            return None
        return Job.from_pop_response(payload)

    async def submit(self, request: SubmitRequest) -> dict[str, Any]:
        """Call `/generate/text/submit` and return the decoded response document."""

        url = self._endpoint("/api/v2/generate/text/submit")
        response = await self._send(
            "POST",
            url,
            headers=self._generate_headers,
            json=request.model_dump(exclude_none=True),
        )
        self._ensure_success(response)
        payload = self._json_or_none(response)
        return payload if isinstance(payload, dict) else {}

    async def update_worker_info(self, worker_id: str, info: str) -> None:
        """Call `PUT /workers/{workerId}` with a new description."""

        body = WorkerInfoUpdate(info=info[:500])
        response = await self._send(
            "PUT",
            self._worker_endpoint(worker_id),
            headers=self._worker_headers,
            json=body.model_dump(),
            timeout=_WORKER_INFO_TIMEOUT_SECONDS,
        )
        self._ensure_success(response)

    async def get_worker(self, worker_id: str) -> dict[str, Any]:
        """Call `GET /workers/{workerId}`."""

        response = await self._send(
            "GET",
            self._worker_endpoint(worker_id),
            headers=self._worker_headers,
            timeout=_WORKER_INFO_TIMEOUT_SECONDS,
        )
        self._ensure_success(response)
        payload = self._json_or_none(response)
        return payload if isinstance(payload, dict) else {}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: Any = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        try:
            return await self._http.request(method, url, headers=headers, json=json, **extra)
        except httpx.HTTPError as exc:
            raise HordeClientError(f"{method} {url} failed: {exc}") from exc

    def _worker_endpoint(self, worker_id: str) -> str:
        return self._endpoint(f"/api/v2/workers/{quote(worker_id, safe='')}")

    def _endpoint(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _ensure_success(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        payload = self._json_or_none(response)
        raise HordeClientError(
            f"{response.request.method} {response.request.url} failed: "
            f"{response.status_code} {self._detail_from_response(response, payload)}",
            status_code=response.status_code,
            payload=payload,
        )

    def _json_or_none(self, response: httpx.Response) -> Any:
        if not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _detail_from_response(self, response: httpx.Response, payload: Any) -> str:
        if isinstance(payload, dict):
            message = payload.get("message")
            if isinstance(message, str):
                return message
            return str(payload)
        text = response.text.strip()
        return text or "<no response body>"

    def _normalize_base_url(self, base_url: str) -> str:
        normalized = base_url.strip().rstrip("/")
        if normalized.endswith("/api/v2"):
            normalized = normalized[: -len("/api/v2")]
        if not normalized:
            raise HordeClientError("Horde cluster URL cannot be empty.")
        return normalized


__all__ = ["HordeClient"]
