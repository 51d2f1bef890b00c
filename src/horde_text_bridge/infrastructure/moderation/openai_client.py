"""Remote prompt classification through the OpenAI moderation endpoint."""

from __future__ import annotations

import math
from typing import Any

import httpx

from horde_text_bridge.domain.errors import ModerationUnavailableError
from horde_text_bridge.domain.ports import RemoteModerationClient, RemoteModerationResult

OPENAI_MODERATION_URL = "https://api.openai.com/v1/moderations"
OPENAI_MODERATION_MODEL = "omni-moderation-latest"

_MINORS_CATEGORY_KEYS = ("sexual/minors", "sexual_minors", "sexual-minors")
_DEFAULT_TIMEOUT_SECONDS = 15.0


class OpenAiModerationClient(RemoteModerationClient):
    """Classify prompts for sexual content involving minors."""

    def __init__(
        self,
        api_key: str,
        *,
        url: str = OPENAI_MODERATION_URL,
        model: str = OPENAI_MODERATION_MODEL,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._model = model
        self._http = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def close(self) -> None:
        """Release underlying HTTP resources."""

        await self._http.aclose()

    async def classify(self, text: str) -> RemoteModerationResult:
        try:
            response = await self._http.post(
                self._url,
                json={"model": self._model, "input": text},
            )
        except httpx.HTTPError as exc:
            raise ModerationUnavailableError(f"OpenAI moderation error: {exc}") from exc
        if not response.is_success:
            raise ModerationUnavailableError(f"OpenAI moderation HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModerationUnavailableError("OpenAI moderation returned invalid JSON") from exc

        results = payload.get("results") if isinstance(payload, dict) else None
        result = results[0] if isinstance(results, list) and results else None
        if not isinstance(result, dict):
            raise ModerationUnavailableError("OpenAI moderation response missing results[0]")

        return RemoteModerationResult(
            flagged=self._minors_flag(result.get("categories")),
            score=self._minors_score(result.get("category_scores")),
        )

    def _minors_flag(self, categories: Any) -> bool:
        if not isinstance(categories, dict):
            return False
        return any(categories.get(key) is True for key in _MINORS_CATEGORY_KEYS)

    def _minors_score(self, scores: Any) -> float | None:
        if not isinstance(scores, dict):
            return None
        for key in _MINORS_CATEGORY_KEYS:
            value = scores.get(key)
            if value is None or isinstance(value, bool):
                continue
            try:
                score = float(value)
            except (TypeError, ValueError):
                return None
            return score if math.isfinite(score) else None
        return None


__all__ = ["OPENAI_MODERATION_MODEL", "OPENAI_MODERATION_URL", "OpenAiModerationClient"]
