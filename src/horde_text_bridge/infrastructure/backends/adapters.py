"""Request/response mappings for supported inference backends."""

from __future__ import annotations

import math
from enum import StrEnum
from typing import Any

from horde_text_bridge.domain.errors import MalformedResponseError, UnsupportedBackendError
from horde_text_bridge.domain.jobs import Job
from horde_text_bridge.domain.ports import BackendAdapter

_VLLM_MIN_REPETITION_PENALTY = 0.01
_VLLM_MAX_REPETITION_PENALTY = 2.0
_TOP_K_DISABLED = -1


class BackendEngine(StrEnum):
    """Inference backend dialects the bridge can talk to."""

    OLLAMA = "ollama"
    VLLM = "vllm"
    TABBYAPI = "tabbyapi"
    SGLANG = "sglang"
    KOBOLDCPP = "koboldcpp"
    LLAMACPP = "llamacpp"


def _number(payload: dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    return numeric if math.isfinite(numeric) else default


def _integer(payload: dict[str, Any], key: str, default: int) -> int:
    return int(_number(payload, key, float(default)))


def _stop_sequences(payload: dict[str, Any]) -> list[str]:
    value = payload.get("stop_sequence")
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, str) and value:
        return [value]
    return []


def _top_k_or_disabled(payload: dict[str, Any]) -> int:
    """Map Horde's `0 = disabled` top-k sentinel to `-1`."""

    top_k = _integer(payload, "top_k", _TOP_K_DISABLED)
    return _TOP_K_DISABLED if top_k == 0 else top_k


def _first_text(data: Any, key: str, backend: str) -> str:
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Invalid {backend} response: expected a JSON object.")
    value = data.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    if not isinstance(value, str):
        raise MalformedResponseError(f"Invalid {backend} response: missing '{key}' text.")
    return _non_empty(value, backend)


def _non_empty(text: str, backend: str) -> str:
    if not text:
        raise MalformedResponseError(f"Invalid {backend} response: empty generation.")
    return text


class HttpBackendAdapter(BackendAdapter):
    """Defaults shared by adapters without tokenizer endpoints."""

    name = "generic"
    health_path = "/health"
    generate_path = "/generate"
    token_encode_path: str | None = None
    token_decode_path: str | None = None

    def parse_tokens(self, data: Any) -> list[int] | None:
        _ = data
        return None

    def parse_text(self, data: Any) -> str | None:
        _ = data
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class OllamaAdapter(HttpBackendAdapter):
    name = BackendEngine.OLLAMA.value
    health_path = "/api/tags"
    generate_path = "/api/generate"

    def build_request(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        options: dict[str, Any] = {
            "num_predict": job.max_length,
            "num_ctx": job.max_context_length,
            "temperature": _number(payload, "temperature", 1.0),
            "top_p": _number(payload, "top_p", 1.0),
            "repeat_penalty": _number(payload, "rep_pen", 1.0),
            "repeat_last_n": _integer(payload, "rep_pen_range", 64),
            "stop": _stop_sequences(payload),
        }
        # Ollama has no disabled sentinel; leaving top_k out disables it.
        top_k = _integer(payload, "top_k", 0)
        if top_k > 0:
            options["top_k"] = top_k
        return {"prompt": job.prompt, "stream": False, "options": options}

    def extract_generation(self, data: Any, prompt: str) -> str:
        _ = prompt
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise MalformedResponseError("Invalid Ollama response: missing response field.")
        return _non_empty(data["response"], "Ollama")


class VllmAdapter(HttpBackendAdapter):
    name = BackendEngine.VLLM.value

    def build_request(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        repetition_penalty = _number(payload, "rep_pen", 1.0)
        repetition_penalty = min(
            max(repetition_penalty, _VLLM_MIN_REPETITION_PENALTY),
            _VLLM_MAX_REPETITION_PENALTY,
        )
        return {
            "prompt": job.prompt,
            "stop": _stop_sequences(payload),
            "max_tokens": job.max_length,
            "temperature": _number(payload, "temperature", 1.0),
            "top_k": _top_k_or_disabled(payload),
            "top_p": _number(payload, "top_p", 1.0),
            "repetition_penalty": repetition_penalty,
        }

    def extract_generation(self, data: Any, prompt: str) -> str:
        # vLLM echoes the prompt in front of the completion.
        generation = _first_text(data, "text", "vLLM")
        if generation.startswith(prompt):
            generation = generation[len(prompt) :]
        return _non_empty(generation, "vLLM")


class TabbyApiAdapter(HttpBackendAdapter):
    name = BackendEngine.TABBYAPI.value
    generate_path = "/v1/completions"
    token_encode_path = "/v1/token/encode"
    token_decode_path = "/v1/token/decode"

    def build_request(self, job: Job) -> dict[str, Any]:
        return {**job.payload, "tfs": 1.0}

    def extract_generation(self, data: Any, prompt: str) -> str:
        _ = prompt
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedResponseError("Invalid TabbyAPI response: missing choices.")
        text = choices[0].get("text")
        if not isinstance(text, str):
            raise MalformedResponseError("Invalid TabbyAPI response: missing choice text.")
        return _non_empty(text, "TabbyAPI")

    def parse_tokens(self, data: Any) -> list[int] | None:
        tokens = data.get("tokens") if isinstance(data, dict) else None
        if not isinstance(tokens, list) or not all(
            isinstance(token, int) and not isinstance(token, bool) for token in tokens
        ):
            return None
        return list(tokens)

    def parse_text(self, data: Any) -> str | None:
        text = data.get("text") if isinstance(data, dict) else None
        return text if isinstance(text, str) else None


class SglangAdapter(HttpBackendAdapter):
    name = BackendEngine.SGLANG.value

    def build_request(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        return {
            "text": job.prompt,
            "sampling_params": {
                "stop": _stop_sequences(payload),
                "max_new_tokens": job.max_length,
                "temperature": _number(payload, "temperature", 1.0),
                "top_k": _top_k_or_disabled(payload),
                "top_p": _number(payload, "top_p", 1.0),
            },
        }

    def extract_generation(self, data: Any, prompt: str) -> str:
        _ = prompt
        return _first_text(data, "text", "SGLang")


class KoboldCppAdapter(HttpBackendAdapter):
    name = BackendEngine.KOBOLDCPP.value
    health_path = "/api/extra/version"
    generate_path = "/api/v1/generate"

    def build_request(self, job: Job) -> dict[str, Any]:
        return dict(job.payload)

    def extract_generation(self, data: Any, prompt: str) -> str:
        _ = prompt
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise MalformedResponseError("Invalid KoboldCpp response: missing results.")
        text = results[0].get("text")
        if not isinstance(text, str):
            raise MalformedResponseError("Invalid KoboldCpp response: missing result text.")
        return _non_empty(text, "KoboldCpp")


class LlamaCppAdapter(HttpBackendAdapter):
    name = BackendEngine.LLAMACPP.value
    health_path = "/props"
    generate_path = "/completion"

    def build_request(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        return {
            "prompt": job.prompt,
            "stop": _stop_sequences(payload),
            "n_predict": job.max_length,
            "n_keep": job.max_context_length - job.max_length,
            "temperature": _number(payload, "temperature", 1.0),
            "tfs_z": _number(payload, "tfs", 1.0),
            "top_k": _integer(payload, "top_k", _TOP_K_DISABLED),
            "top_p": _number(payload, "top_p", 1.0),
            "repeat_penalty": _number(payload, "rep_pen", 1.0),
            "repeat_last_n": _integer(payload, "rep_pen_range", 64),
            "typical_p": _number(payload, "typical", 0.0),
        }

    def extract_generation(self, data: Any, prompt: str) -> str:
        _ = prompt
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            raise MalformedResponseError("Invalid llama.cpp response: missing content field.")
        return _non_empty(data["content"], "llama.cpp")


_ADAPTERS: dict[BackendEngine, BackendAdapter] = {
    BackendEngine.OLLAMA: OllamaAdapter(),
    BackendEngine.VLLM: VllmAdapter(),
    BackendEngine.TABBYAPI: TabbyApiAdapter(),
    BackendEngine.SGLANG: SglangAdapter(),
    BackendEngine.KOBOLDCPP: KoboldCppAdapter(),
    BackendEngine.LLAMACPP: LlamaCppAdapter(),
}


def build_backend_adapter(engine: str) -> BackendAdapter:
    """Return the adapter registered for an engine name."""

    normalized = str(engine).strip().lower()
    try:
        return _ADAPTERS[BackendEngine(normalized)]
    except ValueError:
        raise UnsupportedBackendError(f"Unsupported server engine '{engine}'.") from None


__all__ = [
    "BackendEngine",
    "HttpBackendAdapter",
    "KoboldCppAdapter",
    "LlamaCppAdapter",
    "OllamaAdapter",
    "SglangAdapter",
    "TabbyApiAdapter",
    "VllmAdapter",
    "build_backend_adapter",
]
