"""Inference backend adapters and client."""

from horde_text_bridge.infrastructure.backends.adapters import (
    BackendEngine,
    HttpBackendAdapter,
    KoboldCppAdapter,
    LlamaCppAdapter,
    OllamaAdapter,
    SglangAdapter,
    TabbyApiAdapter,
    VllmAdapter,
    build_backend_adapter,
)
from horde_text_bridge.infrastructure.backends.client import BackendClient

__all__ = [
    "BackendClient",
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
