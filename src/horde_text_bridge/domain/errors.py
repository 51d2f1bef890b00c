"""Domain exceptions for bridge operations."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for bridge errors."""


class UnsupportedBackendError(BridgeError):
    """Raised when a configured inference engine has no adapter."""


class MalformedResponseError(BridgeError):
    """Raised when a backend response does not contain a usable generation."""


class HordeClientError(BridgeError):
    """Raised when calls to the Horde queue fail."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class WorkerMaintenanceError(HordeClientError):
    """Raised when the queue reports this worker as being in maintenance."""


class BackendClientError(BridgeError):
    """Raised when calls to the local inference backend fail."""


class ModerationUnavailableError(BridgeError):
    """Raised when the remote moderation classifier cannot give a verdict."""


__all__ = [
    "BackendClientError",
    "BridgeError",
    "HordeClientError",
    "MalformedResponseError",
    "ModerationUnavailableError",
    "UnsupportedBackendError",
    "WorkerMaintenanceError",
]
