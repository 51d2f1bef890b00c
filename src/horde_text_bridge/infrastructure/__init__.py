"""Infrastructure layer public API."""

from horde_text_bridge.infrastructure.audit import FileAuditLog
from horde_text_bridge.infrastructure.backends import (
    BackendClient,
    BackendEngine,
    build_backend_adapter,
)
from horde_text_bridge.infrastructure.horde import HordeClient
from horde_text_bridge.infrastructure.moderation import OpenAiModerationClient
from horde_text_bridge.infrastructure.runtime import StaggeredPollScheduler, TokenRateThrottle
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard

__all__ = [
    "BackendClient",
    "BackendEngine",
    "FileAuditLog",
    "HordeClient",
    "InMemoryStatusBoard",
    "OpenAiModerationClient",
    "StaggeredPollScheduler",
    "TokenRateThrottle",
    "build_backend_adapter",
]
