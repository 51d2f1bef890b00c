"""Application services public API."""

from horde_text_bridge.application.services.job_cycle import (
    DEFAULT_BLOCKED_RESPONSE,
    DEFAULT_MODERATION_METADATA_REF,
    JobCycle,
    WorkerProfile,
)
from horde_text_bridge.application.services.moderation_service import (
    ModerationInput,
    ModerationService,
)
from horde_text_bridge.application.services.token_counter import TokenCounter, estimate_tokens
from horde_text_bridge.application.services.worker_pool import WorkerPool

__all__ = [
    "DEFAULT_BLOCKED_RESPONSE",
    "DEFAULT_MODERATION_METADATA_REF",
    "JobCycle",
    "ModerationInput",
    "ModerationService",
    "TokenCounter",
    "WorkerPool",
    "WorkerProfile",
    "estimate_tokens",
]
