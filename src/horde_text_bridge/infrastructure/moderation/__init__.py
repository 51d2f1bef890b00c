"""Remote moderation adapters."""

from horde_text_bridge.infrastructure.moderation.openai_client import (
    OPENAI_MODERATION_MODEL,
    OPENAI_MODERATION_URL,
    OpenAiModerationClient,
)

__all__ = ["OPENAI_MODERATION_MODEL", "OPENAI_MODERATION_URL", "OpenAiModerationClient"]
