"""Application settings."""

import json
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from horde_text_bridge import __version__
from horde_text_bridge.application.services import (
    DEFAULT_BLOCKED_RESPONSE,
    DEFAULT_MODERATION_METADATA_REF,
)
from horde_text_bridge.domain.jobs import MAX_FAILED_REQUESTS
from horde_text_bridge.domain.moderation import ModerationMode, PositiveAction
from horde_text_bridge.infrastructure.backends import BackendEngine

PLACEHOLDER_API_KEY = "0000000000"
OPENAI_MODERATION_HARD_MAX_TOKENS = 30000
DEFAULT_BRIDGE_AGENT = f"horde-text-bridge:{__version__}"

_MODERATION_MODE_ALIASES = {
    "regex": ModerationMode.LOCAL,
    "enabled": ModerationMode.LOCAL,
    "true": ModerationMode.LOCAL,
    "1": ModerationMode.LOCAL,
    "openai": ModerationMode.REMOTE,
    "false": ModerationMode.DISABLED,
    "0": ModerationMode.DISABLED,
}
_FLAG_ALIASES = {"enabled": True, "disabled": False}


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    cluster_url: str = "https://aihorde.net"
    worker_name: str = "Worker"
    api_key: str = ""
    priority_usernames: Annotated[list[str], NoDecode] = Field(default_factory=list)
    worker_id: str | None = None
    worker_info: str | None = None
    server_url: str = "http://localhost:8000"
    server_engine: BackendEngine | None = None
    server_model: str | None = None
    server_api_key: str | None = None
    model: str | None = None
    ctx: int | None = None
    max_length: int = 512
    enforce_ctx_limit: bool = False
    max_tps: float | None = None
    refresh_time_seconds: float = 5.0
    nsfw: bool = False
    moderation_mode: ModerationMode = ModerationMode.LOCAL
    moderation_positive_action: PositiveAction = PositiveAction.RESPOND
    moderation_blocked_response: str = DEFAULT_BLOCKED_RESPONSE
    moderation_metadata_ref: str = DEFAULT_MODERATION_METADATA_REF
    openai_moderation_max_tokens: int = 10000
    openai_api_key: str | None = None
    prompt_log_file: str | None = None
    moderation_audit_log_file: str | None = None
    threads: int = 1
    timeout_seconds: float = 120.0
    thread_poll_stagger: bool = False
    max_failed_requests: int = MAX_FAILED_REQUESTS
    submit_retry_seconds: float = 10.0
    health_cache_seconds: float = 30.0
    bridge_agent: str = DEFAULT_BRIDGE_AGENT
    log_level: str = "INFO"
    log_file: str | None = None
    status_api_enabled: bool = False
    status_api_host: str = "127.0.0.1"
    status_api_port: int = 8080

    @field_validator("priority_usernames", mode="before")
    @classmethod
    def parse_csv_list(cls, value: object) -> object:
        """Support comma-separated env var values in addition to JSON arrays."""

        if not isinstance(value, str):
            return value
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [item.strip() for item in stripped.split(",") if item.strip()]

    @field_validator("moderation_mode", mode="before")
    @classmethod
    def parse_moderation_mode(cls, value: object) -> object:
        """Accept legacy filter names and booleans."""

        if isinstance(value, bool):
            return ModerationMode.LOCAL if value else ModerationMode.DISABLED
        if isinstance(value, str):
            normalized = value.strip().lower()
            return _MODERATION_MODE_ALIASES.get(normalized, normalized)
        return value

    @field_validator("nsfw", "enforce_ctx_limit", "thread_poll_stagger", mode="before")
    @classmethod
    def parse_enabled_flag(cls, value: object) -> object:
        """Accept `enabled` / `disabled` next to the usual boolean spellings."""

        if isinstance(value, str):
            return _FLAG_ALIASES.get(value.strip().lower(), value)
        return value

    @field_validator(
        "worker_id",
        "worker_info",
        "server_model",
        "server_api_key",
        "openai_api_key",
        "prompt_log_file",
        "moderation_audit_log_file",
        "log_file",
        "max_tps",
        mode="before",
    )
    @classmethod
    def blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("server_engine", mode="before")
    @classmethod
    def normalize_engine(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @model_validator(mode="after")
    def validate_bridge_settings(self) -> "Settings":
        """Ensure required and mode-specific settings are valid."""

        api_key = self.api_key.strip()
        if not api_key or api_key == PLACEHOLDER_API_KEY:
            raise ValueError(
                "HORDE_BRIDGE_API_KEY is required and cannot be the default placeholder value."
            )
        if not self.model:
            raise ValueError("HORDE_BRIDGE_MODEL is required.")
        if self.ctx is None or self.ctx <= 0:
            raise ValueError("HORDE_BRIDGE_CTX is required and must be > 0.")
        if self.server_engine is None:
            raise ValueError("HORDE_BRIDGE_SERVER_ENGINE is required.")
        if self.server_engine == BackendEngine.OLLAMA and not self.server_model:
            raise ValueError(
                "HORDE_BRIDGE_SERVER_MODEL is required when HORDE_BRIDGE_SERVER_ENGINE=ollama."
            )
        if self.moderation_mode == ModerationMode.REMOTE and not self.openai_api_key:
            raise ValueError(
                "HORDE_BRIDGE_OPENAI_API_KEY is required when "
                "HORDE_BRIDGE_MODERATION_MODE=remote."
            )
        if not 1 <= self.openai_moderation_max_tokens <= OPENAI_MODERATION_HARD_MAX_TOKENS:
            raise ValueError(
                "HORDE_BRIDGE_OPENAI_MODERATION_MAX_TOKENS must be between 1 and "
                f"{OPENAI_MODERATION_HARD_MAX_TOKENS}."
            )
        if self.max_tps is not None and self.max_tps <= 0:
            raise ValueError("HORDE_BRIDGE_MAX_TPS must be > 0.")
        if self.max_length < 1:
            raise ValueError("HORDE_BRIDGE_MAX_LENGTH must be >= 1.")
        if self.threads < 1:
            raise ValueError("HORDE_BRIDGE_THREADS must be >= 1.")
        if self.timeout_seconds <= 0:
            raise ValueError("HORDE_BRIDGE_TIMEOUT_SECONDS must be > 0.")
        if self.refresh_time_seconds <= 0:
            raise ValueError("HORDE_BRIDGE_REFRESH_TIME_SECONDS must be > 0.")
        if self.submit_retry_seconds < 0:
            raise ValueError("HORDE_BRIDGE_SUBMIT_RETRY_SECONDS must be >= 0.")
        if self.health_cache_seconds < 0:
            raise ValueError("HORDE_BRIDGE_HEALTH_CACHE_SECONDS must be >= 0.")
        if self.max_failed_requests < 1:
            raise ValueError("HORDE_BRIDGE_MAX_FAILED_REQUESTS must be >= 1.")
        if not 1 <= self.status_api_port <= 65535:
            raise ValueError("HORDE_BRIDGE_STATUS_API_PORT must be between 1 and 65535.")
        return self

    model_config = SettingsConfigDict(
        env_prefix="HORDE_BRIDGE_",
        env_file=".env",
        extra="ignore",
    )


__all__ = ["DEFAULT_BRIDGE_AGENT", "PLACEHOLDER_API_KEY", "Settings"]
