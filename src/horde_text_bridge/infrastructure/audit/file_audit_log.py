"""Append-only audit files for claimed prompts and blocked prompts."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import suppress
from datetime import UTC, datetime
from pathlib import Path

from horde_text_bridge.domain.ports import AuditLog

MODERATION_TRIGGER_EVENT = "CSAM_TRIGGER"

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class FileAuditLog(AuditLog):
    """Write audit records to local files; a missing path disables that channel."""

    def __init__(
        self,
        prompt_log_file: str | Path | None = None,
        moderation_log_file: str | Path | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._prompt_log_file = Path(prompt_log_file) if prompt_log_file else None
        self._moderation_log_file = Path(moderation_log_file) if moderation_log_file else None
        self._clock = clock

    def log_prompt(self, job_id: str, prompt: str) -> None:
        if self._prompt_log_file is None:
            return
        entry = f"[{self._clock().isoformat()}] job={job_id}\n{prompt}\n\n"
        try:
            with self._prompt_log_file.open("a", encoding="utf-8") as handle:
                handle.write(entry)
        except OSError as exc:
            logger.error("Failed writing prompt log to %s: %s", self._prompt_log_file, exc)

    def log_moderation_trigger(
        self,
        *,
        job_id: str,
        reason: str,
        mode: str,
        prompt: str,
        remote_score: float | None = None,
        threshold: float | None = None,
    ) -> None:
        if self._moderation_log_file is None:
            return
        entry = {
            "ts": self._clock().isoformat(),
            "event": MODERATION_TRIGGER_EVENT,
            "jobId": job_id,
            "reason": reason,
            "mode": mode,
            "threshold": threshold,
            "openaiMinorScore": remote_score,
            "promptLength": len(prompt),
            "prompt": prompt,
        }
        # Best effort; write failures are dropped silently.
        with suppress(OSError):
            with self._moderation_log_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False) + "\n")


__all__ = ["FileAuditLog", "MODERATION_TRIGGER_EVENT"]
