"""Prompt moderation models and the local term filter."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from horde_text_bridge.domain.jobs import FaultReason


class ModerationMode(StrEnum):
    """How prompts are screened before generation."""

    DISABLED = "disabled"
    LOCAL = "local"
    REMOTE = "remote"


class ModerationReason(StrEnum):
    """Why a prompt was blocked."""

    NONE = "none"
    REGEX_MATCH = "regex-match"
    REMOTE_FLAG = "remote-flag"
    REMOTE_UNAVAILABLE = "remote-unavailable"


class PositiveAction(StrEnum):
    """What to send back to the queue for a positively classified prompt."""

    RESPOND = "respond"
    FAULT = "fault"


_BLOCKED_PROMPT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bcsam\b",
        r"\bcsem\b",
        r"\bchild\s+sexual\s+abuse\s+material\b",
        r"\bchild\s+porn(?:ography)?\b",
        r"\bpedoporn(?:ography|ographique)?\b",
        r"\blolicon\b",
        r"\bshotacon\b",
        r"\bunderage\s+(?:porn|sex|sexual|naked|nude)\b",
        r"\bpreteens?\s+(?:porn|sex|sexual|naked|nude)\b",
        r"\b(?:child|kid|enfant|mineur)\s+(?:porn|sex|sexual|naked|nude|fuck|rape)\b",
        r"\b(?:enfant|fillette|gar(?:c|ç)onnet|mineur)\s+(?:sexuel|sexuelle|viol|baise)\b",
    )
)

_FAULT_REASONS = {
    ModerationReason.REGEX_MATCH: FaultReason.MODERATION_REGEX,
    ModerationReason.REMOTE_FLAG: FaultReason.MODERATION_REMOTE,
    ModerationReason.REMOTE_UNAVAILABLE: FaultReason.MODERATION_REMOTE_UNAVAILABLE,
}


def matches_blocked_terms(prompt: object) -> bool:
    """Return whether the prompt contains a locally blocked term."""

    if not isinstance(prompt, str) or not prompt:
        return False
    return any(pattern.search(prompt) for pattern in _BLOCKED_PROMPT_PATTERNS)


@dataclass(slots=True, frozen=True)
class ModerationDecision:
    """Verdict for one prompt."""

    blocked: bool
    reason: ModerationReason
    mode: ModerationMode
    remote_score: float | None = None
    remote_flagged: bool | None = None

    @classmethod
    def clear(
        cls,
        mode: ModerationMode,
        *,
        remote_score: float | None = None,
        remote_flagged: bool | None = None,
    ) -> ModerationDecision:
        return cls(
            blocked=False,
            reason=ModerationReason.NONE,
            mode=mode,
            remote_score=remote_score,
            remote_flagged=remote_flagged,
        )

    @property
    def is_positive(self) -> bool:
        """Return whether a classification was actually obtained and was positive."""

        return self.reason in {ModerationReason.REGEX_MATCH, ModerationReason.REMOTE_FLAG}

    def resolve_action(self, policy: PositiveAction) -> PositiveAction:
        """Apply the configured policy; an unavailable classifier always faults."""

        if not self.is_positive:
            return PositiveAction.FAULT
        return policy

    @property
    def fault_reason(self) -> FaultReason:
        try:
            return _FAULT_REASONS[self.reason]
        except KeyError:
            raise ValueError(f"Decision with reason '{self.reason}' has no fault reason.") from None


__all__ = [
    "ModerationDecision",
    "ModerationMode",
    "ModerationReason",
    "PositiveAction",
    "matches_blocked_terms",
]
