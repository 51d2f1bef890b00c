"""Prompt moderation gate."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from horde_text_bridge.application.services.token_counter import TokenCounter
from horde_text_bridge.domain.errors import ModerationUnavailableError
from horde_text_bridge.domain.moderation import (
    ModerationDecision,
    ModerationMode,
    ModerationReason,
    matches_blocked_terms,
)
from horde_text_bridge.domain.ports import RemoteModerationClient, StatusReporter

_DEFAULT_REMOTE_MAX_TOKENS = 10000
_MIN_FALLBACK_RATIO = 0.05
_MIN_FALLBACK_CHARS = 200

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ModerationInput:
    """Text actually sent to the remote classifier."""

    text: str
    truncated: bool
    estimated_tokens: int
    original_estimated_tokens: int


class ModerationService:
    """Decide whether a prompt may be generated.

    The local term filter always runs first and blocks in every mode except
    `disabled`. In `remote` mode a clear prompt is then sent to the remote
    classifier; any failure to classify blocks the prompt.
    """

    def __init__(
        self,
        mode: ModerationMode,
        token_counter: TokenCounter,
        remote_client: RemoteModerationClient | None = None,
        *,
        remote_max_tokens: int = _DEFAULT_REMOTE_MAX_TOKENS,
        status: StatusReporter | None = None,
    ) -> None:
        if mode is ModerationMode.REMOTE and remote_client is None:
            raise ValueError("Remote moderation mode requires a remote client.")
        self._mode = mode
        self._token_counter = token_counter
        self._remote_client = remote_client
        self._remote_max_tokens = max(1, remote_max_tokens)
        self._status = status

    @property
    def mode(self) -> ModerationMode:
        return self._mode

    async def evaluate(self, prompt: str) -> ModerationDecision:
        if self._mode is ModerationMode.DISABLED:
            return ModerationDecision.clear(self._mode)

        if matches_blocked_terms(prompt):
            return ModerationDecision(
                blocked=True,
                reason=ModerationReason.REGEX_MATCH,
                mode=self._mode,
            )

        if self._mode is not ModerationMode.REMOTE or self._remote_client is None:
            return ModerationDecision.clear(self._mode)

        moderation_input = await self.build_remote_input(prompt)
        try:
            result = await self._remote_client.classify(moderation_input.text)
        except ModerationUnavailableError as exc:
            logger.warning("Remote moderation unavailable, blocking prompt: %s", exc)
            if self._status is not None:
                self._status.set_last_error(str(exc))
            return ModerationDecision(
                blocked=True,
                reason=ModerationReason.REMOTE_UNAVAILABLE,
                mode=self._mode,
            )

        if result.flagged:
            return ModerationDecision(
                blocked=True,
                reason=ModerationReason.REMOTE_FLAG,
                mode=self._mode,
                remote_score=result.score,
                remote_flagged=True,
            )
        return ModerationDecision.clear(
            self._mode,
            remote_score=result.score,
            remote_flagged=False,
        )

    async def build_remote_input(self, prompt: str) -> ModerationInput:
        """Fit the prompt into the remote token budget."""

        max_tokens = self._remote_max_tokens
        estimated = await self._token_counter.count_prompt_tokens(prompt)
        if estimated <= max_tokens:
            return ModerationInput(prompt, False, estimated, estimated)

        tokenizer = self._token_counter.tokenizer
        if tokenizer.supports_tokenization:
            tokens = await tokenizer.tokenize(prompt)
            if tokens is not None and len(tokens) > max_tokens:
                rebuilt = await tokenizer.detokenize(tokens[:max_tokens])
                if rebuilt:
                    return ModerationInput(rebuilt, True, max_tokens, len(tokens))

        ratio = max(_MIN_FALLBACK_RATIO, min(1.0, max_tokens / estimated))
        keep_chars = max(_MIN_FALLBACK_CHARS, math.floor(len(prompt) * ratio))
        return ModerationInput(prompt[:keep_chars], True, max_tokens, estimated)


__all__ = ["ModerationInput", "ModerationService"]
