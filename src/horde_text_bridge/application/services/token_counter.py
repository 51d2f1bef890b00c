"""Prompt and generation token counting."""

from __future__ import annotations

import math

from horde_text_bridge.domain.ports import Tokenizer


def estimate_tokens(text: str, max_length_hint: int | None = None) -> int:
    """Estimate tokens as the larger of word count and `len / 3`, at least 1."""

    if not text:
        return 0
    word_estimate = len(text.split())
    char_estimate = math.ceil(len(text) / 3)
    estimate = max(1, word_estimate, char_estimate)
    if max_length_hint is not None and max_length_hint > 0:
        estimate = min(estimate, max_length_hint)
    return estimate


class TokenCounter:
    """Count tokens exactly through the backend tokenizer, or estimate them."""

    def __init__(self, tokenizer: Tokenizer) -> None:
        self._tokenizer = tokenizer

    @property
    def tokenizer(self) -> Tokenizer:
        return self._tokenizer

    async def count_prompt_tokens(self, prompt: str) -> int:
        if not prompt:
            return 0
        tokens = await self._exact_tokens(prompt)
        if tokens is not None:
            return len(tokens)
        return estimate_tokens(prompt)

    async def count_generation_tokens(self, generation: str, max_length_hint: int | None) -> int:
        if not generation:
            return 0
        tokens = await self._exact_tokens(generation)
        if tokens is not None:
            return len(tokens)
        return estimate_tokens(generation, max_length_hint)

    async def _exact_tokens(self, text: str) -> list[int] | None:
        if not self._tokenizer.supports_tokenization:
            return None
        return await self._tokenizer.tokenize(text)


__all__ = ["TokenCounter", "estimate_tokens"]
