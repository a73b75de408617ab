"""
Approximate token counting and model context windows.

Token counts are estimated from character length using a per-family
characters-per-token ratio and always rounded up, so the estimate is
monotonic in text length and errs on the side of overcounting. Exact
tokenizer fidelity is not a goal; never overshooting a budget is.

Usage:
    >>> counter = TokenCounter()
    >>> counter.count("hello world", model="gpt-4o")
    3
    >>> context_window("claude-3-5-sonnet-20241022")
    200000
"""

from __future__ import annotations

import math
from collections.abc import Iterable

DEFAULT_CHARS_PER_TOKEN = 4.0
DEFAULT_CONTEXT_WINDOW = 8192

# Family prefix -> characters per token. Longest prefix wins.
CHARS_PER_TOKEN: dict[str, float] = {
    "gpt": 4.0,
    "o1": 4.0,
    "claude": 3.5,
    "llama": 3.5,
    "mistral": 3.5,
}

MODEL_WINDOWS: dict[str, int] = {
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4-turbo": 128000,
    "gpt-4": 8192,
    "gpt-3.5-turbo": 16385,
    "claude-3-5-sonnet": 200000,
    "claude-3-5-haiku": 200000,
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "claude-4.5-sonnet": 200000,
    "llama-3.3-70b": 128000,
}

TRUNCATION_MARKER = "\n[... truncated ...]\n"


def _longest_prefix(keys: Iterable[str], model: str) -> str | None:
    matches = [key for key in keys if model.startswith(key)]
    return max(matches, key=len) if matches else None


def context_window(model: str) -> int:
    """
    Get the context window for a model id.

    Exact ids win, then the longest known prefix (so dated ids like
    ``gpt-4o-2024-08-06`` resolve), then a conservative default.

    Args:
        model: Model identifier

    Returns:
        Maximum tokens the model accepts
    """
    if model in MODEL_WINDOWS:
        return MODEL_WINDOWS[model]
    key = _longest_prefix(MODEL_WINDOWS, model)
    return MODEL_WINDOWS[key] if key else DEFAULT_CONTEXT_WINDOW


class TokenCounter:
    """
    Conservative token estimator.

    Attributes:
        chars_per_token: Override ratio applied to every model (None = per family)
    """

    def __init__(self, chars_per_token: float | None = None) -> None:
        if chars_per_token is not None and chars_per_token <= 0:
            raise ValueError(f"chars_per_token must be > 0, got {chars_per_token}")
        self.chars_per_token = chars_per_token

    def ratio(self, model: str | None = None) -> float:
        """Characters per token used for a model."""
        if self.chars_per_token is not None:
            return self.chars_per_token
        if model:
            key = _longest_prefix(CHARS_PER_TOKEN, model)
            if key:
                return CHARS_PER_TOKEN[key]
        return DEFAULT_CHARS_PER_TOKEN

    def count(self, text: str, model: str | None = None) -> int:
        """
        Estimate tokens in text, rounding up.

        Args:
            text: Text to estimate
            model: Optional model id selecting the family ratio

        Returns:
            Estimated token count (0 for empty text)
        """
        if not text:
            return 0
        return math.ceil(len(text) / self.ratio(model))

    def max_chars(self, tokens: int, model: str | None = None) -> int:
        """Largest character count whose estimate stays within ``tokens``."""
        if tokens <= 0:
            return 0
        return math.floor(tokens * self.ratio(model))

    def fits(self, text: str, tokens: int, model: str | None = None) -> bool:
        return self.count(text, model) <= tokens

    def truncate_to_tokens(
        self,
        text: str,
        tokens: int,
        model: str | None = None,
        keep: str = "head",
        marker: str = TRUNCATION_MARKER,
    ) -> str:
        """
        Cut text so its estimate fits within ``tokens``.

        Args:
            text: Text to truncate
            tokens: Token limit
            model: Optional model id
            keep: ``"head"`` keeps the beginning, ``"tail"`` keeps the end
            marker: Inserted where text was removed

        Returns:
            Text unchanged if it already fits, otherwise the kept part plus
            the marker; empty string if not even the marker fits
        """
        if keep not in ("head", "tail"):
            raise ValueError(f"keep must be 'head' or 'tail', got {keep!r}")
        if self.fits(text, tokens, model):
            return text
        budget = self.max_chars(tokens, model) - len(marker)
        if budget <= 0:
            return ""
        if keep == "head":
            return text[:budget] + marker
        return marker + text[len(text) - budget :]
