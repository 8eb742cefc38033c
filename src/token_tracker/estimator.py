"""Character-count token estimation.

This is an approximation, not a tokenizer: a token is assumed to be
``ratio`` characters long regardless of language or content.
"""

from __future__ import annotations

DEFAULT_RATIO = 7


class TokenEstimator:
    """Converts text length into an approximate token count."""

    def __init__(self, ratio: int | None = None) -> None:
        if ratio is None or ratio <= 0:
            ratio = DEFAULT_RATIO
        self.ratio = ratio

    def estimate(self, text: str | None) -> int:
        if text is None:
            return 0
        return len(text) // self.ratio

    def __repr__(self) -> str:
        return f"TokenEstimator(ratio={self.ratio})"
