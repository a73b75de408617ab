"""
Retry policy for transient provider failures.

Only TransientProviderError subclasses (timeouts, rate limits) are retried.
The delay before retry ``n`` (1-based) is::

    min(base_delay_seconds * multiplier ** (n - 1), max_delay_seconds)

A rate limit that names a longer ``retry_after`` wins over the computed
delay, still capped at ``max_delay_seconds``.
"""

from __future__ import annotations

from dataclasses import dataclass

from cairn.core.config.models import RetryConfig
from cairn.core.engine.provider import RateLimitError, TransientProviderError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay_seconds: Delay before the first retry
        multiplier: Growth factor per retry
        max_delay_seconds: Cap on any single delay

    Example:
        >>> policy = RetryPolicy(max_retries=3, base_delay_seconds=1, multiplier=2)
        >>> [policy.delay_for(n) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay_seconds=config.base_delay_seconds,
            multiplier=config.multiplier,
            max_delay_seconds=config.max_delay_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """
        Whether a failed attempt may be retried.

        Args:
            error: What the attempt raised
            attempt: 1-based number of the attempt that failed
        """
        return isinstance(error, TransientProviderError) and attempt <= self.max_retries

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """
        Seconds to wait after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that failed
            error: The failure, consulted for a rate limit's retry_after
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = self.base_delay_seconds * self.multiplier ** (attempt - 1)
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return float(min(delay, self.max_delay_seconds))
