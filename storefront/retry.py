"""Bounded retry policy shared by the webhook sender and the realtime client.

Webhook delivery backs off exponentially (1s, 2s, 4s ...); realtime
reconnects back off linearly (1s, 2s, 3s ...). Both are a maximum retry
count plus a delay function of the 0-indexed attempt number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


def exponential_delay(base_delay: float) -> Callable[[int], float]:
    """base * 2^attempt."""
    return lambda attempt: base_delay * (2**attempt)


def linear_delay(base_delay: float) -> Callable[[int], float]:
    """base * (attempt + 1)."""
    return lambda attempt: base_delay * (attempt + 1)


@dataclass(frozen=True)
class RetryPolicy:
    """Maximum retry count plus a delay function.

    Args:
        max_retries: Retries allowed after the first attempt.
        delay: Seconds to wait before retry number ``attempt`` (0-indexed).
    """

    max_retries: int
    delay: Callable[[int], float]

    @classmethod
    def exponential(cls, max_retries: int = 3, base_delay: float = 1.0) -> RetryPolicy:
        return cls(max_retries=max_retries, delay=exponential_delay(base_delay))

    @classmethod
    def linear(cls, max_retries: int = 5, base_delay: float = 1.0) -> RetryPolicy:
        return cls(max_retries=max_retries, delay=linear_delay(base_delay))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def can_retry(self, attempt: int) -> bool:
        """True if a retry may follow the 0-indexed ``attempt``."""
        return attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        return max(0.0, float(self.delay(attempt)))
