"""Reconnection backoff policy."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class FailureClass(Enum):
    """How a connection failure affects retrying."""

    TRANSIENT = "transient"
    FATAL = "fatal"


def compute_delay(
    attempt: int,
    *,
    base: float,
    cap_exponent: int,
    max_delay: float,
    jitter: float = 0.0,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return ``base * 2**min(attempt, cap_exponent)`` with ±jitter, capped."""
    exponent = min(max(attempt, 0), cap_exponent)
    delay = base * (2**exponent)
    if jitter:
        delay *= 1.0 + jitter * (2.0 * rand() - 1.0)
    return max(0.0, min(delay, max_delay))


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter and an attempt ceiling.

    Attributes:
        base_delay: Delay of the first retry (seconds)
        max_delay: Upper bound for any delay (seconds)
        cap_exponent: Largest exponent applied to base_delay
        jitter: Fractional jitter, 0.2 means ±20%
        max_attempts: Retries allowed before giving up (None = unlimited)
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    cap_exponent: int = 6
    jitter: float = 0.2
    max_attempts: int | None = 10

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts

    def next_delay(
        self,
        attempt: int,
        failure: FailureClass = FailureClass.TRANSIENT,
        *,
        rand: Callable[[], float] = random.random,  # noqa: S311 - jitter, not crypto
    ) -> float | None:
        """Delay before retry number ``attempt`` (0-based), or None to stop."""
        if failure is FailureClass.FATAL or self.exhausted(attempt):
            return None
        return compute_delay(
            attempt,
            base=self.base_delay,
            cap_exponent=self.cap_exponent,
            max_delay=self.max_delay,
            jitter=self.jitter,
            rand=rand,
        )
