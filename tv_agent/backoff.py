"""Reconnect backoff: capped exponential delay with a bounded attempt count."""

from __future__ import annotations

from dataclasses import dataclass


class BackoffExhausted(RuntimeError):
    """Raised when another attempt is requested after ``max_attempts``."""


def backoff_delay(attempt: int, min_delay: float, max_delay: float) -> float:
    """Delay before reconnect ``attempt`` (1-based).

    ``min(min_delay * 2 ** (attempt - 1), max_delay)``
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    # Cap the exponent so large attempt counts cannot overflow a float.
    exponent = min(attempt - 1, 64)
    return min(min_delay * (2**exponent), max_delay)


@dataclass
class Backoff:
    min_delay: float
    max_delay: float
    max_attempts: int
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        """Count one more attempt and return its delay."""
        if self.exhausted:
            raise BackoffExhausted(f"max reconnect attempts ({self.max_attempts}) reached")
        self.attempts += 1
        return backoff_delay(self.attempts, self.min_delay, self.max_delay)

    def reset(self) -> None:
        self.attempts = 0
