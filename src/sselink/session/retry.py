"""Exponential backoff between reconnect attempts."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Delay schedule: ``min(base_delay * backoff_factor ** n, max_delay)`` seconds."""

    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_retries: int = 3
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be >= 1, got {self.backoff_factor}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")

    def delay(self, retry_count: int) -> float:
        """Seconds to wait before the attempt following ``retry_count`` retries."""
        if retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {retry_count}")
        try:
            raw = self.base_delay * self.backoff_factor ** retry_count
        except OverflowError:
            return self.max_delay
        return min(raw, self.max_delay)

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries
