"""Failed-registration bookkeeping and exponential backoff.

Example:
    >>> tracker = RetryTracker(max_retries=5, base_delay_ms=100)
    >>> tracker.record_failure("svc")
    1
    >>> tracker.backoff_delay_ms(tracker.attempts("svc"))
    200.0
"""

from __future__ import annotations

import random


class RetryTracker:
    """Counts failed registration attempts per instance key.

    Attempt counts stay within ``[0, max_retries]``. Once a key reaches
    ``max_retries`` it is exhausted; the engine then drops the instance
    and calls ``clear()`` for it.

    Attributes:
        max_retries: Retry ceiling.
        base_delay_ms: Delay unit doubled per attempt.
        max_delay_ms: Optional cap on a single delay.
        jitter: Add up to 10% random jitter to delays.
    """

    DEFAULT_MAX_RETRIES = 5

    DEFAULT_BASE_DELAY_MS = 100

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int | None = None,
        jitter: bool = False,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._attempts: dict[str, int] = {}

    def record_failure(self, key: str) -> int:
        """Increment the attempt count for a key.

        Returns:
            The new attempt count (never above max_retries).
        """
        attempts = min(self._attempts.get(key, 0) + 1, self.max_retries)
        self._attempts[key] = attempts
        return attempts

    def attempts(self, key: str) -> int:
        return self._attempts.get(key, 0)

    def is_exhausted(self, key: str) -> bool:
        return self._attempts.get(key, 0) >= self.max_retries

    def clear(self, key: str) -> None:
        self._attempts.pop(key, None)

    def reset(self) -> None:
        self._attempts.clear()

    def backoff_delay_ms(self, attempts: int) -> float:
        """Delay before re-enqueueing after ``attempts`` failures.

        ``base_delay_ms * 2**attempts``, capped at ``max_delay_ms``. Without
        jitter this is non-decreasing in ``attempts``.
        """
        delay = float(self.base_delay_ms * (2 ** max(attempts, 0)))
        if self.max_delay_ms is not None:
            delay = min(delay, float(self.max_delay_ms))
        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * 0.1)
        return delay

    @property
    def retry_count(self) -> int:
        """Sum of outstanding failed attempts across all keys."""
        return sum(self._attempts.values())

    @property
    def tracked(self) -> int:
        """Number of keys with retry state."""
        return len(self._attempts)


__all__ = ["RetryTracker"]
