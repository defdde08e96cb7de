"""Retry policy for write-lock contention.

There is deliberately no default policy: how long a caller is willing to
wait for the store's write lock depends entirely on the caller, so every
value must be supplied explicitly (in code or through configuration).

Backoff schedule for ``base_delay=b`` and ``multiplier=m``:

    attempt:   1     2     3       4        ...
    wait:      -     b     b*m     b*m^2    ...

The schedule stops early when the next wait would push the cumulative wait
past ``max_total_wait``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Wait in seconds before the second attempt.
        multiplier: Factor applied to the wait after every further attempt.
        max_total_wait: Upper bound in seconds on the cumulative wait.
    """

    max_attempts: int
    base_delay: float
    multiplier: float
    max_total_wait: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if self.max_total_wait < 0:
            raise ValueError(f"max_total_wait must be >= 0, got {self.max_total_wait}")

    def delay_before(self, attempt: int) -> float:
        """Return the wait preceding ``attempt`` (1-based); zero for the first."""
        if attempt <= 1:
            return 0.0
        return self.base_delay * self.multiplier ** (attempt - 2)

    def schedule(self) -> Iterator[float]:
        """Yield the waits between attempts, honoring ``max_total_wait``."""
        total = 0.0
        for attempt in range(2, self.max_attempts + 1):
            delay = self.delay_before(attempt)
            if total + delay > self.max_total_wait:
                return
            total += delay
            yield delay
