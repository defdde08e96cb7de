"""Bounded retry combinator for write-lock contention.

Replaces catch-and-loop retry code with one function that runs an
operation under a RetryPolicy and returns a result saying whether it
succeeded, how many attempts it took and how long it waited. Only
``BusyError`` is retried; every other exception propagates immediately.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from migration_engine.domain.exceptions import BusyError
from migration_engine.domain.value_objects import RetryPolicy

T = TypeVar("T")

BusyCallback = Callable[[int, float, BusyError], None]
"""Called before each backoff wait with (failed attempt, upcoming delay, error)."""


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Outcome of ``retry_on_busy``.

    Attributes:
        value: Return value of the operation when it succeeded.
        attempts: Number of attempts made.
        waited: Cumulative backoff wait in seconds.
        last_error: The last BusyError when the policy was exhausted.
    """

    value: T | None
    attempts: int
    waited: float
    last_error: BusyError | None = None

    @property
    def succeeded(self) -> bool:
        return self.last_error is None


def retry_on_busy(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_busy: BusyCallback | None = None,
) -> RetryResult[T]:
    """Run ``operation`` until it stops raising BusyError or the policy runs out.

    Args:
        operation: Zero-argument callable; raises BusyError on contention.
        policy: Attempts, backoff and total-wait bound.
        sleep: Blocking wait used between attempts.
        on_busy: Optional hook invoked before each wait.

    Returns:
        A RetryResult; ``succeeded`` is False when the policy was exhausted.
    """
    waited = 0.0
    attempt = 0
    last_error: BusyError | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = operation()
        except BusyError as exc:
            last_error = exc
        else:
            return RetryResult(value=value, attempts=attempt, waited=waited)

        if attempt == policy.max_attempts:
            break
        delay = policy.delay_before(attempt + 1)
        if waited + delay > policy.max_total_wait:
            break
        if on_busy is not None:
            on_busy(attempt, delay, last_error)
        sleep(delay)
        waited += delay

    return RetryResult(value=None, attempts=attempt, waited=waited, last_error=last_error)
