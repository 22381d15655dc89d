"""Bounded retry with exponential backoff for backend calls.

Only ``TransientBackendError`` is retried. Conflicts and integrity
failures are not transient and propagate on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from ferrocache.core.backend import BackendError, TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(BackendError):
    """All attempts of a backend operation failed with transient errors."""

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between."""

    attempts: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    jitter: bool = True


NO_RETRY = RetryPolicy(attempts=1, base_delay_s=0.0)


def _compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = policy.base_delay_s * (policy.backoff_factor ** attempt)
    if policy.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the policy's attempts run out.

    Raises
    ------
    RetryExhaustedError
        When every attempt raised ``TransientBackendError``.
    """
    last_error: Exception | None = None
    for attempt in range(policy.attempts):
        try:
            return fn()
        except TransientBackendError as exc:
            last_error = exc
            if attempt + 1 >= policy.attempts:
                break
            delay = _compute_delay(policy, attempt)
            logger.info(
                "%s: transient error (%s), retry %d/%d in %.1fs",
                operation,
                exc,
                attempt + 1,
                policy.attempts - 1,
                delay,
            )
            sleep(delay)

    assert last_error is not None
    raise RetryExhaustedError(operation, policy.attempts, last_error)
