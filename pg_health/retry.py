"""Retry policy for single-host operations."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import psycopg2

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Network-level failures: the server may answer on the next attempt.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    ConnectionError,
    TimeoutError,
)

# Query-semantic failures: retrying returns the same answer.
SEMANTIC_ERRORS: tuple[type[BaseException], ...] = (
    psycopg2.ProgrammingError,
    psycopg2.NotSupportedError,
    psycopg2.DataError,
    psycopg2.IntegrityError,
)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, SEMANTIC_ERRORS):
        return False
    return isinstance(exc, TRANSIENT_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, how long to wait, and which errors deserve another try.

    Delay before attempt n+1 is ``initial_delay * multiplier ** (n - 1)``,
    capped at ``max_delay``; ``jitter`` adds up to that fraction of random
    extra wait.
    """

    max_attempts: int = 3
    initial_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 2.0
    jitter: float = 0.0
    retryable: Callable[[BaseException], bool] = field(default=is_transient, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts should be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.multiplier < 1.0:
            raise ValueError("multiplier should be at least 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter should be in the range [0, 1]")

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * (rng or random).random()
        return delay

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> T:
    """Run operation, retrying transient failures according to policy.

    Non-retryable errors propagate immediately. When attempts run out the
    last error propagates.

    Args:
        operation: Zero-argument callable; must be idempotent.
        policy: Retry policy (default RetryPolicy()).
        description: Used in log messages (e.g. "unused_indexes on db1:5432").
        sleep: Injected for tests.
        should_stop: Checked before every retry; when it returns True the
            last error is raised without further attempts.
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if not policy.retryable(exc):
                raise
            if attempt >= policy.max_attempts or (should_stop is not None and should_stop()):
                logger.warning(
                    "%s failed after %d attempt(s): %s", description, attempt, exc
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
