"""Bounded retry with exponential backoff and jitter for provider calls.

Attempts are driven by :mod:`tenacity`.  Only a small set of transient HTTP
statuses is retried.  Everything else (content policy rejections, auth
failures, malformed requests) propagates on the first failure so the
classifier can report it immediately.

Usage
-----
::

    from nanogen.core.retry import with_retry

    payload = await with_retry(lambda: provider.invoke(...), max_attempts=3, initial_delay=0.6)
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({408, 429, 502, 503})


class MaxRetriesReachedError(RuntimeError):
    """Raised when a retry policy allows no attempt at all."""

    def __init__(self) -> None:
        super().__init__("Max retries reached")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration applied uniformly to every generation task.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay: Delay before the second attempt, in seconds.
        backoff_multiplier: Growth factor between consecutive delays.
        jitter_fraction: Upper bound of the random extra delay, as a fraction
            of the base delay.
    """

    max_attempts: int = 3
    initial_delay: float = 0.6
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.2


def is_retryable_status(status: int | None) -> bool:
    """Return ``True`` for the transient statuses worth another attempt."""
    return status in RETRYABLE_STATUSES


def extract_status(error: Any) -> int | None:
    """Pull a numeric HTTP status out of a failure object.

    Checks the error's own ``status`` first, then a nested ``response``
    object (``status`` or ``status_code``, matching both SDK error shapes and
    ``httpx`` responses).

    Args:
        error: Any exception or error-like object.

    Returns:
        The status as an ``int``, or ``None`` when none is present.
    """
    status = getattr(error, "status", None)
    if not isinstance(status, int) or isinstance(status, bool):
        response = getattr(error, "response", None)
        status = getattr(response, "status", None)
        if not isinstance(status, int) or isinstance(status, bool):
            status = getattr(response, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


def backoff_delay(
    attempt: int,
    initial_delay: float,
    jitter: float,
    *,
    multiplier: float = 2.0,
    jitter_fraction: float = 0.2,
) -> float:
    """Compute the wait before the next attempt.

    Args:
        attempt: Number of failed attempts so far (1 for the first failure).
        initial_delay: Base delay in seconds.
        jitter: Random sample in ``[0, 1)`` scaling the jitter component.

    Returns:
        ``initial_delay * multiplier**(attempt - 1)`` plus up to
        ``jitter_fraction`` of that value.
    """
    delay = initial_delay * multiplier ** (attempt - 1)
    return delay + delay * jitter_fraction * jitter


def _is_retryable_failure(error: BaseException) -> bool:
    return isinstance(error, Exception) and is_retryable_status(extract_status(error))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 0.6,
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    Built on :class:`tenacity.AsyncRetrying`.  The wait between attempts is
    a cooperative ``sleep``, so other tasks on the event loop keep running
    and cancelling the calling task aborts the wait immediately.

    Args:
        operation: Zero-argument coroutine factory.  Called once per attempt.
        max_attempts: Total attempts, ignored when ``policy`` is given.
        initial_delay: First delay in seconds, ignored when ``policy`` is given.
        policy: Optional full retry policy.
        sleep: Awaitable sleep function (injectable for tests).
        rng: Jitter source returning floats in ``[0, 1)``.

    Returns:
        The operation's result.

    Raises:
        Exception: The last failure, once attempts are exhausted or the
            failure status is not retryable.
        MaxRetriesReachedError: If the policy allows no attempt at all.
    """
    if policy is None:
        policy = RetryPolicy(max_attempts=max_attempts, initial_delay=initial_delay)
    if policy.max_attempts < 1:
        raise MaxRetriesReachedError()

    def wait(retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number,
            policy.initial_delay,
            rng(),
            multiplier=policy.backoff_multiplier,
            jitter_fraction=policy.jitter_fraction,
        )

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Attempt %d/%d failed with status %s; retrying in %.2fs.",
            retry_state.attempt_number,
            policy.max_attempts,
            extract_status(retry_state.outcome.exception()),
            retry_state.next_action.sleep,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        retry=retry_if_exception(_is_retryable_failure),
        wait=wait,
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()

    raise MaxRetriesReachedError()
