"""Retry helpers using tenacity for transient store and network faults."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    Wait formula: min(initial * 2^n + random(0, jitter), max)

    Attributes:
        max_attempts: Total attempts including the first
        initial_wait: First backoff in seconds
        max_wait: Upper bound for a single backoff
        jitter: Random extra wait to avoid synchronized retries
        retryable_exceptions: Only these exception types are retried
    """

    max_attempts: int = 3
    initial_wait: float = 1.0
    max_wait: float = 10.0
    jitter: float = 0.5
    retryable_exceptions: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError)


def _log_retry(name: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"Retry attempt {state.attempt_number + 1}/{policy.max_attempts} for {name}: {error}"
        )

    return before_sleep


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    name: str | None = None,
) -> T:
    """Run an async operation, retrying retryable failures.

    The last exception is re-raised unchanged once attempts are exhausted;
    non-retryable exceptions propagate immediately.
    """
    label = name or getattr(operation, "__name__", "operation")
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential_jitter(
            initial=policy.initial_wait,
            max=policy.max_wait,
            jitter=policy.jitter,
        ),
        retry=retry_if_exception_type(policy.retryable_exceptions),
        before_sleep=_log_retry(label, policy),
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise RuntimeError("No attempts made")
