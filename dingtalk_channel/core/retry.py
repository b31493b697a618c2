"""Retry with exponential backoff for transient provider failures."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dingtalk_channel.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("retry")


class RetryableError(Exception):
    """Base exception for errors that should trigger retries."""

    pass


class TransientError(RetryableError):
    """Transient error that may succeed on retry."""

    pass


class RateLimitError(RetryableError):
    """Rate limit exceeded, should retry with backoff."""

    pass


RETRYABLE: tuple[Type[Exception], ...] = (TransientError, RateLimitError, asyncio.TimeoutError)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
    retryable_exceptions: tuple[Type[Exception], ...] = RETRYABLE,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` until it succeeds or ``max_attempts`` calls have failed.

    Args:
        func: Async callable to run
        max_attempts: Total calls, the first one included
        min_wait: Lower bound of the exponential wait (seconds)
        max_wait: Upper bound of the exponential wait (seconds)
        retryable_exceptions: Exceptions that lead to another attempt

    Raises:
        The last retryable exception once attempts run out. Anything else
        propagates on the first occurrence.
    """
    name = getattr(func, "__name__", repr(func))

    def _log_retry(state: RetryCallState) -> None:
        err = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry_scheduled",
            func=name,
            attempt=state.attempt_number,
            max_attempts=max_attempts,
            wait_s=state.next_action.sleep if state.next_action else None,
            error=str(err),
            error_type=type(err).__name__,
            status_code=getattr(err, "status_code", None),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
    result = await retrying(func, *args, **kwargs)
    attempts = retrying.statistics.get("attempt_number", 1)
    if attempts > 1:
        log.info("retry_succeeded", func=name, attempts=attempts)
    return result
