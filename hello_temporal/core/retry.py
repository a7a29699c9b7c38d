"""
hello_temporal.core.retry
───────────────────────────
Retry/backoff policy with jitter for startup calls such as connecting to the
Temporal server. Backed by Tenacity. Configuration errors are never retried;
after the last attempt the original exception propagates unchanged.

Usage:
    @retry_policy(max_attempts=3)
    async def connect():
        ...
"""
from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from hello_temporal.core.errors import ConfigurationError
from hello_temporal.core.logging import get_logger

log = get_logger(__name__)

_NON_RETRYABLE: tuple[Type[BaseException], ...] = (ConfigurationError,)


def _is_retryable(exc: BaseException) -> bool:
    """Return True if the exception should be retried."""
    return not isinstance(exc, _NON_RETRYABLE)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "retry.scheduled",
        fn=getattr(state.fn, "__qualname__", None),
        attempt=state.attempt_number,
        error=str(exc) if exc else None,
    )


def retry_policy(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    jitter: float = 1.0,
    on: list[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter to an async function.

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
        on:           Specific exception types to retry on. If None, retries
                      everything except configuration errors.
    """
    def decorator(fn: Callable) -> Callable:

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if on:
                retry_on = retry_if_exception_type(tuple(on)) & retry_if_exception(_is_retryable)
            else:
                retry_on = retry_if_exception(_is_retryable)

            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(min=min_wait, max=max_wait) + wait_random(0, jitter),
                retry=retry_on,
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    return await fn(*args, **kwargs)

        return wrapper
    return decorator


__all__ = ["retry_policy"]
