"""Retry logic with exponential backoff for transient failures.

Used for idempotent control-plane reads and for webhook posts. The capacity
change itself is never retried; recovery there is left to the operator.

Usage:
    @retry_with_exponential_backoff(max_attempts=3)
    def read_database():
        return client.get(...)
"""

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

from azsqlscale.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Substrings in az CLI stderr that indicate a retryable service condition
TRANSIENT_AZ_MARKERS = (
    "TooManyRequests",
    "throttl",
    "ServiceUnavailable",
    "InternalServerError",
    "GatewayTimeout",
    "BadGateway",
    "timed out",
    "Connection aborted",
    "ConnectionResetError",
)


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (TimeoutError, ConnectionError),
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[F], F]:
    """Decorator for retrying operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        initial_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        jitter: Add +/-25% random jitter to delays (default: True)
        retryable_exceptions: Exception types that may be retried
        should_retry: Optional predicate to veto a retry for a caught exception
        sleep: Sleep function (default: time.sleep, looked up at call time)

    Returns:
        Decorated function that retries on transient failures
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 1:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt}/{max_attempts}"
                        )
                    return result

                except retryable_exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise

                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: "
                            f"{LogSanitizer.sanitize(str(e))}"
                        )
                        raise

                    actual_delay = delay
                    if jitter:
                        jitter_amount = delay * 0.25
                        actual_delay = delay + random.uniform(-jitter_amount, jitter_amount)
                    actual_delay = min(actual_delay, max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt}/{max_attempts}, "
                        f"retrying in {actual_delay:.2f}s: {LogSanitizer.sanitize(str(e))}"
                    )
                    (sleep or time.sleep)(actual_delay)
                    delay *= 2

            raise RuntimeError(f"{func.__name__} failed with unknown error")

        return wrapper  # type: ignore

    return decorator


def is_transient_az_error(stderr: str | None) -> bool:
    """Classify az CLI stderr as transient (worth retrying) or not.

    Not-found, authorization and validation errors are permanent.
    """
    if not stderr:
        return False
    lowered = stderr.lower()
    return any(marker.lower() in lowered for marker in TRANSIENT_AZ_MARKERS)


def should_retry_http_error(status_code: int) -> bool:
    """Determine if HTTP status code should trigger retry.

    Retryable: 408 Request Timeout, 429 Too Many Requests, 500, 502, 503, 504.
    """
    return status_code in {408, 429, 500, 502, 503, 504}


__all__ = [
    "TRANSIENT_AZ_MARKERS",
    "is_transient_az_error",
    "retry_with_exponential_backoff",
    "should_retry_http_error",
]
