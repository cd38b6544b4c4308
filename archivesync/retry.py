"""
Retry logic and backoff policies for handling transient failures.

Provides a decorator for retrying calls to the remote catalog source and
pluggable backoff policies used when draining partially accepted batch
writes against the ledger.
"""

import time
import random
import functools
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=3, base_delay=1.0)
        def fetch_archives(url):
            return requests.get(url)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    # Don't sleep after the last attempt
                    if attempt < max_retries:
                        current_delay = min(delay, max_delay)

                        if on_retry:
                            on_retry(attempt + 1, e, current_delay)

                        time.sleep(current_delay)
                        delay *= exponential_base
                    else:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

            raise RetryError(
                f"Unexpected retry exhaustion: {str(last_exception)}"
            ) from last_exception

        return wrapper
    return decorator


class BackoffPolicy:
    """Computes the pause before a given retry attempt (1-based)."""

    def delay(self, attempt: int) -> float:
        raise NotImplementedError


class FixedBackoff(BackoffPolicy):
    """Same pause before every retry."""

    def __init__(self, delay: float = 0.1):
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self._delay = delay

    def delay(self, attempt: int) -> float:
        return self._delay


class ExponentialBackoff(BackoffPolicy):
    """
    Exponentially growing pause, capped at ``max_delay``.

    With ``jitter`` enabled the pause is drawn uniformly from
    ``[0, computed_delay]`` ("full jitter"), which spreads out concurrent
    writers retrying against the same table.
    """

    def __init__(
        self,
        base_delay: float = 0.1,
        exponential_base: float = 2.0,
        max_delay: float = 5.0,
        jitter: bool = True,
        rng: Optional[random.Random] = None,
    ):
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be non-negative")
        self.base_delay = base_delay
        self.exponential_base = exponential_base
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        computed = min(
            self.base_delay * (self.exponential_base ** max(attempt - 1, 0)),
            self.max_delay,
        )
        if self.jitter:
            return self._rng.uniform(0, computed)
        return computed


BACKOFF_KINDS = ("fixed", "exponential")


def backoff_from_name(name: str, delay: float) -> BackoffPolicy:
    """
    Build a backoff policy from its configuration name.

    Args:
        name: ``fixed`` or ``exponential``
        delay: Fixed pause, or the base pause for exponential growth (seconds)
    """
    name = name.strip().lower()
    if name == "fixed":
        return FixedBackoff(delay)
    if name == "exponential":
        return ExponentialBackoff(base_delay=delay)
    raise ValueError(f"Unknown backoff policy: {name}")


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    # Retry on server errors and rate limiting
    retryable_codes = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    return status_code in retryable_codes
