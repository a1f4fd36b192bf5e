"""Retry logic utilities for secondary store calls.

Uses exponential backoff with jitter. Delays are kept short: mirror calls run
inside a scanner tick or an API write and must not stall either for long.
"""

import logging
import random
import time
import functools
from typing import Callable, Any, Tuple, Type, Optional
import requests
from requests.exceptions import Timeout, ConnectionError, HTTPError

logger = logging.getLogger(__name__)


# Default retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.25  # seconds
DEFAULT_MAX_DELAY = 2.0  # seconds
DEFAULT_BACKOFF_FACTOR = 2.0

# Retriable HTTP status codes
RETRIABLE_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}

# Retriable exception types
RETRIABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    Timeout,
    ConnectionError,
    HTTPError,  # Filtered by status code below
)


def exponential_backoff(
    attempt: int, base_delay: float, max_delay: float, backoff_factor: float
) -> float:
    """Calculate exponential backoff with jitter.

    Args:
        attempt: Current retry attempt (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        backoff_factor: Backoff multiplier

    Returns:
        Delay in seconds with jitter added
    """
    delay = min(base_delay * (backoff_factor**attempt), max_delay)

    # Add jitter (+/-25% of delay)
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return max(0, delay + jitter)


def is_retriable_error(
    exception: Exception, status_codes: Optional[set] = None
) -> bool:
    """Determine if an exception is retriable."""
    status_codes = status_codes or RETRIABLE_STATUS_CODES

    if isinstance(exception, HTTPError):
        response = getattr(exception, "response", None)
        return response is not None and response.status_code in status_codes

    return isinstance(exception, (Timeout, ConnectionError))


def retry_with_backoff(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    retriable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    retriable_status_codes: Optional[set] = None,
    sleep: Optional[Callable[[float], None]] = None,
    max_elapsed: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
):
    """Decorator to retry a function with exponential backoff.

    Only use it on idempotent calls. With ``max_elapsed`` set, no retry is
    started once the next backoff would end past that many seconds from the
    first attempt.

    Example:
        @retry_with_backoff(max_retries=2)
        def delete_row():
            response = requests.delete(url, timeout=5)
            response.raise_for_status()
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            exceptions_to_retry = retriable_exceptions or RETRIABLE_EXCEPTIONS
            started = clock()

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except exceptions_to_retry as e:
                    should_retry = is_retriable_error(e, retriable_status_codes)

                    if attempt >= max_retries or not should_retry:
                        logger.warning(
                            f"{func.__name__} failed after {attempt + 1} attempts: {e}"
                        )
                        raise

                    delay = exponential_backoff(
                        attempt, base_delay, max_delay, backoff_factor
                    )
                    if max_elapsed is not None and clock() - started + delay >= max_elapsed:
                        logger.warning(
                            f"{func.__name__} out of time after {attempt + 1} attempts: {e}"
                        )
                        raise

                    logger.info(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    (sleep or time.sleep)(delay)

        return wrapper

    return decorator


def retry_rest_request(
    http: requests.Session,
    method: str,
    url: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout: float = 5,
    total_timeout: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    **kwargs,
) -> requests.Response:
    """Retry a REST API request with exponential backoff.

    Args:
        http: Session carrying auth headers
        method: HTTP method (GET, POST, PATCH, DELETE)
        url: API endpoint URL
        max_retries: Maximum number of retry attempts
        timeout: Per-attempt timeout in seconds
        total_timeout: Upper bound in seconds for all attempts and backoff
            together; each attempt's timeout is shortened to fit
        **kwargs: Additional arguments for requests (params, json, headers)

    Returns:
        Response object with a 2xx status
    """

    deadline = clock() + total_timeout if total_timeout is not None else None

    @retry_with_backoff(max_retries=max_retries, max_elapsed=total_timeout, clock=clock)
    def make_request():
        attempt_timeout = timeout
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise Timeout(f"No time left for {method} {url}")
            attempt_timeout = min(timeout, remaining)
        response = http.request(method, url, timeout=attempt_timeout, **kwargs)
        response.raise_for_status()
        return response

    return make_request()
