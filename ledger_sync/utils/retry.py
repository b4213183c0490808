"""Retry utilities for transient store failures.

Store calls are retried with exponential backoff when the failure looks
transient: a transport-level error, HTTP 429, or a 5xx response. Client
errors such as a 400 validation failure from the ledger API are raised on
the first attempt, since repeating them cannot succeed.

Example:
    >>> from ledger_sync.utils.retry import async_retry
    >>>
    >>> @async_retry(max_attempts=3, backoff_factor=2.0)
    ... async def query_database(database_id: str) -> dict:
    ...     response = await pool.post(f"/databases/{database_id}/query")
    ...     return response.json()

Backoff Formula:
    delay = backoff_factor ** attempt_number
    For backoff_factor=2.0: 2s, 4s, 8s, ...
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
import structlog

from ledger_sync.exceptions import ExternalServiceError

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (httpx.TransportError, ExternalServiceError)


def is_transient(error: Exception) -> bool:
    """Decide whether an error is worth another attempt.

    Transport errors always are. ExternalServiceError is retried only without
    a status code (no response) or for 429 and 5xx responses.
    """
    if isinstance(error, ExternalServiceError):
        status = error.status_code
        return status is None or status == 429 or status >= 500
    return True


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
    retry_if: Callable[[Exception], bool] = is_transient,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of calls before giving up (original
            attempt included).
        backoff_factor: Base of the exponential delay; the wait before
            attempt N+1 is ``backoff_factor ** N`` seconds.
        exceptions: Exception types that are candidates for a retry. Other
            exceptions propagate immediately.
        retry_if: Predicate applied to a caught candidate; returning False
            re-raises it without retrying.

    Raises:
        The last caught exception once attempts are exhausted, or the first
        one ``retry_if`` rejects.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if not retry_if(e):
                        raise
                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor**attempt
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator
