from __future__ import annotations

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from atsync.exceptions import XrpcError

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500


def is_retryable_error(exception: BaseException) -> bool:
    """Return ``True`` for failures worth retrying.

    Retries on:
    - 429 and 5xx responses (raw ``httpx`` or wrapped in :class:`XrpcError`)
    - Connection errors and timeouts
    """
    if isinstance(exception, XrpcError):
        return exception.is_transient
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == HTTP_TOO_MANY_REQUESTS or status >= HTTP_SERVER_ERROR
    return isinstance(exception, (httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError))


def get_async_retrying(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
    multiplier: float = 1.0,
) -> AsyncRetrying:
    """Get a tenacity ``AsyncRetrying`` object configured for XRPC calls.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        multiplier: Exponential backoff multiplier

    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )


__all__ = ["get_async_retrying", "is_retryable_error"]
