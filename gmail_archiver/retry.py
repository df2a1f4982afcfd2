"""Tenacity retry wrapper driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def is_transient_http_error(exc: BaseException) -> bool:
    """True for transport failures and throttling / server-side HTTP errors."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return False


def with_retry(
    config: RetryConfig,
    *,
    predicate: Callable[[BaseException], bool] = is_transient_http_error,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Only exceptions for which *predicate* returns True are retried; the
    last exception is re-raised once attempts are exhausted.

    Usage::

        @with_retry(config.retry)
        async def fetch() -> httpx.Response: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception(predicate),
        reraise=True,
    )
