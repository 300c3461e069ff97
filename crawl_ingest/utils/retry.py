"""
Bounded retry with exponential backoff for transient warehouse failures.
Used for row inserts, which may hit rate limits (429) or 5xx responses.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from crawl_ingest.utils import logger

log = logger.create_logger("Retry")

T = TypeVar("T")


def _status_of(error: BaseException) -> int | None:
    """Return the HTTP status carried by *error*, if any.

    ``google.api_core`` exceptions expose it as ``code``; other clients
    use ``status`` or ``status_code``.
    """
    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    """Check if the error is a rate limit (429) error.

    The message is only inspected when the error carries no status.
    """
    status = _status_of(error)
    if status is not None:
        return status == 429
    err_str = str(error).lower()
    return "429" in err_str or "rate limit" in err_str


def is_retryable_error(error: BaseException) -> bool:
    """Check if the error is transient (rate limit, server error, connection)."""
    if is_rate_limit_error(error):
        return True
    status = _status_of(error)
    if status is not None and 500 <= status < 600:
        return True
    return isinstance(error, (ConnectionError, TimeoutError))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay_ms: int = 500,
    max_delay_ms: int = 10000,
    backoff_multiplier: float = 2.0,
    context: str | None = None,
) -> T:
    """
    Execute an async function, retrying transient failures a bounded
    number of times with exponential backoff and jitter.

    Non-retryable errors, and the last error once retries run out, are
    re-raised unchanged.
    """
    delay = initial_delay_ms
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as error:
            if not is_retryable_error(error):
                raise
            if attempt >= max_retries:
                log.warn(
                    "All retry attempts exhausted",
                    {"context": context, "attempts": attempt + 1, "error": str(error)},
                )
                raise

            jitter = delay * 0.2 * (random.random() * 2 - 1)
            delay_with_jitter = min(round(delay + jitter), max_delay_ms)
            log.warn(
                "Retrying after transient error",
                {
                    "context": context,
                    "attempt": attempt + 1,
                    "maxRetries": max_retries,
                    "delayMs": delay_with_jitter,
                    "isRateLimit": is_rate_limit_error(error),
                    "error": str(error)[:100],
                },
            )
            await asyncio.sleep(delay_with_jitter / 1000)
            delay = min(int(delay * backoff_multiplier), max_delay_ms)
            attempt += 1
