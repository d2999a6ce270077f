"""Bounded retry with linear backoff for async operations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY_MS = 1000


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Call ``operation`` up to ``max_retries`` times.

    The delay before attempt k (k >= 2) is ``base_delay_ms * (k - 1)``.
    No jitter, and no distinction between transient and permanent errors:
    every ``Exception`` is retried. The last error is re-raised once the
    attempts are exhausted.

    ``operation`` may run more than once, so it must reset any partial state
    left behind by a failed attempt.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {max_retries}")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries:
                logger.warning("%s failed after %d attempt(s): %s", label, attempt, exc)
                raise
            delay_ms = base_delay_ms * attempt
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %dms: %s",
                label, attempt, max_retries, delay_ms, exc,
            )
            await sleep(delay_ms / 1000)
