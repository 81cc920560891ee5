"""Exponential backoff for transient warehouse failures."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from .errors import QualyticsError

T = TypeVar("T")


def backoff_delay(attempt: int, *, initial_delay: float, max_delay: float, multiplier: float) -> float:
    return min(initial_delay * multiplier ** (attempt - 1), max_delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    multiplier: float = 2.0,
    context: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()``, retrying retryable QualyticsErrors with backoff.

    Anything that is not a retryable QualyticsError propagates on the first
    failure; the last failure propagates once attempts run out.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    attempt = 1
    while True:
        try:
            result = await fn()
        except QualyticsError as exc:
            if not exc.retryable:
                raise
            if attempt >= max_attempts:
                logger.error("All {} attempts failed ({}): {}", max_attempts, context, exc.message)
                raise
            delay = backoff_delay(attempt, initial_delay=initial_delay, max_delay=max_delay, multiplier=multiplier)
            logger.warning(
                "Attempt {}/{} failed ({}), retrying in {:.2f}s: {}",
                attempt, max_attempts, context, delay, exc.message,
            )
            await sleep(delay)
            attempt += 1
            continue
        if attempt > 1:
            logger.info("Retry succeeded on attempt {} ({})", attempt, context)
        return result


__all__ = ["backoff_delay", "retry_with_backoff"]
