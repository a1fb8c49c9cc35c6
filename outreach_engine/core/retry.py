"""Exponential backoff for calls to unreliable services."""

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float = 0.3,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number `attempt` (0-based): capped doubling plus up to `jitter` extra."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + delay * jitter * rand()


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.3,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call `fn` until it succeeds, retrying only errors `is_retryable` accepts.

    Non-retryable errors, and the last error once the budget is spent, propagate.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= max_retries or not is_retryable(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            log.warning("retrying_after_error", attempt=attempt + 1, delay=round(delay, 2), error=str(e))
            await sleep(delay)
            attempt += 1
