"""Retry helpers with exponential backoff.

Delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``, so the
default schedule is 1s, 2s, 4s...
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from subdrop.core.errors import RETRYABLE_ERRORS

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay to wait after the given 1-based failed attempt."""
    return base_delay * (2 ** (attempt - 1))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[Exception], ...] = RETRYABLE_ERRORS,
    sleep: Sleep = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Run an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first one
        base_delay: Backoff base in seconds
        retry_on: Exception types that trigger another attempt
        sleep: Awaitable sleep, injectable for tests
        description: Name used in log messages

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted, or any non-retryable
        exception immediately.
    """
    max_attempts = max(1, max_attempts)
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == max_attempts:
                if max_attempts > 1:
                    logger.error(f"Max attempts ({max_attempts}) exceeded for {description}: {e}")
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"Retry {attempt}/{max_attempts} for {description} in {delay:.1f}s: {e}"
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
