"""
Retry with exponential backoff for remote fetches.

Only idempotent requests (the snapshot GET) are retried; writes are sent
exactly once because the endpoint upserts by row and a replay could create a
duplicate. Delays use exponential backoff with jitter.

Example:
    >>> @with_retry(max_retries=2, base_delay=0.5)
    ... async def fetch(client: httpx.AsyncClient, url: str) -> httpx.Response:
    ...     response = await client.get(url)
    ...     response.raise_for_status()
    ...     return response

Configuration:
    - Default retries: 2 attempts after the first
    - Default base delay: 1.0 seconds
    - Default multiplier: 2.0x per retry
    - Jitter: Random variance of +-20% added to delay
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds before first retry
        multiplier: Exponential backoff multiplier
        jitter: Whether to add jitter to delays
        jitter_ratio: Random variance ratio for jitter (0.2 = +-20%)
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        jitter: bool = True,
        jitter_ratio: float = 0.2,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.jitter_ratio = jitter_ratio

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-indexed).

        delay = base_delay * multiplier ** attempt, +- jitter.
        """
        delay = self.base_delay * (self.multiplier**attempt)
        if self.jitter:
            variance = delay * self.jitter_ratio
            delay += random.uniform(-variance, variance)
        return max(0.0, delay)


def is_retryable_error(exception: BaseException) -> bool:
    """
    Whether an exception is a transient, retryable HTTP failure.

    Retryable: 5xx responses, timeouts, connection and other request errors.
    Not retryable: 4xx responses and anything that is not an httpx error.
    """
    # HTTPStatusError is also an HTTPError, so check it first
    if isinstance(exception, httpx.HTTPStatusError):
        return 500 <= exception.response.status_code < 600
    if isinstance(exception, (httpx.TimeoutException, httpx.RequestError)):
        return True
    return isinstance(exception, httpx.HTTPError)


def with_retry(
    max_retries: int = 2,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    jitter: bool = True,
    jitter_ratio: float = 0.2,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator adding retry with exponential backoff to a coroutine function.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        multiplier: Exponential backoff multiplier
        jitter: Whether to add jitter to delays
        jitter_ratio: Random variance ratio for jitter

    Returns:
        Decorator wrapping the coroutine function with retry logic
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        multiplier=multiplier,
        jitter=jitter,
        jitter_ratio=jitter_ratio,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            func_name = getattr(func, "__name__", repr(func))
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_error(e):
                        logger.debug("%s: non-retryable error on attempt %d: %s", func_name, attempt + 1, e)
                        raise
                    if attempt >= config.max_retries:
                        logger.warning("%s: max retries (%d) exceeded: %s", func_name, config.max_retries, e)
                        raise
                    delay = config.calculate_delay(attempt)
                    logger.info(
                        "%s: retry %d/%d after %.2fs due to: %s",
                        func_name,
                        attempt + 1,
                        config.max_retries,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator


__all__ = ["RetryConfig", "is_retryable_error", "with_retry"]
