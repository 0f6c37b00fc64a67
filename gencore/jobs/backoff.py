"""Exponential backoff for provider rate limits.

The queue itself never delays a retry. Handlers that talk to a rate-limited
provider wrap their submit calls with ``retry_operation`` instead.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from gencore.errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fn(attempt_number, delay_seconds, error)
RetryCallback = Callable[[int, float, BaseException], None]


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for RateLimitError and for any error carrying an HTTP 429 status."""
    return classify_error(exc) == ErrorKind.RATE_LIMIT


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 2.0,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying only rate-limit errors.

    Makes at most ``max_retries`` attempts, sleeping ``base_delay * 2**n``
    between them. Any other error is raised immediately.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limit_error(exc) or attempt >= max_retries - 1:
                raise
            delay = base_delay * (2 ** attempt)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            else:
                logger.warning(
                    f"[retry] Rate limit hit, retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{max_retries})"
                )
            await sleep(delay)


def with_retry(max_retries: int = 3, base_delay: float = 2.0):
    """Decorator form of ``retry_operation`` for coroutine functions."""

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_operation(
                lambda: fn(*args, **kwargs),
                max_retries=max_retries,
                base_delay=base_delay,
            )

        return wrapper

    return decorator
