"""Sequential rate-limiting helpers for batch operations."""

import asyncio
import functools
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchProgress:
    current: int
    total: int
    message: str = ""


async def rate_limited_batch(
    items: Sequence[T],
    operation: Callable[[T, int], Awaitable[R]],
    delay: float = 3.0,
    delay_first: bool = False,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
) -> List[R]:
    """Run ``operation`` over items one at a time with a fixed gap between them.

    Unlike ``run_staggered`` this stops at the first exception.
    """
    results: List[R] = []
    for idx, item in enumerate(items):
        if delay_first or idx > 0:
            await asyncio.sleep(delay)

        results.append(await operation(item, idx))

        if on_progress is not None:
            on_progress(
                BatchProgress(
                    current=idx + 1,
                    total=len(items),
                    message=f"Processing {idx + 1} of {len(items)}",
                )
            )
    return results


async def batch_process(
    items: Sequence[T],
    operation: Callable[[T, int], Awaitable[R]],
    batch_size: int = 1,
    batch_delay: float = 1.5,
    item_delay: float = 0.0,
    on_batch_progress: Optional[Callable[[int, int], None]] = None,
    on_item_progress: Optional[Callable[[BatchProgress], None]] = None,
) -> List[R]:
    """Process items in fixed-size batches with a pause between batches.

    Within a batch items run together, or one at a time ``item_delay``
    seconds apart when that is set. Stops at the first exception.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    total = len(items)
    total_batches = (total + batch_size - 1) // batch_size
    results: List[R] = []

    for batch_index in range(total_batches):
        if batch_index > 0:
            await asyncio.sleep(batch_delay)
        if on_batch_progress is not None:
            on_batch_progress(batch_index + 1, total_batches)

        start = batch_index * batch_size
        end = min(start + batch_size, total)

        if item_delay > 0:
            for idx in range(start, end):
                if idx > start:
                    await asyncio.sleep(item_delay)
                results.append(await operation(items[idx], idx))
                if on_item_progress is not None:
                    on_item_progress(BatchProgress(current=idx + 1, total=total))
        else:
            results.extend(await asyncio.gather(*(operation(items[idx], idx) for idx in range(start, end))))
            if on_item_progress is not None:
                on_item_progress(BatchProgress(current=end, total=total))

    return results


def rate_limited(min_delay: float = 3.0, clock: Callable[[], float] = time.monotonic):
    """Decorator enforcing at least ``min_delay`` seconds between call starts."""

    def decorator(fn: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        last_call: List[Optional[float]] = [None]
        lock = asyncio.Lock()

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> R:
            async with lock:
                if last_call[0] is not None:
                    wait = min_delay - (clock() - last_call[0])
                    if wait > 0:
                        await asyncio.sleep(wait)
                last_call[0] = clock()
            return await fn(*args, **kwargs)

        return wrapper

    return decorator
