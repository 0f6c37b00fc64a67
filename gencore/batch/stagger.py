"""Stagger-aware batch dispatcher.

Task k starts no earlier than ``k * stagger_ms`` after the batch starts and
only when one of ``max_concurrent`` slots is free. Providers usually cap
both concurrent requests and requests per minute; a semaphore alone still
allows bursts that trip the second limit.

    max_concurrent=2, stagger_ms=1000, each task takes 5s:
      t=0s  task 0 starts
      t=1s  task 1 starts (ceiling reached)
      t=2s  task 2 offset elapses, waits for a slot
      t=5s  task 0 finishes -> task 2 starts
      t=6s  task 1 finishes -> task 3 starts
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FULFILLED = "fulfilled"
REJECTED = "rejected"


@dataclass
class SettledResult(Generic[T]):
    """Outcome of one batch item, stored at the item's input index."""

    index: int
    status: str
    value: Optional[T] = None
    reason: Optional[BaseException] = None
    started_offset: Optional[float] = None  # seconds after batch start
    finished_offset: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status == FULFILLED


@dataclass
class BatchSummary:
    """Partial-success report for a finished batch."""

    total: int
    succeeded: int
    failed: int
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"{self.succeeded} of {self.total} succeeded"


async def run_staggered(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    max_concurrent: int,
    stagger_ms: float = 5000,
) -> List[SettledResult[T]]:
    """Run zero-argument coroutine functions with a concurrency cap and start cadence.

    Never fails fast: every task's value or exception is captured, and the
    returned list is in input order regardless of completion order.
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
    if not tasks:
        return []

    loop = asyncio.get_running_loop()
    semaphore = asyncio.Semaphore(max_concurrent)
    stagger_seconds = max(0.0, stagger_ms) / 1000.0
    batch_start = loop.time()
    results: List[Optional[SettledResult[T]]] = [None] * len(tasks)

    async def run_one(idx: int, task: Callable[[], Awaitable[T]]) -> None:
        # Time gate first: offset from batch start, independent of other tasks
        delay = batch_start + idx * stagger_seconds - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)

        async with semaphore:
            started = loop.time() - batch_start
            try:
                value = await task()
            except (Exception, asyncio.CancelledError) as exc:
                results[idx] = SettledResult(
                    index=idx,
                    status=REJECTED,
                    reason=exc,
                    started_offset=started,
                    finished_offset=loop.time() - batch_start,
                )
                logger.warning(f"[run_staggered] Task {idx} failed: {type(exc).__name__}: {exc}")
                # A cancelled item is recorded; only a cancelled batch propagates
                current = asyncio.current_task()
                if isinstance(exc, asyncio.CancelledError) and current is not None and current.cancelling():
                    raise
            else:
                results[idx] = SettledResult(
                    index=idx,
                    status=FULFILLED,
                    value=value,
                    started_offset=started,
                    finished_offset=loop.time() - batch_start,
                )

    logger.info(
        f"[run_staggered] Starting {len(tasks)} task(s), "
        f"max_concurrent={max_concurrent}, stagger={stagger_ms}ms"
    )
    await asyncio.gather(*(run_one(idx, task) for idx, task in enumerate(tasks)))

    settled = [r for r in results if r is not None]
    summary = summarize(settled)
    logger.info(f"[run_staggered] Batch finished: {summary.message}")
    return settled


def summarize(results: Sequence[SettledResult[Any]]) -> BatchSummary:
    """Count successes and collect per-item error messages."""
    errors = [
        f"#{r.index}: {type(r.reason).__name__}: {r.reason}"
        for r in results
        if not r.ok
    ]
    succeeded = sum(1 for r in results if r.ok)
    return BatchSummary(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        errors=errors,
    )
