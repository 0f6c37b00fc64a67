"""Adaptive status poller for remote generation tasks.

Polls a provider until the task reaches a terminal state. The timeout starts
at a base value and grows (never shrinks) when the provider reports an
estimated completion time, bounded by a hard ceiling.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from gencore.errors import CancelledError, PollTimeoutError, RemoteFailure, is_terminal
from gencore.polling.models import RemoteStatus, RemoteTaskStatus

logger = logging.getLogger(__name__)

FetchStatus = Callable[[], Awaitable[RemoteTaskStatus]]
# fn(progress_percent, status_label)
PollProgressCallback = Callable[[float, str], None]

DEFAULT_INTERVAL_SECONDS = 3.0
DEFAULT_TIMEOUT_SECONDS = 600.0
MAX_TIMEOUT_SECONDS = 1800.0

# Buffer applied to provider estimates: 2x the estimate plus two minutes
ESTIMATE_MULTIPLIER = 2
ESTIMATE_PADDING_SECONDS = 120.0

_PROGRESS_LOG_EVERY = 10


class TaskPoller:
    """Polls remote tasks until success, failure, timeout or cancellation.

    Holds only configuration; every ``poll`` call keeps its own state, so one
    poller can serve any number of concurrent polls.
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_timeout: float = MAX_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval = interval
        self.timeout = timeout
        self.max_timeout = max_timeout
        self._clock = clock
        self._sleep = sleep

    def extended_timeout(self, current: float, estimated_time_seconds: Optional[float]) -> float:
        """Return the effective timeout after seeing a provider estimate."""
        if not estimated_time_seconds or estimated_time_seconds <= 0:
            return current
        candidate = min(
            estimated_time_seconds * ESTIMATE_MULTIPLIER + ESTIMATE_PADDING_SECONDS,
            self.max_timeout,
        )
        return max(current, candidate)

    async def poll(
        self,
        task_id: str,
        fetch_status: FetchStatus,
        on_progress: Optional[PollProgressCallback] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Poll ``task_id`` until it finishes and return its result reference.

        Raises:
            CancelledError: ``is_cancelled()`` returned True.
            PollTimeoutError: the effective timeout elapsed.
            RemoteFailure: the provider reported ``failed``.

        Any other exception from ``fetch_status`` is treated as transient:
        it is logged and polling continues.
        """
        interval = self.interval if interval is None else interval
        base_timeout = self.timeout if timeout is None else timeout
        effective_timeout = min(base_timeout, self.max_timeout)

        start = self._clock()
        poll_count = 0
        logger.info(f"[TaskPoller] Starting poll for task {task_id}")

        while True:
            poll_count += 1

            if is_cancelled is not None and is_cancelled():
                logger.info(f"[TaskPoller] Task {task_id} cancelled by caller")
                raise CancelledError(f"Task {task_id} cancelled")

            elapsed = self._clock() - start
            if elapsed > effective_timeout:
                logger.error(
                    f"[TaskPoller] Task {task_id} timed out after {elapsed:.0f}s "
                    f"(effective timeout {effective_timeout:.0f}s)"
                )
                raise PollTimeoutError(task_id, elapsed, effective_timeout)

            try:
                status = await fetch_status()
            except Exception as exc:
                if is_terminal(exc):
                    raise
                logger.warning(
                    f"[TaskPoller] Transient error on poll #{poll_count} for task {task_id}, "
                    f"will retry: {type(exc).__name__}: {exc}"
                )
                await self._sleep(interval)
                continue

            if on_progress is not None:
                on_progress(status.progress or 0, status.status.value)

            extended = self.extended_timeout(effective_timeout, status.estimated_time_seconds)
            if extended > effective_timeout:
                effective_timeout = extended
                logger.info(
                    f"[TaskPoller] Extended timeout for task {task_id} to "
                    f"{effective_timeout / 60:.1f} minutes based on provider estimate"
                )

            if status.status == RemoteStatus.SUCCEEDED:
                if on_progress is not None:
                    on_progress(100, status.status.value)
                logger.info(f"[TaskPoller] Task {task_id} succeeded after {poll_count} poll(s)")
                return status.result

            if status.status == RemoteStatus.FAILED:
                message = status.error or "Task failed"
                logger.error(f"[TaskPoller] Task {task_id} failed: {message}")
                raise RemoteFailure(message, task_id=task_id, error_kind=status.error_kind)

            if poll_count % _PROGRESS_LOG_EVERY == 0:
                progress = "unknown" if status.progress is None else f"{status.progress:.0f}%"
                logger.debug(
                    f"[TaskPoller] Task {task_id} still {status.status.value}, "
                    f"progress: {progress}, poll #{poll_count}"
                )

            await self._sleep(interval)

    async def poll_simple(
        self,
        fetch_status: FetchStatus,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Any:
        """Poll without progress reporting or cancellation."""
        return await self.poll("simple", fetch_status, timeout=timeout, interval=interval)
