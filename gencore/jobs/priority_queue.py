"""In-process priority job queue with a live concurrency ceiling.

All scheduling decisions happen synchronously on the event loop thread, so
the ceiling accessor can be read without a lock.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from gencore.errors import CancelledError, ConfigurationError, JobFailedError
from gencore.jobs.dispatcher import JobDispatcher, JobHandler
from gencore.jobs.models import Job, JobSpec, JobStatus, QueueStats
from gencore.storage.job_history import JobHistory

logger = logging.getLogger(__name__)


class PriorityJobQueue(JobDispatcher):
    """Runs jobs through per-category handlers, highest priority first."""

    def __init__(
        self,
        get_max_concurrency: Callable[[], int],
        history: Optional[JobHistory] = None,
    ):
        """
        get_max_concurrency: callable() -> int
            Evaluated at every scheduling decision, so the ceiling can be
            changed while the queue is live.
        history: optional sink that keeps snapshots of settled jobs.
        """
        self._get_max_concurrency = get_max_concurrency
        self._history = history
        self._queue: List[Job] = []
        self._running: Dict[str, Job] = {}
        self._handlers: Dict[str, JobHandler] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._cancelled = False
        self._idle = asyncio.Event()
        self._idle.set()

    def set_handler(self, category: str, handler: JobHandler) -> None:
        self._handlers[category] = handler

    def enqueue(self, spec: JobSpec) -> "asyncio.Future[Any]":
        """Admit a job and return a future for its result.

        Must be called from the event loop thread.
        """
        job = Job.from_spec(spec)
        job._future = asyncio.get_running_loop().create_future()

        if self._cancelled:
            self._settle_failed(job, CancelledError(f"Job {job.id} rejected: queue is cancelled"))
            return job._future

        self._insert(job)
        self._idle.clear()
        self._schedule()
        return job._future

    def get_job(self, job_id: str) -> Optional[Job]:
        running = self._running.get(job_id)
        if running is not None:
            return running
        for job in self._queue:
            if job.id == job_id:
                return job
        return None

    def get_stats(self) -> QueueStats:
        return QueueStats(
            queued=len(self._queue),
            running=len(self._running),
            max_concurrency=self._get_max_concurrency(),
        )

    def is_idle(self) -> bool:
        return not self._queue and not self._running

    async def join(self) -> None:
        """Wait until nothing is queued or running."""
        while not self.is_idle():
            self._idle.clear()
            await self._idle.wait()

    def cancel_all(self) -> int:
        """Fail every queued job with CancelledError. Running jobs finish normally."""
        self._cancelled = True
        pending, self._queue = self._queue, []
        for job in pending:
            self._settle_failed(job, CancelledError(f"Job {job.id} cancelled before it started"))
        if pending:
            logger.info(f"[PriorityJobQueue] Cancelled {len(pending)} queued job(s)")
        self._check_idle()
        return len(pending)

    async def stop(self, timeout: float = 30.0) -> None:
        """Cancel queued jobs and give running ones ``timeout`` seconds to finish.

        Jobs still running after that are cancelled and fail with CancelledError.
        """
        self.cancel_all()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"[PriorityJobQueue] Cancelling {len(pending)} job(s) still running at stop")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def resume(self) -> None:
        """Accept new jobs again after ``cancel_all``."""
        self._cancelled = False
        self._schedule()

    def reschedule(self) -> None:
        """Re-evaluate capacity, e.g. after the concurrency ceiling was raised."""
        self._schedule()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # -- scheduling ---------------------------------------------------------

    def _insert(self, job: Job) -> None:
        """Insert at the tail of the job's priority band."""
        for idx, queued in enumerate(self._queue):
            if queued.priority < job.priority:
                self._queue.insert(idx, job)
                return
        self._queue.append(job)

    def _schedule(self) -> None:
        """Start queued jobs while capacity allows."""
        while not self._cancelled and self._queue:
            if len(self._running) >= self._get_max_concurrency():
                return

            job = self._queue.pop(0)
            handler = self._handlers.get(job.category)
            if handler is None:
                self._settle_failed(
                    job,
                    ConfigurationError(f"No handler registered for job category: {job.category}"),
                )
                continue

            job.status = JobStatus.RUNNING
            job.started_at = datetime.utcnow()
            self._running[job.id] = job
            task = asyncio.create_task(self._run(job, handler), name=f"job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._check_idle()

    async def _run(self, job: Job, handler: JobHandler) -> None:
        try:
            result = await handler(job)
        except asyncio.CancelledError as exc:
            # Never requeued. Only propagate when this task itself was cancelled.
            self._running.pop(job.id, None)
            err = CancelledError(f"Job {job.id} cancelled while running")
            err.__cause__ = exc
            logger.warning(f"[PriorityJobQueue] {err}")
            self._settle_failed(job, err)
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
        except Exception as exc:
            self._running.pop(job.id, None)
            self._handle_failure(job, exc)
        else:
            self._running.pop(job.id, None)
            self._settle_completed(job, result)
        finally:
            self._schedule()

    def _handle_failure(self, job: Job, exc: Exception) -> None:
        if job.retry_count < job.max_retries:
            if self._cancelled:
                err = CancelledError(
                    f"Job {job.id} not retried: queue is cancelled "
                    f"(attempt {job.attempts} failed: {exc})"
                )
                err.__cause__ = exc
                self._settle_failed(job, err)
                return
            job.retry_count += 1
            job.status = JobStatus.QUEUED
            job.error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                f"[PriorityJobQueue] Job {job.id} failed, retrying "
                f"({job.retry_count}/{job.max_retries}): {exc}"
            )
            self._insert(job)
            return

        err = JobFailedError(job.id, job.attempts, exc)
        err.__cause__ = exc
        logger.error(f"[PriorityJobQueue] {err}")
        self._settle_failed(job, err)

    # -- settlement ---------------------------------------------------------

    def _settle_completed(self, job: Job, result: Any) -> None:
        job.status = JobStatus.COMPLETED
        job.error = None
        job.completed_at = datetime.utcnow()
        if job._future is not None and not job._future.done():
            job._future.set_result(result)
        self._record(job)

    def _settle_failed(self, job: Job, exc: Exception) -> None:
        job.status = JobStatus.FAILED
        job.error = f"{type(exc).__name__}: {exc}"
        job.completed_at = datetime.utcnow()
        if job._future is not None and not job._future.done():
            job._future.set_exception(exc)
        self._record(job)

    def _record(self, job: Job) -> None:
        if self._history is not None:
            self._history.record(job)

    def _check_idle(self) -> None:
        if self.is_idle():
            self._idle.set()
