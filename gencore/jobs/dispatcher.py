"""Job dispatcher interface."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from gencore.jobs.models import Job, JobSpec, QueueStats

# A handler performs one attempt of a job and returns an opaque result.
JobHandler = Callable[[Job], Awaitable[Any]]


class JobDispatcher(ABC):
    """Abstract interface for job dispatching."""

    @abstractmethod
    def set_handler(self, category: str, handler: JobHandler) -> None:
        """Register the single handler for a job category."""
        ...

    @abstractmethod
    def enqueue(self, spec: JobSpec) -> "asyncio.Future[Any]":
        """Admit a job. The returned future settles with the job's outcome."""
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job the dispatcher still owns (queued or running)."""
        ...

    @abstractmethod
    def get_stats(self) -> QueueStats:
        ...

    @abstractmethod
    def cancel_all(self) -> int:
        """Reject every queued job. Returns how many were cancelled."""
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the dispatcher gracefully."""
        ...

    @abstractmethod
    def reschedule(self) -> None:
        """Re-check capacity after an external configuration change."""
        ...
