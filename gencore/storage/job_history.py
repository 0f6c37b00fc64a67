"""In-memory snapshots of settled jobs with TTL-based cleanup."""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from gencore.config import settings
from gencore.jobs.models import Job


class JobHistory:
    """Keeps the final snapshot of completed/failed jobs for status lookups.

    The queue drops a job once it settles; this store answers "what happened
    to job X" afterwards until the entry expires.
    """

    def __init__(self, ttl_seconds: int = 7200, clock: Callable[[], float] = time.monotonic):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()

    def record(self, job: Job) -> None:
        self._entries[job.id] = (self._clock(), job.snapshot())
        self._entries.move_to_end(job.id)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        recorded_at, snapshot = entry
        if self._clock() - recorded_at > self._ttl_seconds:
            del self._entries[job_id]
            return None
        return snapshot

    def __len__(self) -> int:
        return len(self._entries)

    def cleanup_expired(self) -> int:
        """Remove snapshots older than TTL. Returns count of removed entries."""
        now = self._clock()
        removed = 0
        # Entries are kept in record order, oldest first.
        while self._entries:
            job_id, (recorded_at, _) = next(iter(self._entries.items()))
            if now - recorded_at <= self._ttl_seconds:
                break
            del self._entries[job_id]
            removed += 1
        return removed


# Global instance
job_history = JobHistory(ttl_seconds=settings.job_history_ttl_seconds)
