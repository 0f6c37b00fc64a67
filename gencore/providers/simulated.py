"""In-memory provider that fakes remote generation.

Used by the service in ``simulated`` mode and by tests. Payload keys tweak a
task's behaviour:

    polls                   status queries before the task succeeds
    fail                    error message; the task ends ``failed``
    estimated_time_seconds  reported on every running status
    transient_errors        number of fetches that raise before answering
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from gencore.errors import RateLimitError, TransientNetworkError
from gencore.polling.models import RemoteStatus, RemoteTaskStatus
from gencore.providers.base import GenerationProvider


@dataclass
class _SimulatedTask:
    category: str
    payload: Dict[str, Any]
    total_polls: int
    polls: int = 0
    transient_errors: int = 0


class SimulatedProvider(GenerationProvider):
    name = "simulated"

    def __init__(self, default_polls: int = 3, rate_limited_submits: int = 0):
        self._default_polls = max(1, default_polls)
        self._rate_limited_submits = rate_limited_submits
        self._tasks: Dict[str, _SimulatedTask] = {}
        self.submit_calls = 0

    async def submit(self, category: str, payload: Any) -> str:
        self.submit_calls += 1
        if self.submit_calls <= self._rate_limited_submits:
            raise RateLimitError("Simulated 429: too many requests")

        options = payload if isinstance(payload, dict) else {}
        task_id = f"sim-{uuid.uuid4().hex[:12]}"
        self._tasks[task_id] = _SimulatedTask(
            category=category,
            payload=options,
            total_polls=max(1, int(options.get("polls", self._default_polls))),
            transient_errors=int(options.get("transient_errors", 0)),
        )
        return task_id

    async def fetch_status(self, task_id: str) -> RemoteTaskStatus:
        task = self._tasks.get(task_id)
        if task is None:
            return RemoteTaskStatus(status=RemoteStatus.FAILED, error=f"Unknown task {task_id}")

        if task.transient_errors > 0:
            task.transient_errors -= 1
            raise TransientNetworkError(f"Simulated connection reset for {task_id}")

        task.polls += 1
        estimate: Optional[float] = task.payload.get("estimated_time_seconds")

        if task.polls >= task.total_polls:
            if "fail" in task.payload:
                return RemoteTaskStatus(status=RemoteStatus.FAILED, error=str(task.payload["fail"]))
            return RemoteTaskStatus(
                status=RemoteStatus.SUCCEEDED,
                progress=100,
                result=f"sim://{task.category}/{task_id}",
            )

        if task.polls == 1:
            return RemoteTaskStatus(status=RemoteStatus.QUEUED, progress=0, estimated_time_seconds=estimate)

        progress = round(100 * task.polls / task.total_polls, 1)
        return RemoteTaskStatus(status=RemoteStatus.RUNNING, progress=progress, estimated_time_seconds=estimate)

    def task_count(self) -> int:
        return len(self._tasks)
