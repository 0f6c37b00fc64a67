"""Job data model for the priority queue."""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, PrivateAttr

# fn(progress_percent, status_label)
ProgressCallback = Callable[[float, str], None]


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobSpec(BaseModel):
    """What a caller hands to ``enqueue``."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    category: str
    priority: int = 0
    payload: Any = None
    max_retries: int = Field(default=0, ge=0)
    on_progress: Optional[ProgressCallback] = Field(default=None, exclude=True)


class Job(BaseModel):
    """Tracks one unit of dispatchable work while the queue owns it."""
    id: str
    category: str
    priority: int = 0
    payload: Any = None
    status: JobStatus = JobStatus.QUEUED
    retry_count: int = 0
    max_retries: int = 0
    progress: float = 0.0
    progress_message: str = ""
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    on_progress: Optional[ProgressCallback] = Field(default=None, exclude=True)

    _future: Optional[asyncio.Future] = PrivateAttr(default=None)

    @classmethod
    def from_spec(cls, spec: JobSpec) -> "Job":
        return cls(
            id=spec.id,
            category=spec.category,
            priority=spec.priority,
            payload=spec.payload,
            max_retries=spec.max_retries,
            on_progress=spec.on_progress,
        )

    @property
    def attempts(self) -> int:
        return self.retry_count + 1

    def report_progress(self, progress: float, status: str = "") -> None:
        """Record progress and forward it to the enqueuer's callback, if any."""
        self.progress = progress
        self.progress_message = status
        if self.on_progress is not None:
            self.on_progress(progress, status)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "category": self.category,
            "priority": self.priority,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "progress": {"percent": self.progress, "message": self.progress_message},
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class QueueStats(BaseModel):
    queued: int
    running: int
    max_concurrency: int
