"""Remote task status returned by a provider's polling endpoint."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from gencore.errors import ErrorKind


class RemoteStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Provider spellings seen in the wild -> canonical status
_STATUS_ALIASES = {
    "queued": RemoteStatus.QUEUED,
    "pending": RemoteStatus.QUEUED,
    "submitted": RemoteStatus.QUEUED,
    "waiting": RemoteStatus.QUEUED,
    "running": RemoteStatus.RUNNING,
    "processing": RemoteStatus.RUNNING,
    "in_progress": RemoteStatus.RUNNING,
    "generating": RemoteStatus.RUNNING,
    "succeeded": RemoteStatus.SUCCEEDED,
    "success": RemoteStatus.SUCCEEDED,
    "completed": RemoteStatus.SUCCEEDED,
    "done": RemoteStatus.SUCCEEDED,
    "failed": RemoteStatus.FAILED,
    "failure": RemoteStatus.FAILED,
    "error": RemoteStatus.FAILED,
    "cancelled": RemoteStatus.FAILED,
    "canceled": RemoteStatus.FAILED,
}


def normalize_status(raw: Optional[str]) -> RemoteStatus:
    """Map a provider status string onto RemoteStatus.

    Missing or unknown values count as still running, so the poller keeps
    waiting instead of declaring an outcome it was never told about.
    """
    if not raw:
        return RemoteStatus.RUNNING
    key = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
    return _STATUS_ALIASES.get(key, RemoteStatus.RUNNING)


class RemoteTaskStatus(BaseModel):
    """One status-fetch result. Owned by a single poll call, never persisted."""
    status: RemoteStatus
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    estimated_time_seconds: Optional[float] = None
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RemoteStatus.SUCCEEDED, RemoteStatus.FAILED)

    @classmethod
    def from_provider(
        cls,
        status: Optional[str],
        progress: Optional[float] = None,
        estimated_time_seconds: Optional[float] = None,
        result: Any = None,
        error: Optional[str] = None,
    ) -> "RemoteTaskStatus":
        """Build a status from loosely-typed provider fields."""
        if progress is not None:
            progress = max(0.0, min(100.0, float(progress)))
        return cls(
            status=normalize_status(status),
            progress=progress,
            estimated_time_seconds=estimated_time_seconds,
            result=result,
            error=error,
        )
