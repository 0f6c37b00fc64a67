"""Provider interface for remote generation backends."""

from abc import ABC, abstractmethod
from typing import Any

from gencore.polling.models import RemoteTaskStatus


class GenerationProvider(ABC):
    """A remote, rate-limited generation service.

    Implementations map their own response shapes onto RemoteTaskStatus;
    the core never sees provider-specific payloads.
    """

    name: str = "provider"

    @abstractmethod
    async def submit(self, category: str, payload: Any) -> str:
        """Start a remote task. Returns the provider's task id."""
        ...

    @abstractmethod
    async def fetch_status(self, task_id: str) -> RemoteTaskStatus:
        """Query the provider once for the task's current status."""
        ...
