"""Error taxonomy for the job orchestration core.

Classification is structural: callers ask ``classify_error`` which kind an
exception is instead of matching on its message.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    REMOTE_FAILURE = "remote_failure"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"


class GenerationError(Exception):
    """Base class for all orchestration errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT


class ConfigurationError(GenerationError):
    """No handler is registered for a job category."""

    kind = ErrorKind.CONFIGURATION


class CancelledError(GenerationError):
    """A queued job or a poll was cancelled by the caller.

    Not related to ``asyncio.CancelledError``; the core never cancels tasks.
    """

    kind = ErrorKind.CANCELLED


class PollTimeoutError(GenerationError, TimeoutError):
    """A poll ran past its effective timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, task_id: str, elapsed_seconds: float, timeout_seconds: float):
        self.task_id = task_id
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds
        self.elapsed_minutes = int(elapsed_seconds // 60)
        super().__init__(
            f"Task {task_id} timed out after {self.elapsed_minutes} minutes "
            f"(effective timeout {timeout_seconds:.0f}s)"
        )


class RemoteFailure(GenerationError):
    """The provider reported a terminal ``failed`` status."""

    kind = ErrorKind.REMOTE_FAILURE

    def __init__(self, message: str, task_id: Optional[str] = None, error_kind: Optional[ErrorKind] = None):
        self.task_id = task_id
        self.error_kind = error_kind
        super().__init__(message)


class TransientNetworkError(GenerationError):
    """A status fetch failed in a way that is worth retrying."""

    kind = ErrorKind.TRANSIENT


class RateLimitError(TransientNetworkError):
    """The provider rejected a request with 429 / quota exhaustion."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        self.status = 429
        super().__init__(message)


class JobFailedError(GenerationError):
    """A job exhausted its retry budget. Wraps the last handler error."""

    def __init__(self, job_id: str, attempts: int, last_error: BaseException):
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Job {job_id} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )

    @property
    def kind(self) -> ErrorKind:
        return classify_error(self.last_error)


_TERMINAL_KINDS = {
    ErrorKind.CONFIGURATION,
    ErrorKind.CANCELLED,
    ErrorKind.TIMEOUT,
    ErrorKind.REMOTE_FAILURE,
}


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception onto an ErrorKind by type, never by message."""
    if isinstance(exc, GenerationError):
        return exc.kind
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if status == 429:
        return ErrorKind.RATE_LIMIT
    return ErrorKind.TRANSIENT


def is_terminal(exc: BaseException) -> bool:
    """True when no further polling or retry should happen for this attempt."""
    return classify_error(exc) in _TERMINAL_KINDS
