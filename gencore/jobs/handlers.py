"""Handler factory for jobs backed by a remote provider.

A remote-task handler does what nearly every generation job needs: submit
the payload (backing off on rate limits), then poll the provider task until
it finishes, forwarding progress onto the Job.
"""

import logging
from typing import Callable, Optional

from gencore.jobs.backoff import retry_operation
from gencore.jobs.dispatcher import JobHandler
from gencore.jobs.models import Job
from gencore.polling.poller import TaskPoller
from gencore.providers.base import GenerationProvider

logger = logging.getLogger(__name__)


def remote_task_handler(
    provider: GenerationProvider,
    poller: TaskPoller,
    submit_retries: int = 3,
    submit_base_delay: float = 2.0,
    is_cancelled: Optional[Callable[[], bool]] = None,
    poll_timeout: Optional[float] = None,
) -> JobHandler:
    """Build a queue handler that runs a job as one remote provider task."""

    async def handle(job: Job):
        task_id = await retry_operation(
            lambda: provider.submit(job.category, job.payload),
            max_retries=submit_retries,
            base_delay=submit_base_delay,
        )
        logger.info(f"[{provider.name}] Job {job.id} submitted as remote task {task_id}")
        job.report_progress(0, "submitted")

        return await poller.poll(
            task_id,
            lambda: provider.fetch_status(task_id),
            on_progress=job.report_progress,
            is_cancelled=is_cancelled,
            timeout=poll_timeout,
        )

    return handle
