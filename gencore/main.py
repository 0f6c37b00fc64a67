"""Generation job orchestration service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gencore.api.v1 import batch as batch_api
from gencore.api.v1 import health as health_api
from gencore.api.v1 import jobs as jobs_api
from gencore.api.v1 import queue as queue_api
from gencore.api.v1.router import v1_router
from gencore.config import settings
from gencore.errors import ConfigurationError
from gencore.jobs.handlers import remote_task_handler
from gencore.jobs.priority_queue import PriorityJobQueue
from gencore.logging_setup import configure_logging
from gencore.polling.poller import TaskPoller
from gencore.providers.base import GenerationProvider
from gencore.providers.simulated import SimulatedProvider
from gencore.storage.job_history import job_history

logger = logging.getLogger(__name__)

GENERATION_CATEGORIES = ("image", "video")


def build_provider() -> GenerationProvider:
    if settings.provider_mode == "simulated":
        return SimulatedProvider(default_polls=settings.simulated_task_polls)
    raise ConfigurationError(f"Unknown provider mode: {settings.provider_mode}")


def build_queue(provider: GenerationProvider, poller: TaskPoller) -> PriorityJobQueue:
    """Create the queue and register one remote-task handler per category."""
    queue = PriorityJobQueue(
        get_max_concurrency=lambda: settings.max_concurrency,
        history=job_history,
    )
    handler = remote_task_handler(
        provider,
        poller,
        submit_retries=settings.retry_max_attempts,
        submit_base_delay=settings.retry_base_delay_seconds,
    )
    for category in GENERATION_CATEGORIES:
        queue.set_handler(category, handler)
    return queue


# Global dispatcher reference
_dispatcher = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global _dispatcher

    configure_logging(settings.log_level)
    logger.info(f"Starting generation orchestrator on port {settings.service_port}")
    logger.info(f"Provider mode: {settings.provider_mode}")
    logger.info(f"Max concurrency: {settings.max_concurrency}")

    provider = build_provider()
    poller = TaskPoller(
        interval=settings.poll_interval_seconds,
        timeout=settings.poll_timeout_seconds,
        max_timeout=settings.poll_max_timeout_seconds,
    )
    _dispatcher = build_queue(provider, poller)
    logger.info(f"Job queue started with handlers for {', '.join(GENERATION_CATEGORIES)}")

    # Wire dispatcher, history and provider into API endpoints
    health_api.set_dispatcher(_dispatcher)
    jobs_api.set_dispatcher(_dispatcher)
    jobs_api.set_history(job_history)
    queue_api.set_dispatcher(_dispatcher)
    batch_api.set_provider(provider)
    batch_api.set_poller(poller)

    yield

    # Shutdown: drop queued work, give running jobs a bounded window to settle
    logger.info("Shutting down generation orchestrator")
    await _dispatcher.stop(timeout=settings.shutdown_timeout_seconds)
    job_history.cleanup_expired()


app = FastAPI(
    title="Generation Job Orchestrator",
    description="Priority queue, adaptive poller and staggered batch dispatch for remote generation jobs",
    version="0.1.0",
    lifespan=lifespan,
)

# Mount routers
app.include_router(health_api.router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
