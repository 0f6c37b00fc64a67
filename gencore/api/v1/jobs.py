"""Job API: enqueue generation jobs and look up their status."""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from gencore.config import settings
from gencore.jobs.models import JobSpec

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be set by main.py during lifespan
_dispatcher = None
_history = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_history(history):
    global _history
    _history = history


class JobSubmitRequest(BaseModel):
    category: str
    priority: int = 0
    payload: Any = None
    max_retries: Optional[int] = Field(default=None, ge=0)


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


def _consume_outcome(future: "asyncio.Future[Any]") -> None:
    # Nobody awaits API-submitted jobs; the outcome lives in the job history.
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"API job settled with error: {future.exception()}")


@router.post("/jobs", response_model=JobSubmitResponse)
async def submit_job(request: JobSubmitRequest):
    """Enqueue a new generation job."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")

    spec = JobSpec(
        category=request.category,
        priority=request.priority,
        payload=request.payload,
        max_retries=(
            request.max_retries
            if request.max_retries is not None
            else settings.default_max_retries
        ),
    )
    future = _dispatcher.enqueue(spec)
    future.add_done_callback(_consume_outcome)

    job = _dispatcher.get_job(spec.id)
    # Jobs rejected at admission (unknown category, cancelled queue) settle immediately
    status = job.status.value if job is not None else "failed"
    return JobSubmitResponse(
        job_id=spec.id,
        status=status,
        message="Job enqueued. Poll GET /api/v1/jobs/{id} for status.",
    )


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Get the current status of a live or recently settled job."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")

    job = _dispatcher.get_job(job_id)
    if job is not None:
        return job.snapshot()

    if _history is not None:
        snapshot = _history.get(job_id)
        if snapshot is not None:
            return snapshot

    raise HTTPException(status_code=404, detail="Job not found")
