"""Batch API: run many provider tasks under a stagger + concurrency cap."""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from gencore.batch.stagger import run_staggered, summarize
from gencore.config import settings

router = APIRouter()

# Set by main.py during lifespan (same pattern as jobs.py)
_provider = None
_poller = None


def set_provider(provider):
    global _provider
    _provider = provider


def set_poller(poller):
    global _poller
    _poller = poller


class BatchRequest(BaseModel):
    category: str = "image"
    count: int = Field(default=1, ge=1, le=100)
    payload: Any = None
    max_concurrent: Optional[int] = Field(default=None, ge=1)
    stagger_ms: Optional[int] = Field(default=None, ge=0)


@router.post("/batch")
async def run_batch(request: BatchRequest):
    """Submit ``count`` generations and wait for all of them.

    Reports partial success; one item's failure never aborts the others.
    """
    if _provider is None or _poller is None:
        raise HTTPException(status_code=503, detail="Provider not initialized")

    def make_task():
        async def task():
            task_id = await _provider.submit(request.category, request.payload)
            return await _poller.poll(task_id, lambda: _provider.fetch_status(task_id))

        return task

    results = await run_staggered(
        [make_task() for _ in range(request.count)],
        max_concurrent=request.max_concurrent or settings.batch_max_concurrent,
        stagger_ms=(
            request.stagger_ms
            if request.stagger_ms is not None
            else settings.batch_stagger_ms
        ),
    )
    summary = summarize(results)
    return {
        "message": summary.message,
        "total": summary.total,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "items": [
            {
                "index": r.index,
                "status": r.status,
                "result": r.value,
                "error": f"{type(r.reason).__name__}: {r.reason}" if r.reason else None,
            }
            for r in results
        ],
    }
