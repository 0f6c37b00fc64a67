"""Queue control API: stats, cancellation, live concurrency changes."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from gencore.config import settings

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


class ConcurrencyUpdate(BaseModel):
    max_concurrency: int = Field(ge=0)


def _require_dispatcher():
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return _dispatcher


@router.get("/queue/stats")
async def queue_stats():
    return _require_dispatcher().get_stats().model_dump()


@router.post("/queue/cancel")
async def cancel_queue():
    """Cancel every queued job. Running jobs are left to finish."""
    cancelled = _require_dispatcher().cancel_all()
    return {"cancelled": cancelled, "stats": _dispatcher.get_stats().model_dump()}


@router.post("/queue/resume")
async def resume_queue():
    _require_dispatcher().resume()
    return {"resumed": True, "stats": _dispatcher.get_stats().model_dump()}


@router.put("/queue/concurrency")
async def set_concurrency(update: ConcurrencyUpdate):
    """Change the concurrency ceiling; the queue reads it on its next decision."""
    dispatcher = _require_dispatcher()
    settings.max_concurrency = update.max_concurrency
    dispatcher.reschedule()
    return dispatcher.get_stats().model_dump()
