"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


@router.get("/health")
async def health_check():
    """Service health, queue load, and system info."""
    queue = _dispatcher.get_stats().model_dump() if _dispatcher is not None else None
    return {
        "status": "healthy" if _dispatcher is not None else "starting",
        "queue": queue,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
