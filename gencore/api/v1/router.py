"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from gencore.api.v1.health import router as health_router
from gencore.api.v1.jobs import router as jobs_router
from gencore.api.v1.queue import router as queue_router
from gencore.api.v1.batch import router as batch_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(jobs_router, tags=["jobs"])
v1_router.include_router(queue_router, tags=["queue"])
v1_router.include_router(batch_router, tags=["batch"])
