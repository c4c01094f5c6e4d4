"""Health check endpoints."""

import redis
from fastapi import APIRouter, status
from pydantic import BaseModel

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection
from app.dependencies import Scheduler

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health of the stores and the follow-up job backlog."""

    database: str
    redis: str
    pending_jobs: int | None = None
    email_enabled: bool


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check(scheduler: Scheduler) -> DetailedHealthResponse:
    """
    Readiness probe.

    Reports database and Redis reachability and how many follow-up jobs
    are waiting to run.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    pending_jobs = None
    if redis_healthy:
        try:
            pending_jobs = scheduler.redis.zcard(scheduler.due_key)
        except redis.RedisError:
            redis_healthy = False

    return DetailedHealthResponse(
        status="healthy" if db_healthy and redis_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        pending_jobs=pending_jobs,
        email_enabled=settings.email_enabled,
    )
