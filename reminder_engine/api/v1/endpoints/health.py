"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from reminder_engine.config import settings
from reminder_engine.core.redis_client import check_redis_connection
from reminder_engine.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Detailed health check response model."""

    database: str
    redis: str
    delivery_mode: str
    queue_worker: str


def _worker_state(request: Request) -> str:
    worker = getattr(request.app.state, "queue_worker", None)
    if worker is None:
        return "disabled"
    return "running" if worker.running else "stopped"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(request: Request) -> DetailedHealthResponse:
    """
    Detailed health check with store, Redis and queue worker status.

    Redis only counts against overall health when the queue tick lock uses it.

    Returns:
        Detailed health status including dependencies
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()
    healthy = db_healthy and (redis_healthy or not settings.queue_use_redis_lock)

    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        delivery_mode=settings.delivery_mode,
        queue_worker=_worker_state(request),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """
    Simple ping endpoint.

    Returns:
        Pong response
    """
    return {"message": "pong"}
