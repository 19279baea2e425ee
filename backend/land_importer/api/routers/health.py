"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from land_importer.api.dependencies.pipeline import get_pipeline
from land_importer.core.config import get_settings
from land_importer.services.pipeline import ImportPipeline
from land_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "land-registry-importer-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates API process is running.

    Used by orchestration systems (Kubernetes, Docker, etc.) to determine
    if the container/process should be restarted.
    """
    return {"status": "ok", "service": SERVICE_NAME}


def _uses_redis() -> bool:
    settings = get_settings()
    return (
        settings.storage_backend == "redis"
        or settings.runner_backend == "celery"
        or settings.redis_progress_enabled
        or settings.webhook_async
    )


@router.get("/ready", summary="Readiness probe")
def ready(pipeline: ImportPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Check the dependencies the configured backends need.

    The database is checked only for the SQL registry, Redis only when
    storage, cancellation, progress or Celery go through it.
    """
    checks: dict[str, Any] = {
        "status": "ok",
        "service": SERVICE_NAME,
        "checks": {},
    }
    all_healthy = True

    if pipeline.engine is not None:
        try:
            with pipeline.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            checks["checks"]["database"] = {
                "status": "healthy",
                "message": "Database connection successful",
            }
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}", exc_info=True)
            checks["checks"]["database"] = {
                "status": "unhealthy",
                "message": f"Database connection failed: {str(e)}",
            }
            all_healthy = False

    if _uses_redis():
        try:
            settings = get_settings()
            redis_client = create_redis_client(
                settings.redis_url, decode_responses=True, socket_connect_timeout=2
            )
            redis_client.ping()
            redis_client.close()
            checks["checks"]["redis"] = {
                "status": "healthy",
                "message": "Redis connection successful",
            }
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}", exc_info=True)
            checks["checks"]["redis"] = {
                "status": "unhealthy",
                "message": f"Redis connection failed: {str(e)}",
            }
            all_healthy = False

    if not all_healthy:
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
