"""Liveness and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from scouter_importer.core.config import get_settings
from scouter_importer.db.models.import_job import ImportJob, ImportStatus
from scouter_importer.db.session import engine
from scouter_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "scouter-importer-api"


def _check_database() -> dict[str, Any]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            backlog = dict(
                conn.execute(
                    select(ImportJob.status, func.count())
                    .where(ImportJob.status.in_(ImportStatus.ACTIVE))
                    .group_by(ImportJob.status)
                ).all()
            )
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
    return {
        "status": "healthy",
        "message": "Database connection successful",
        "active_jobs": {name: backlog.get(name, 0) for name in sorted(ImportStatus.ACTIVE)},
    }


def _check_redis(url: str, label: str) -> dict[str, Any]:
    try:
        client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
        client.ping()
        client.close()
    except RedisError as e:
        logger.warning(f"{label} health check failed: {e}")
        return {"status": "unhealthy", "message": f"{label} connection failed: {e}"}
    return {"status": "healthy", "message": f"{label} connection successful"}


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/ready", summary="Readiness probe")
def ready() -> dict[str, Any]:
    """Check the database (plus import backlog), Redis and the Celery broker.

    Redis only carries progress snapshots and mirrored uploads, and workers
    may run elsewhere, so only the database decides readiness.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "database": _check_database(),
        "redis": _check_redis(settings.redis_url, "Redis"),
        "celery_broker": _check_redis(
            settings.celery_broker_url or settings.redis_url, "Celery broker"
        ),
    }
    payload: dict[str, Any] = {"status": "ok", "service": SERVICE_NAME, "checks": checks}

    if checks["database"]["status"] != "healthy":
        payload["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=payload,
        )
    return payload
