"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis + job processor heartbeat)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from src.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Redis is optional for correctness (wake-ups and dedup fail open), so a
    Redis outage reports `degraded` rather than failing the check.
    """
    checks = {"database": False, "redis": False}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    last_heartbeat = None
    try:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
        last_heartbeat = await redis.get("trailtune:worker_health:job_processor")
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    if not checks["database"]:
        status = "unavailable"
    elif all(checks.values()):
        status = "ready"
    else:
        status = "degraded"

    return {
        "status": status,
        "checks": checks,
        "job_processor_heartbeat": last_heartbeat,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
