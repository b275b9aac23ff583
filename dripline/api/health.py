"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
- GET /health/deep  - deep check (DB + Redis + task processor heartbeat)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from dripline.database import get_db
from dripline.utils.dedup import get_redis
from dripline.workers.task_processor import HEARTBEAT_KEY

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"
WORKER_STALE_SECONDS = 120


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
    Used by the orchestrator to determine if the app can serve traffic.
    """
    checks = {
        "database": (await _check_database(db))["healthy"],
        "redis": (await _check_redis())["healthy"],
    }
    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    db: AsyncSession = Depends(get_db),
):
    """Deep health check - database, Redis and task processor heartbeat freshness."""
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "task_processor": await _check_task_processor(),
    }

    critical_healthy = checks["database"]["healthy"] and checks["redis"]["healthy"]
    if all(c["healthy"] for c in checks.values()):
        status = "healthy"
    elif critical_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


async def _check_database(db: AsyncSession) -> dict:
    """Check database connectivity."""
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    """Check Redis connectivity."""
    try:
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_task_processor() -> dict:
    """Task processor is healthy if its heartbeat is fresh."""
    try:
        redis = await get_redis()
        raw = await redis.get(HEARTBEAT_KEY)
    except Exception as e:
        return {"healthy": False, "error": str(e)}

    if not raw:
        return {"healthy": False, "error": "no heartbeat"}
    age = (datetime.now(timezone.utc) - datetime.fromisoformat(raw)).total_seconds()
    return {"healthy": age < WORKER_STALE_SECONDS, "last_heartbeat_seconds_ago": int(age)}
