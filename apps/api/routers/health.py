"""
Health check endpoints.
"""

from fastapi import APIRouter
import redis.asyncio as redis
from sqlalchemy import text

from config import settings
from database import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown" if settings.POINT_DEDUPE_STRATEGY == "cache" else "optional",
        "dedupe_strategy": settings.POINT_DEDUPE_STRATEGY,
    }

    # Check database connection
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Check Redis connection
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        # Redis only carries the rate limiter unless it also holds dedupe markers.
        if settings.POINT_DEDUPE_STRATEGY == "cache":
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
