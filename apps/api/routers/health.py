"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import settings, validate_security_settings
from services.cashfree import gateway_configured
from services.providers import provider_capabilities

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
        "redis": "unknown",
        "providers": {
            name: "configured" if configured else "missing"
            for name, configured in provider_capabilities().items()
        },
        "payment_gateway": "configured" if gateway_configured() else "demo",
    }

    # Check database connection
    try:
        from database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Redis only backs the optional shared counters
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        if settings.FREE_USAGE_BACKEND.strip().lower() == "redis":
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = []
    if not settings.DATABASE_URL:
        missing.append("DATABASE_URL")
    try:
        validate_security_settings()
    except ValueError as exc:
        # Messages lead with the offending setting name.
        missing.append(str(exc).split(" ", 1)[0])

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
