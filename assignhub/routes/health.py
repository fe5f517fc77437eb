# assignhub/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from assignhub.config import settings
from assignhub.db.pool import db_health_check
from assignhub.services.redis_client import redis_client

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "assignhub"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering the database pool, Redis and configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Redis (presence change feed)
    t0 = time.time()
    try:
        redis_ok = await redis_client.ping()
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 3) Configuration
    config_issues = []
    if not settings.LEMON_SQUEEZY_WEBHOOK_SECRET and not settings.allows_unsigned_webhooks():
        config_issues.append("LEMON_SQUEEZY_WEBHOOK_SECRET not set")
    if not settings.LEMON_SQUEEZY_API_KEY or not settings.LEMON_SQUEEZY_STORE_ID:
        config_issues.append("Lemon Squeezy API credentials not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
