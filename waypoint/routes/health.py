"""
Health check endpoints: liveness and dependency readiness.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from waypoint.config import settings
from waypoint.db.pool import db_health_check
from waypoint.infrastructure.observability.logging import log_health_check
from waypoint.services.redis_client import fast_redis

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "waypoint"}


@router.get("/readyz")
async def readyz():
    """Readiness: database pool and Redis must both answer."""
    checks = {}

    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    log_health_check("redis", checks["redis"]["ok"], checks["redis"].get("latency_ms", 0))

    t0 = time.time()
    db_health = await db_health_check()
    checks["database"] = {
        "ok": bool(db_health.get("healthy")),
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if "pool_stats" in db_health:
        checks["database"]["pool"] = db_health["pool_stats"]
    if not checks["database"]["ok"]:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check(
        "database",
        checks["database"]["ok"],
        checks["database"]["latency_ms"],
        error=checks["database"].get("error"),
    )

    overall_ok = all(check["ok"] for check in checks.values())
    body = {
        "overall_ok": overall_ok,
        "environment": settings.environment,
        "checks": checks,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
