# cohort_dashboard/routes/health.py
"""
Health check endpoints: liveness and readiness (cache tiers + AI configuration).
"""

import time

from fastapi import APIRouter, Depends

from cohort_dashboard.config import settings
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.dashboard.container import DashboardServices

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "cohort-dashboard"}


@router.get("/readyz")
async def readyz(services: DashboardServices = Depends(get_services)):
    """
    Readiness check. The primary store is optional: without it the cache
    serves from the static tier, so only a non-writable static directory
    marks the service not ready.
    """
    checks = {}
    overall_ok = True

    # 1) Cache tiers
    t0 = time.time()
    try:
        cache_health = await services.cache.health_check()
        checks["primary_store"] = {
            "configured": cache_health["primary_configured"],
            "ok": cache_health["primary_ok"],
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        checks["static_cache"] = {
            "ok": cache_health["static_writable"],
            "directory": cache_health["static_dir"],
        }
        overall_ok = overall_ok and cache_health["static_writable"]
    except Exception as e:
        checks["cache"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Configuration checks
    config_issues = []
    if not settings.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")
    if not settings.CRON_SECRET:
        config_issues.append("CRON_SECRET not set")
    if not any(settings.cohort_sources().values()):
        config_issues.append("No cohort calendar sources configured")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "models": services.chain.models,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
