"""
Unified Dashboard API Route
Aggregate endpoint: newsletter + weekly summaries + cohort calendars in one payload.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.api.dashboard_response import DashboardErrorResponse
from cohort_dashboard.models.domain.dashboard_domain import ProcessingInfo
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.dashboard.container import DashboardServices
from cohort_dashboard.services.dashboard.orchestrator import DashboardUnavailableError

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])

CACHE_SOURCE_HEADER = "X-Cache-Source"


def _error_response(error: str, details: str) -> JSONResponse:
    body = DashboardErrorResponse(
        error=error,
        details=details,
        processing_info=ProcessingInfo(timestamp=datetime.now(UTC).isoformat()),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.to_json_dict()
    )


@router.get("/unified-dashboard")
async def get_unified_dashboard(
    refresh: bool = Query(False, description="Bypass the cache read and rerun the pipeline"),
    services: DashboardServices = Depends(get_services),
):
    """Dashboard data from cache, or freshly computed on miss / ``refresh=true``."""
    try:
        result = await services.orchestrator.get_dashboard(force_refresh=refresh)
    except DashboardUnavailableError as e:
        logger.error("Dashboard unavailable", error=str(e))
        return _error_response("Failed to load dashboard data", str(e))
    except Exception as e:
        logger.error("Unexpected dashboard error", error=str(e), error_type=type(e).__name__)
        return _error_response("Failed to load dashboard data", f"{type(e).__name__}: {e}")

    return JSONResponse(
        content=result.data.to_json_dict(),
        headers={CACHE_SOURCE_HEADER: result.source},
    )
