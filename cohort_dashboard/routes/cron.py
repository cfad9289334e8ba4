"""
Scheduled-job trigger routes. Called by an external scheduler with
``Authorization: Bearer <CRON_SECRET>``.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from cohort_dashboard.auth.cron import cron_auth_dependency
from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.jobs.refresh_jobs import RefreshJobError
from cohort_dashboard.models.api.dashboard_response import ErrorResponse
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.dashboard.container import DashboardServices

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(cron_auth_dependency)]
)


async def _run(job, failure_message: str) -> JSONResponse:
    try:
        summary = await job.run_once()
    except RefreshJobError as e:
        body = ErrorResponse(error=failure_message, details=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.to_json_dict()
        )

    if summary.get("skipped"):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=summary)
    return JSONResponse(content=summary)


@router.get("/refresh-newsletter")
async def refresh_newsletter(services: DashboardServices = Depends(get_services)):
    logger.info("Newsletter refresh triggered")
    return await _run(services.newsletter_job, "Newsletter refresh failed")


@router.get("/refresh-cache")
async def refresh_cache(services: DashboardServices = Depends(get_services)):
    logger.info("Cache refresh triggered")
    return await _run(services.cache_job, "Cache refresh failed")
