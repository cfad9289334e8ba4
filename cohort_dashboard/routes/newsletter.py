"""
Newsletter API Route
Serves the organized newsletter from cache, or runs the newsletter stage once.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.api.dashboard_response import ErrorResponse
from cohort_dashboard.models.domain.dashboard_domain import NewsletterPayload
from cohort_dashboard.routes.dashboard import CACHE_SOURCE_HEADER
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.cache.keys import CacheKey
from cohort_dashboard.services.dashboard.container import DashboardServices
from cohort_dashboard.services.dashboard.orchestrator import SOURCE_FRESH

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["newsletter"])


@router.get("/newsletter")
async def get_newsletter(services: DashboardServices = Depends(get_services)):
    hit = await services.cache.get(CacheKey.NEWSLETTER_DATA)
    if hit is not None:
        try:
            newsletter = NewsletterPayload.model_validate(hit.data)
            return JSONResponse(
                content=newsletter.to_json_dict(),
                headers={CACHE_SOURCE_HEADER: hit.source.value},
            )
        except ValidationError as e:
            logger.warning("Cached newsletter has unexpected shape", error=str(e)[:200])

    try:
        newsletter = await services.orchestrator.acquire_newsletter()
    except Exception as e:
        logger.error("Newsletter load failed", error=str(e), error_type=type(e).__name__)
        body = ErrorResponse(error="Failed to load newsletter data", details=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.to_json_dict()
        )

    if newsletter.is_organized():
        await services.cache.set(CacheKey.NEWSLETTER_DATA, newsletter)
    return JSONResponse(
        content=newsletter.to_json_dict(), headers={CACHE_SOURCE_HEADER: SOURCE_FRESH}
    )
