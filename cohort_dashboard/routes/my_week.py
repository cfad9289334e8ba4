"""
Weekly synthesis sub-endpoint: analyze caller-supplied calendar and newsletter data.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.api.dashboard_response import MyWeekErrorResponse, MyWeekRequest
from cohort_dashboard.models.domain.dashboard_domain import NewsletterPayload
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.dashboard.container import DashboardServices
from cohort_dashboard.services.myweek.week_window import compute_week_window

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["my-week"])


@router.post("/my-week")
async def analyze_my_week(
    body: MyWeekRequest,
    services: DashboardServices = Depends(get_services),
):
    now = services.orchestrator.clock()
    logger.info(
        "My week analysis requested",
        blue_events=len(body.cohort_events.blue),
        gold_events=len(body.cohort_events.gold),
        has_newsletter=body.newsletter_data is not None,
    )

    try:
        analysis = await services.synthesizer.analyze(
            body.cohort_events, body.newsletter_data or NewsletterPayload(), now
        )
    except Exception as e:
        logger.error("My week analysis failed", error=str(e), error_type=type(e).__name__)
        window = compute_week_window(now, services.orchestrator.tz_name)
        degraded = MyWeekErrorResponse(
            message=str(e), week_start=window.week_start, week_end=window.week_end
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=degraded.to_json_dict()
        )

    return JSONResponse(content=analysis.to_json_dict())


@router.get("/my-week")
async def my_week_usage():
    return JSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={
            "message": "My Week API requires POST method with cohortEvents and newsletterData",
            "usage": "POST /api/my-week with { cohortEvents, newsletterData } in body",
        },
    )
