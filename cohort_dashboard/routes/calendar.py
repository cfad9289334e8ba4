"""
Calendar API Route
Six-bucket cohort calendar events, optionally with a custom horizon and limit,
and a subscribable iCalendar export of the selected buckets.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.api.dashboard_response import CalendarErrorResponse
from cohort_dashboard.models.domain.dashboard_domain import CohortEvents, NewsletterPayload
from cohort_dashboard.routes.dashboard import CACHE_SOURCE_HEADER
from cohort_dashboard.routes.dependencies import get_services
from cohort_dashboard.services.cache.keys import CacheKey
from cohort_dashboard.services.calendar import ics_export
from cohort_dashboard.services.dashboard.container import DashboardServices
from cohort_dashboard.services.dashboard.orchestrator import SOURCE_FRESH

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["calendar"])


@router.get("/calendar")
async def get_calendar_events(
    days_ahead: int | None = Query(None, alias="daysAhead", ge=1, le=730),
    limit: int | None = Query(None, ge=1, le=1000),
    services: DashboardServices = Depends(get_services),
):
    use_defaults = days_ahead is None and limit is None

    if use_defaults:
        hit = await services.cache.get(CacheKey.COHORT_EVENTS)
        if hit is not None:
            try:
                events = CohortEvents.model_validate(hit.data)
                return JSONResponse(
                    content=events.to_json_dict(),
                    headers={CACHE_SOURCE_HEADER: hit.source.value},
                )
            except ValidationError as e:
                logger.warning("Cached cohort events have unexpected shape", error=str(e)[:200])

    try:
        events = await services.calendar_client.get_cohort_events(days_ahead, limit)
    except Exception as e:
        logger.error("Calendar load failed", error=str(e), error_type=type(e).__name__)
        body = CalendarErrorResponse(error="Failed to load calendar data", details=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.to_json_dict()
        )

    if use_defaults:
        await services.cache.set(CacheKey.COHORT_EVENTS, events)
    return JSONResponse(content=events.to_json_dict(), headers={CACHE_SOURCE_HEADER: SOURCE_FRESH})


@router.get("/calendar/export.ics")
async def export_calendar(request: Request, services: DashboardServices = Depends(get_services)):
    selected = ics_export.ExportFilter.from_params(request.query_params)
    events = []

    if selected.needs_calendar():
        try:
            cohort_events = await services.calendar_client.get_cohort_events(
                ics_export.EXPORT_DAYS_AHEAD, ics_export.EXPORT_LIMIT
            )
        except Exception as e:
            logger.error("Calendar export failed", error=str(e), error_type=type(e).__name__)
            return PlainTextResponse(
                f"Error generating calendar: {e}",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        events.extend(ics_export.select_calendar_events(cohort_events, selected))

    if selected.newsletter:
        hit = await services.cache.get(CacheKey.NEWSLETTER_DATA)
        if hit is None:
            logger.info("No cached newsletter for calendar export")
        else:
            try:
                newsletter = NewsletterPayload.model_validate(hit.data)
                events.extend(ics_export.newsletter_calendar_events(newsletter))
            except ValidationError as e:
                logger.warning("Cached newsletter has unexpected shape", error=str(e)[:200])

    orchestrator = services.orchestrator
    body = ics_export.build_calendar(
        events, selected.calendar_name(), orchestrator.tz_name, orchestrator.clock()
    )
    logger.info("Calendar export generated", event_count=len(events), filters=vars(selected))
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": 'attachment; filename="cohort-calendar.ics"',
            "X-Event-Count": str(len(events)),
        },
    )
