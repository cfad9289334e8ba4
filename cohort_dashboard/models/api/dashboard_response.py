# cohort_dashboard/models/api/dashboard_response.py
"""
Dashboard API request/response models.
Used by routes for input validation and error payloads; success payloads
are the domain models themselves.
"""

from typing import Any

from pydantic import Field

from cohort_dashboard.models.domain.dashboard_domain import (
    CohortEvents,
    DomainModel,
    NewsletterPayload,
    ProcessingInfo,
    WeekEvent,
)


class MyWeekRequest(DomainModel):
    """POST /api/my-week body."""

    cohort_events: CohortEvents = Field(default_factory=CohortEvents)
    newsletter_data: NewsletterPayload | None = None


class DashboardErrorResponse(DomainModel):
    """Unrecoverable aggregate failure. Timing fields are all zero."""

    error: str
    details: str
    processing_info: ProcessingInfo


class ErrorResponse(DomainModel):
    error: str
    details: str | None = None


class MyWeekErrorResponse(DomainModel):
    """Degraded weekly-synthesis body: success shape, no events, static narrative."""

    error: str = "Failed to analyze week"
    message: str
    week_start: str
    week_end: str
    blue_events: list[WeekEvent] = Field(default_factory=list)
    gold_events: list[WeekEvent] = Field(default_factory=list)
    blue_summary: str = "Unable to analyze week due to an error."
    gold_summary: str = "Unable to analyze week due to an error."
    processing_time: int = 0


class CalendarErrorResponse(CohortEvents):
    error: str
    details: str | None = None


class AISelfTestResult(DomainModel):
    model: str | None = None
    models_tried: list[str] = Field(default_factory=list)
    ms: int = 0
    raw: str | None = None
    parsed: dict[str, Any] | None = None


class AISelfTestResponse(DomainModel):
    ok: bool
    error: str | None = None
    has_key: bool
    chain: list[str]
    ai: AISelfTestResult | None = None
    total_ms: int
    timestamp: str
