# cohort_dashboard/models/domain/dashboard_domain.py
"""
Dashboard Domain Models
Newsletter, calendar and weekly-summary shapes shared by the pipeline,
the cache and the API. Serialized with camelCase aliases so cached JSON and
API payloads keep the same field names.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EventType = Literal["deadline", "event", "announcement", "reminder"]
Priority = Literal["high", "medium", "low"]
Cohort = Literal["blue", "gold"]
WeekEventType = Literal[
    "assignment", "class", "exam", "administrative", "social", "newsletter", "other"
]

COHORTS: tuple[Cohort, ...] = ("blue", "gold")


class DomainModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TimeSensitiveInfo(DomainModel):
    dates: list[str] = Field(default_factory=list)
    deadline: str | None = None
    event_type: EventType = "announcement"
    priority: Priority = "medium"


class NewsletterItem(DomainModel):
    title: str
    html: str = ""
    time_sensitive: TimeSensitiveInfo | None = None


class NewsletterSection(DomainModel):
    section_title: str
    items: list[NewsletterItem] = Field(default_factory=list)


class AIDebugInfo(DomainModel):
    reasoning: str = "AI processing completed"
    section_decisions: list[str] = Field(default_factory=list)
    edge_cases_handled: list[str] = Field(default_factory=list)
    total_sections: int = 0
    processing_time: int = 0
    model: str | None = None
    models_tried: list[str] = Field(default_factory=list)
    model_latency: int | None = None


class NewsletterPayload(DomainModel):
    """Organized newsletter. Section order is the organizer's output order."""

    source_url: str = ""
    title: str | None = None
    sections: list[NewsletterSection] = Field(default_factory=list)
    ai_debug_info: AIDebugInfo | None = None

    def iter_items(self):
        for section in self.sections:
            for item in section.items:
                yield section, item

    def is_organized(self) -> bool:
        """True when a model produced these sections (not the unorganized fallback)."""
        return bool(self.ai_debug_info and self.ai_debug_info.model)


class CalendarEvent(DomainModel):
    uid: str | None = None
    title: str
    start: str
    end: str | None = None
    all_day: bool | None = None
    location: str | None = None
    url: str | None = None
    description: str | None = None
    cohort: Cohort | None = None
    source: str | None = None
    categories: list[str] | None = None


class CohortEvents(DomainModel):
    blue: list[CalendarEvent] = Field(default_factory=list)
    gold: list[CalendarEvent] = Field(default_factory=list)
    original: list[CalendarEvent] = Field(default_factory=list)
    launch: list[CalendarEvent] = Field(default_factory=list)
    cal_bears: list[CalendarEvent] = Field(default_factory=list)
    campus_groups: list[CalendarEvent] = Field(default_factory=list)

    def for_cohort(self, cohort: Cohort) -> list[CalendarEvent]:
        return self.blue if cohort == "blue" else self.gold


class WeekEvent(DomainModel):
    date: str
    time: str | None = None
    title: str
    type: WeekEventType = "other"
    priority: Priority | None = None
    description: str | None = None
    location: str | None = None
    url: str | None = None


class AIMeta(DomainModel):
    model: str | None = None
    models_tried: list[str] = Field(default_factory=list)
    ms: int = 0


class CohortMyWeekAnalysis(DomainModel):
    week_start: str
    week_end: str
    blue_events: list[WeekEvent] = Field(default_factory=list)
    gold_events: list[WeekEvent] = Field(default_factory=list)
    blue_summary: str
    gold_summary: str
    processing_time: int = 0
    ai_meta: dict[str, AIMeta] | None = None


class ProcessingInfo(DomainModel):
    total_time: int = 0
    newsletter_time: int = 0
    calendar_time: int = 0
    my_week_time: int = 0
    timestamp: str


class UnifiedDashboardData(DomainModel):
    newsletter_data: NewsletterPayload
    my_week_data: CohortMyWeekAnalysis
    cohort_events: CohortEvents
    processing_info: ProcessingInfo
