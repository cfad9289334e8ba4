# cohort_dashboard/services/myweek/analyzer.py
"""
Weekly synthesis ("My Week").

Filters each cohort's calendar events to the canonical week window, merges in
newsletter items dated inside that window, and asks the model chain for a
structured event list plus a short narrative per cohort. Cohorts are
independent: one cohort's AI failure degrades only that cohort.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, get_args

from bs4 import BeautifulSoup
from pydantic import ValidationError

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.domain.dashboard_domain import (
    COHORTS,
    AIMeta,
    CalendarEvent,
    Cohort,
    CohortEvents,
    CohortMyWeekAnalysis,
    NewsletterPayload,
    WeekEvent,
    WeekEventType,
)
from cohort_dashboard.services.ai.model_chain import (
    AIExhaustedError,
    MalformedResponseError,
    ModelFallbackChain,
    parse_json_object,
)
from cohort_dashboard.services.myweek.week_window import WeekWindow, compute_week_window, local_date
from cohort_dashboard.services.newsletter.organizer import strip_tags

logger = get_logger(__name__)

NO_EVENTS_SUMMARY = "No events found for this week."
DESCRIPTION_LIMIT = 150

WEEK_EVENT_TYPES = set(get_args(WeekEventType))
TYPE_ALIASES = {
    "academic": "class",
    "calendar": "other",
    "deadline": "assignment",
    "event": "social",
    "announcement": "administrative",
    "reminder": "administrative",
}

_FALLBACK_DATE_RE = re.compile(
    r"\b(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun)[a-z]*,?\s+"
    r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+(\d{1,2})(?:,?\s+(\d{4}))?\b",
    re.IGNORECASE,
)
_MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

SYSTEM_MESSAGE = (
    "You are a helpful assistant that analyzes calendar and newsletter content "
    "to create weekly summaries for students. Always return valid JSON."
)


class WeeklySynthesisError(Exception):
    """Raised when a cohort's weekly synthesis cannot be produced."""

    def __init__(
        self,
        message: str,
        cohort: str | None = None,
        models_tried: list[str] | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.cohort = cohort
        self.models_tried = models_tried or []
        self.recoverable = recoverable


@dataclass
class CohortWeekResult:
    events: list[WeekEvent]
    summary: str
    ai_meta: AIMeta = field(default_factory=AIMeta)


def _truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _first_link(html: str) -> str | None:
    anchor = BeautifulSoup(html or "", "html.parser").find("a", href=True)
    return anchor["href"] if anchor else None


def _fallback_dates(text: str, window: WeekWindow) -> list[date]:
    """'Weekday, Mon D[, YYYY]' mentions that land inside the window."""
    found: list[date] = []
    for month_name, day, year in _FALLBACK_DATE_RE.findall(text):
        month = _MONTHS.index(month_name[:3].lower()) + 1
        years = [int(year)] if year else sorted({window.start.year, window.end.year})
        for candidate_year in years:
            try:
                candidate = date(candidate_year, month, int(day))
            except ValueError:
                continue
            if window.contains(candidate) and candidate not in found:
                found.append(candidate)
    return found


def extract_newsletter_events(
    newsletter: NewsletterPayload | None, window: WeekWindow
) -> list[WeekEvent]:
    """Newsletter items dated inside the window, tagged as ``newsletter`` events."""
    if newsletter is None:
        return []

    events: list[WeekEvent] = []
    for section, item in newsletter.iter_items():
        text = strip_tags(item.html)
        info = item.time_sensitive

        if info and info.dates:
            relevant = sorted(
                d for d in (local_date(v, window.tz) for v in info.dates) if d and window.contains(d)
            )
            if not relevant:
                continue
            deadline = local_date(info.deadline, window.tz) if info.deadline else None
            when = deadline if deadline and window.contains(deadline) else relevant[0]
            priority = info.priority
        else:
            relevant = _fallback_dates(text, window)
            if not relevant:
                continue
            when = relevant[0]
            priority = "low"

        events.append(
            WeekEvent(
                date=when.isoformat(),
                title=item.title,
                type="newsletter",
                priority=priority,
                description=_truncate(f"{section.section_title}: {text}") if text else None,
                url=_first_link(item.html),
            )
        )

    logger.info("Newsletter events found for week", count=len(events), week_start=window.week_start)
    return events


def filter_calendar_events(events: list[CalendarEvent], window: WeekWindow) -> list[CalendarEvent]:
    return [e for e in events if (d := local_date(e.start, window.tz)) and window.contains(d)]


def _format_time(event: CalendarEvent, window: WeekWindow) -> str | None:
    if event.all_day:
        return None
    start = datetime.fromisoformat(event.start.replace("Z", "+00:00"))
    if start.tzinfo is not None:
        start = start.astimezone(window.tz)
    return start.strftime("%I:%M %p").lstrip("0")


def _build_prompt(
    cohort: Cohort,
    calendar_events: list[CalendarEvent],
    newsletter_events: list[WeekEvent],
    window: WeekWindow,
) -> str:
    calendar_content = "\n\n".join(
        f"Date: {local_date(e.start, window.tz)}\n"
        f"Time: {_format_time(e, window) or 'All day'}\n"
        f"Title: {e.title}\n"
        f"Description: {_truncate(e.description or 'No description', 300)}\n"
        f"Location: {e.location or 'No location'}\n"
        f"URL: {e.url or 'No URL'}"
        for e in calendar_events
    )
    newsletter_content = "\n\n".join(
        f"Date: {e.date}\nTitle: {e.title}\nPriority: {e.priority}\n"
        f"Content: {e.description or ''}\nURL: {e.url or 'No URL'}"
        for e in newsletter_events
    )

    return f"""Analyze the following calendar events and newsletter content for the {cohort} cohort
for the week of {window.week_start} to {window.week_end}.

CALENDAR EVENTS:
{calendar_content or 'No calendar events found for this week.'}

NEWSLETTER HIGHLIGHTS:
{newsletter_content or 'No newsletter events found for this week.'}

REQUIREMENTS:
1. Extract and organize ALL relevant events for this specific week.
2. Categorize each event as one of: assignment, class, exam, administrative, social, newsletter, other.
   Use "newsletter" for items that come from the newsletter.
3. Assign a priority (high, medium, low) where it can be inferred.
4. Format dates as YYYY-MM-DD and times in 12-hour format (e.g. "6:00 PM").
5. Keep descriptions under 150 characters. Preserve URLs exactly.
6. Only include events between {window.week_start} and {window.week_end}.
7. Write a 2-3 sentence summary of what the student should prioritize.

Return ONLY a JSON object:
{{
  "events": [
    {{"date": "YYYY-MM-DD", "time": "6:00 PM", "title": "Event Title", "type": "class",
      "priority": "medium", "description": "Brief description", "location": "", "url": ""}}
  ],
  "summary": "This week focuses on..."
}}"""


def parse_week_response(text: str) -> dict[str, Any]:
    result = parse_json_object(text)
    events = result.get("events")
    if events is None:
        events = []
    if not isinstance(events, list):
        raise MalformedResponseError("Weekly synthesis 'events' is not a list")
    summary = result.get("summary") or result.get("aiSummary") or ""
    return {"events": events, "summary": str(summary).strip()}


def _normalize_ai_event(raw: Any, window: WeekWindow) -> WeekEvent | None:
    if not isinstance(raw, dict) or not raw.get("title"):
        return None

    day = local_date(str(raw.get("date") or ""), window.tz)
    if day is None or not window.contains(day):
        return None

    event_type = str(raw.get("type") or "other").lower()
    event_type = event_type if event_type in WEEK_EVENT_TYPES else TYPE_ALIASES.get(event_type, "other")
    priority = raw.get("priority") if raw.get("priority") in ("high", "medium", "low") else None

    try:
        return WeekEvent(
            date=day.isoformat(),
            time=raw.get("time") or None,
            title=str(raw["title"]),
            type=event_type,
            priority=priority,
            description=_truncate(str(raw["description"])) if raw.get("description") else None,
            location=raw.get("location") or None,
            url=raw.get("url") or None,
        )
    except ValidationError as e:
        logger.warning("Dropping malformed AI week event", title=raw.get("title"), error=str(e)[:200])
        return None


def merge_newsletter_events(events: list[WeekEvent], newsletter_events: list[WeekEvent]) -> list[WeekEvent]:
    """Add newsletter items the model dropped; order by date, stable within a day."""
    seen = {(e.date, e.title.strip().lower()) for e in events}
    merged = list(events)
    for event in newsletter_events:
        key = (event.date, event.title.strip().lower())
        if key not in seen:
            seen.add(key)
            merged.append(event)
    merged.sort(key=lambda e: e.date)
    return merged


class WeeklySynthesizer:
    def __init__(self, chain: ModelFallbackChain, tz_name: str | None = None):
        self.chain = chain
        self.tz_name = tz_name

    async def analyze(
        self,
        cohort_events: CohortEvents,
        newsletter: NewsletterPayload | None,
        now: datetime,
    ) -> CohortMyWeekAnalysis:
        """Never raises for AI failures; each cohort degrades on its own."""
        started = time.monotonic()
        window = compute_week_window(now, self.tz_name)
        newsletter_events = extract_newsletter_events(newsletter, window)

        results = await asyncio.gather(
            *(
                self._analyze_cohort(cohort, cohort_events.for_cohort(cohort), newsletter_events, window)
                for cohort in COHORTS
            )
        )
        by_cohort = dict(zip(COHORTS, results))

        analysis = CohortMyWeekAnalysis(
            week_start=window.week_start,
            week_end=window.week_end,
            blue_events=by_cohort["blue"].events,
            gold_events=by_cohort["gold"].events,
            blue_summary=by_cohort["blue"].summary,
            gold_summary=by_cohort["gold"].summary,
            processing_time=int((time.monotonic() - started) * 1000),
            ai_meta={cohort: result.ai_meta for cohort, result in by_cohort.items()},
        )
        logger.info(
            "Weekly synthesis completed",
            week_start=analysis.week_start,
            week_end=analysis.week_end,
            blue_events=len(analysis.blue_events),
            gold_events=len(analysis.gold_events),
            processing_time_ms=analysis.processing_time,
        )
        return analysis

    async def _analyze_cohort(
        self,
        cohort: Cohort,
        calendar_events: list[CalendarEvent],
        newsletter_events: list[WeekEvent],
        window: WeekWindow,
    ) -> CohortWeekResult:
        try:
            return await self.synthesize_cohort(cohort, calendar_events, newsletter_events, window)
        except WeeklySynthesisError as e:
            logger.warning("Weekly synthesis degraded for cohort", cohort=cohort, error=str(e))
            return CohortWeekResult(
                events=[], summary=NO_EVENTS_SUMMARY, ai_meta=AIMeta(models_tried=e.models_tried)
            )
        except Exception as e:
            logger.error(
                "Weekly synthesis failed unexpectedly for cohort",
                cohort=cohort,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CohortWeekResult(events=[], summary=NO_EVENTS_SUMMARY)

    async def synthesize_cohort(
        self,
        cohort: Cohort,
        calendar_events: list[CalendarEvent],
        newsletter_events: list[WeekEvent],
        window: WeekWindow,
    ) -> CohortWeekResult:
        """
        Raises:
            WeeklySynthesisError: the model chain was exhausted for this cohort
        """
        week_events = filter_calendar_events(calendar_events, window)
        if not week_events and not newsletter_events:
            logger.info("No events in window, skipping AI call", cohort=cohort)
            return CohortWeekResult(events=[], summary=NO_EVENTS_SUMMARY)

        try:
            result = await self.chain.run(
                SYSTEM_MESSAGE,
                _build_prompt(cohort, week_events, newsletter_events, window),
                parse=parse_week_response,
                label=f"weekly_synthesis_{cohort}",
            )
        except AIExhaustedError as e:
            raise WeeklySynthesisError(str(e), cohort=cohort, models_tried=e.models_tried) from e

        ai_events = [
            event
            for event in (_normalize_ai_event(raw, window) for raw in result.parsed["events"])
            if event is not None
        ]
        return CohortWeekResult(
            events=merge_newsletter_events(ai_events, newsletter_events),
            summary=result.parsed["summary"] or NO_EVENTS_SUMMARY,
            ai_meta=AIMeta(model=result.model, models_tried=result.models_tried, ms=result.ms),
        )
