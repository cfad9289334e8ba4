# cohort_dashboard/services/calendar/ics_client.py
"""
Calendar (ICS) collaborator.

Loads cohort and auxiliary ICS feeds from URLs or local files, parses them
with ``icalendar`` and partitions the events into the six named buckets used
by the dashboard.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import httpx
import icalendar

from cohort_dashboard.config import ROOT_PATH, settings
from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.domain.dashboard_domain import (
    COHORTS,
    CalendarEvent,
    Cohort,
    CohortEvents,
)

logger = get_logger(__name__)

PAST_WINDOW_DAYS = 120
AUXILIARY_HORIZON_MULTIPLIER = 6


class CalendarFetchError(Exception):
    """Raised when a cohort calendar cannot be loaded from any of its sources."""

    def __init__(self, message: str, source: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.source = source
        self.recoverable = recoverable


def _source_name(source: str) -> str:
    return source.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0] or source


def _text_value(component, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _categories(component) -> list[str] | None:
    raw = component.get("CATEGORIES")
    if raw is None:
        return None
    values = raw if isinstance(raw, list) else [raw]
    categories: list[str] = []
    for value in values:
        categories.extend(str(c) for c in getattr(value, "cats", [value]))
    return categories or None


def _to_datetime(value: date | datetime, tz: ZoneInfo) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=tz)
    return datetime(value.year, value.month, value.day, tzinfo=tz)


def parse_ics_events(
    ics_text: str,
    cohort: Cohort | None = None,
    source: str | None = None,
    tz: ZoneInfo | None = None,
) -> list[CalendarEvent]:
    """Parse VEVENTs into CalendarEvent objects, tagging cohort and source."""
    tz = tz or ZoneInfo(settings.DASHBOARD_TIMEZONE)
    calendar = icalendar.Calendar.from_ical(ics_text)

    events: list[CalendarEvent] = []
    for component in calendar.walk("VEVENT"):
        dtstart = component.get("DTSTART")
        if dtstart is None:
            continue

        start_value = dtstart.dt
        all_day = not isinstance(start_value, datetime)
        start = _to_datetime(start_value, tz)

        dtend = component.get("DTEND")
        end = _to_datetime(dtend.dt, tz) if dtend is not None else None

        events.append(
            CalendarEvent(
                uid=_text_value(component, "UID"),
                title=_text_value(component, "SUMMARY") or "Untitled",
                start=start.isoformat(),
                end=end.isoformat() if end else None,
                all_day=all_day,
                location=_text_value(component, "LOCATION"),
                url=_text_value(component, "URL"),
                description=_text_value(component, "DESCRIPTION"),
                cohort=cohort,
                source=source,
                categories=_categories(component),
            )
        )

    return events


def event_start(event: CalendarEvent) -> datetime:
    start = datetime.fromisoformat(event.start.replace("Z", "+00:00"))
    return start if start.tzinfo else start.replace(tzinfo=UTC)


def filter_events_by_date_range(
    events: list[CalendarEvent],
    now: datetime,
    days_ahead: int,
    limit: int,
) -> list[CalendarEvent]:
    """Keep events from the past 120 days up to the horizon, sorted by start and capped."""
    past_limit = now - timedelta(days=PAST_WINDOW_DAYS)
    horizon = now + timedelta(days=days_ahead)

    in_range = [e for e in events if past_limit < event_start(e) < horizon]
    in_range.sort(key=event_start)
    return in_range[:limit]


class CalendarClient:
    """Fetches every configured feed and assembles ``CohortEvents``."""

    def __init__(
        self,
        cohort_sources: dict[str, list[str]] | None = None,
        auxiliary_sources: dict[str, str | None] | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cohort_sources = cohort_sources if cohort_sources is not None else settings.cohort_sources()
        self.auxiliary_sources = (
            auxiliary_sources if auxiliary_sources is not None else settings.auxiliary_sources()
        )
        self.timeout = timeout or settings.CALENDAR_TIMEOUT_SECONDS
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _load_source(self, source: str) -> str:
        if source.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(source)
                    response.raise_for_status()
                    return response.text
            except httpx.HTTPError as e:
                raise CalendarFetchError(f"Failed to fetch ICS: {e}", source) from e

        path = Path(source)
        if not path.is_absolute():
            path = ROOT_PATH / "public" / path
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            raise CalendarFetchError(f"Could not read ICS file: {e}", source) from e
        if not content.strip():
            raise CalendarFetchError("ICS file is empty", source)
        return content

    async def _events_from_source(self, source: str, cohort: Cohort | None) -> list[CalendarEvent]:
        text = await self._load_source(source)
        try:
            return parse_ics_events(text, cohort=cohort, source=_source_name(source))
        except ValueError as e:
            raise CalendarFetchError(f"Malformed ICS data: {e}", source) from e

    async def fetch_cohort(self, cohort: Cohort) -> list[CalendarEvent]:
        """
        Merge events from every source configured for the cohort.

        Raises:
            CalendarFetchError: sources are configured but none could be loaded
        """
        sources = self.cohort_sources.get(cohort, [])
        if not sources:
            logger.warning("No calendar sources configured for cohort", cohort=cohort)
            return []

        results = await asyncio.gather(
            *(self._events_from_source(source, cohort) for source in sources),
            return_exceptions=True,
        )

        events: list[CalendarEvent] = []
        failures = []
        for source, result in zip(sources, results):
            if isinstance(result, Exception):
                failures.append(source)
                logger.warning(
                    "Calendar source failed", cohort=cohort, source=source, error=str(result)
                )
            else:
                events.extend(result)

        if len(failures) == len(sources):
            raise CalendarFetchError(f"All calendar sources failed for {cohort} cohort")

        return events

    async def fetch_auxiliary(self, name: str) -> list[CalendarEvent]:
        source = self.auxiliary_sources.get(name)
        if not source:
            return []
        try:
            return await self._events_from_source(source, None)
        except CalendarFetchError as e:
            logger.warning("Auxiliary calendar unavailable, continuing without it", bucket=name, error=str(e))
            return []

    async def get_cohort_events(self, days_ahead: int | None = None, limit: int | None = None) -> CohortEvents:
        days_ahead = days_ahead or settings.CALENDAR_DAYS_AHEAD
        limit = limit or settings.CALENDAR_EVENT_LIMIT
        now = self.clock()

        results = await asyncio.gather(
            *(self.fetch_cohort(cohort) for cohort in COHORTS),
            self.fetch_auxiliary("original"),
            self.fetch_auxiliary("launch"),
            self.fetch_auxiliary("calBears"),
            self.fetch_auxiliary("campusGroups"),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                raise result
        blue, gold, original, launch, cal_bears, campus_groups = results

        aux_horizon = days_ahead * AUXILIARY_HORIZON_MULTIPLIER
        cohort_events = CohortEvents(
            blue=filter_events_by_date_range(blue, now, days_ahead, limit),
            gold=filter_events_by_date_range(gold, now, days_ahead, limit),
            original=filter_events_by_date_range(original, now, days_ahead * 2, limit * 2),
            launch=filter_events_by_date_range(launch, now, aux_horizon, limit),
            cal_bears=filter_events_by_date_range(cal_bears, now, aux_horizon, limit),
            campus_groups=filter_events_by_date_range(campus_groups, now, aux_horizon, limit),
        )

        logger.info(
            "Cohort events fetched",
            blue=len(cohort_events.blue),
            gold=len(cohort_events.gold),
            original=len(cohort_events.original),
            launch=len(cohort_events.launch),
            cal_bears=len(cohort_events.cal_bears),
            campus_groups=len(cohort_events.campus_groups),
        )
        return cohort_events
