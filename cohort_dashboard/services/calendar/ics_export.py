"""
Subscribable iCalendar feed built from the cohort buckets and dated newsletter items.

Calendar apps poll the export URL with bucket flags in the query string; the
feed is rebuilt on every request with ``icalendar``.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta

import icalendar

from cohort_dashboard.models.domain.dashboard_domain import (
    CalendarEvent,
    CohortEvents,
    NewsletterPayload,
)
from cohort_dashboard.services.calendar.ics_client import event_start
from cohort_dashboard.services.newsletter.organizer import strip_tags

PRODID = "-//Cohort Dashboard//Cohort Calendar//EN"
DEFAULT_CALENDAR_NAME = "Cohort Dashboard Calendar"
EXPORT_DAYS_AHEAD = 365
EXPORT_LIMIT = 500
NEWSLETTER_DESCRIPTION_LIMIT = 500

TRUTHY = {"1", "true"}

# query flag -> CohortEvents bucket
BUCKET_FLAGS = {
    "blue": "blue",
    "gold": "gold",
    "uclaunch": "launch",
    "calbears": "cal_bears",
    "campusgroups": "campus_groups",
}

SOURCE_CATEGORIES = {
    "uc_launch": "UC Launch",
    "cal_bears": "Cal Bears",
    "campus_groups": "Campus Groups",
}


@dataclass
class ExportFilter:
    blue: bool = False
    gold: bool = False
    uclaunch: bool = False
    calbears: bool = False
    campusgroups: bool = False
    newsletter: bool = False

    @classmethod
    def from_params(cls, params) -> "ExportFilter":
        """Flags are off unless given as ``1`` or ``true``; ``all`` turns every flag on.

        With no flag set the feed defaults to blue cohort classes.
        """
        if _truthy(params.get("all")):
            return cls(**{f.name: True for f in fields(cls)})

        selected = cls(**{f.name: _truthy(params.get(f.name)) for f in fields(cls)})
        if not selected.any():
            selected.blue = True
        return selected

    def any(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def needs_calendar(self) -> bool:
        return any(getattr(self, flag) for flag in BUCKET_FLAGS)

    def calendar_name(self) -> str:
        parts = []
        if self.blue and not self.gold:
            parts.append("Blue")
        if self.gold and not self.blue:
            parts.append("Gold")
        if self.calbears:
            parts.append("Cal Bears")
        if self.newsletter:
            parts.append("Newsletter")
        if self.uclaunch:
            parts.append("UC Launch")
        if not parts:
            return DEFAULT_CALENDAR_NAME
        return " - ".join(["Cohort Dashboard", *parts])


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in TRUTHY


def select_calendar_events(events: CohortEvents, selected: ExportFilter) -> list[CalendarEvent]:
    chosen: list[CalendarEvent] = []
    for flag, bucket in BUCKET_FLAGS.items():
        if getattr(selected, flag):
            chosen.extend(getattr(events, bucket))
    return chosen


def _item_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def newsletter_calendar_events(newsletter: NewsletterPayload) -> list[CalendarEvent]:
    """One all-day event per distinct date on each time-sensitive item."""
    events = []
    for section, item in newsletter.iter_items():
        info = item.time_sensitive
        if info is None:
            continue
        raw_dates = info.dates or ([info.deadline] if info.deadline else [])

        seen: set[date] = set()
        for raw in raw_dates:
            day = _item_date(raw)
            if day is None or day in seen:
                continue
            seen.add(day)
            slug = "".join(ch for ch in item.title[:20] if ch.isalnum())
            events.append(
                CalendarEvent(
                    uid=f"newsletter-{slug}-{day.isoformat()}@cohort-dashboard",
                    title=item.title,
                    start=day.isoformat(),
                    all_day=True,
                    description=strip_tags(item.html)[:NEWSLETTER_DESCRIPTION_LIMIT],
                    source="newsletter",
                    categories=["Newsletter", section.section_title or "Announcement"],
                )
            )
    return events


def _categories(event: CalendarEvent) -> list[str]:
    source = (event.source or "").lower()
    if source == "newsletter":
        return event.categories or ["Newsletter"]
    for marker, label in SOURCE_CATEGORIES.items():
        if marker in source:
            return [label]

    categories = ["Class"]
    if event.cohort:
        categories.append(f"Cohort {event.cohort.capitalize()}")
    return categories


def _fallback_uid(event: CalendarEvent) -> str:
    slug = "".join(ch for ch in f"{event.title}{event.start}" if ch.isalnum())
    return f"{slug}@cohort-dashboard"


def to_vevent(event: CalendarEvent, stamp: datetime) -> icalendar.Event:
    vevent = icalendar.Event()
    vevent.add("uid", event.uid or _fallback_uid(event))
    vevent.add("dtstamp", stamp)
    vevent.add("summary", event.title)

    if event.all_day:
        start_day = _item_date(event.start)
        end_day = _item_date(event.end) if event.end else None
        vevent.add("dtstart", start_day)
        # DTEND is exclusive for all-day events
        vevent.add("dtend", (end_day or start_day) + timedelta(days=1))
    else:
        vevent.add("dtstart", event_start(event))
        if event.end:
            vevent.add("dtend", event_start(event.model_copy(update={"start": event.end})))

    if event.description:
        description = strip_tags(event.description)
        if description:
            vevent.add("description", description)
    if event.location:
        vevent.add("location", event.location)
    if event.url:
        vevent.add("url", event.url)

    vevent.add("categories", _categories(event))
    vevent.add("status", "CONFIRMED")
    if event.source:
        vevent.add("x-cohort-dashboard-source", event.source)
    return vevent


def build_calendar(events: list[CalendarEvent], name: str, tz_name: str, stamp: datetime) -> bytes:
    calendar = icalendar.Calendar()
    calendar.add("prodid", PRODID)
    calendar.add("version", "2.0")
    calendar.add("calscale", "GREGORIAN")
    calendar.add("method", "PUBLISH")
    calendar.add("x-wr-calname", name)
    calendar.add("x-wr-timezone", tz_name)

    for event in events:
        calendar.add_component(to_vevent(event, stamp))
    return calendar.to_ical()
