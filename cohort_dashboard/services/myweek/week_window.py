"""
Canonical "this week" window.

The window is anchored to today's date in the dashboard timezone (not the
caller's), runs Sunday through the following Sunday, and is identical for
every request made at the same wall-clock instant.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from cohort_dashboard.config import settings

WEEK_LENGTH = timedelta(days=7)


@dataclass(frozen=True)
class WeekWindow:
    start: date
    end: date
    tz: ZoneInfo

    def contains(self, day: date) -> bool:
        # both Sundays are inclusive
        return self.start <= day <= self.end

    @property
    def week_start(self) -> str:
        return self.start.isoformat()

    @property
    def week_end(self) -> str:
        return self.end.isoformat()


def compute_week_window(now: datetime, tz_name: str | None = None) -> WeekWindow:
    tz = ZoneInfo(tz_name or settings.DASHBOARD_TIMEZONE)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    today = now.astimezone(tz).date()
    days_since_sunday = (today.weekday() + 1) % 7
    start = today - timedelta(days=days_since_sunday)
    return WeekWindow(start=start, end=start + WEEK_LENGTH, tz=tz)


def local_date(value: str, tz: ZoneInfo) -> date | None:
    """Calendar date of an ISO date or datetime string, in ``tz``."""
    if not value:
        return None
    value = value.strip()
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.date()
    return parsed.astimezone(tz).date()
