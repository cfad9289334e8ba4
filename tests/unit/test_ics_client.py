from datetime import UTC, datetime

import pytest

from cohort_dashboard.services.calendar.ics_client import (
    CalendarClient,
    CalendarFetchError,
    filter_events_by_date_range,
    parse_ics_events,
)

NOW = datetime(2025, 9, 18, 17, 0, tzinfo=UTC)

ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//EN
BEGIN:VEVENT
UID:evt-1
SUMMARY:Microeconomics
DTSTART:20250916T160000Z
DTEND:20250916T190000Z
LOCATION:Chou Hall
END:VEVENT
BEGIN:VEVENT
UID:evt-2
SUMMARY:Orientation
DTSTART;VALUE=DATE:20250920
END:VEVENT
BEGIN:VEVENT
UID:evt-3
SUMMARY:Last Year
DTSTART:20240101T160000Z
END:VEVENT
END:VCALENDAR
"""


def test_parse_ics_events_tags_cohort_and_all_day():
    events = parse_ics_events(ICS, cohort="blue", source="blue.ics")

    by_uid = {e.uid: e for e in events}
    assert by_uid["evt-1"].title == "Microeconomics"
    assert by_uid["evt-1"].location == "Chou Hall"
    assert by_uid["evt-1"].all_day is False
    assert by_uid["evt-2"].all_day is True
    assert by_uid["evt-2"].start.startswith("2025-09-20T00:00:00")
    assert all(e.cohort == "blue" and e.source == "blue.ics" for e in events)


def test_filter_events_by_date_range_drops_old_and_caps():
    events = parse_ics_events(ICS)

    kept = filter_events_by_date_range(events, NOW, days_ahead=150, limit=1)

    assert [e.uid for e in kept] == ["evt-1"]


@pytest.mark.asyncio
async def test_get_cohort_events_reads_local_files(tmp_path):
    blue = tmp_path / "blue.ics"
    blue.write_text(ICS, encoding="utf-8")
    client = CalendarClient(
        cohort_sources={"blue": [str(blue)], "gold": []},
        auxiliary_sources={"original": None, "launch": str(tmp_path / "missing.ics")},
        clock=lambda: NOW,
    )

    events = await client.get_cohort_events()

    assert [e.uid for e in events.blue] == ["evt-1", "evt-2"]
    assert events.gold == []
    assert events.launch == []


@pytest.mark.asyncio
async def test_cohort_fails_when_every_source_fails(httpx_mock):
    httpx_mock.add_response(url="https://calendar.example.com/blue.ics", status_code=500)
    client = CalendarClient(
        cohort_sources={"blue": ["https://calendar.example.com/blue.ics"], "gold": []},
        auxiliary_sources={},
        clock=lambda: NOW,
    )

    with pytest.raises(CalendarFetchError):
        await client.get_cohort_events()


@pytest.mark.asyncio
async def test_one_failing_source_does_not_fail_the_cohort(httpx_mock, tmp_path):
    httpx_mock.add_response(url="https://calendar.example.com/extra.ics", status_code=404)
    gold = tmp_path / "gold.ics"
    gold.write_text(ICS, encoding="utf-8")
    client = CalendarClient(
        cohort_sources={"blue": [], "gold": [str(gold), "https://calendar.example.com/extra.ics"]},
        auxiliary_sources={},
        clock=lambda: NOW,
    )

    events = await client.get_cohort_events()

    assert len(events.gold) == 2
    assert all(e.cohort == "gold" for e in events.gold)
