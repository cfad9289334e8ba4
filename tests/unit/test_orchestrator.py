import asyncio

import pytest
from conftest import (
    FIXED_NOW,
    TZ,
    StubCalendarClient,
    StubOrganizer,
    StubScraper,
    make_chain,
    week_summary_response,
)

from cohort_dashboard.services.cache.keys import CacheKey, CacheSource
from cohort_dashboard.services.calendar.ics_client import CalendarFetchError
from cohort_dashboard.services.dashboard.orchestrator import (
    SOURCE_FRESH,
    DashboardOrchestrator,
    DashboardUnavailableError,
)
from cohort_dashboard.services.myweek.analyzer import NO_EVENTS_SUMMARY, WeeklySynthesizer
from cohort_dashboard.services.newsletter.organizer import (
    FALLBACK_SECTION_TITLE,
    NewsletterOrganizationError,
)
from cohort_dashboard.services.newsletter.scraper import NewsletterScrapeError


class SlowCalendarClient(StubCalendarClient):
    async def get_cohort_events(self, days_ahead=None, limit=None):
        await asyncio.sleep(5)
        return self.events


def build_orchestrator(cache, scraper, organizer, calendar_client, timeout=5.0):
    synthesizer = WeeklySynthesizer(make_chain({"gpt-4o-mini": week_summary_response()}), TZ)
    return DashboardOrchestrator(
        cache,
        scraper,
        organizer,
        calendar_client,
        synthesizer,
        clock=lambda: FIXED_NOW,
        pipeline_timeout=timeout,
        tz_name=TZ,
    )


@pytest.mark.asyncio
async def test_cache_miss_runs_pipeline_and_writes_all_keys(
    hybrid_cache, fake_primary, raw_newsletter, organized_newsletter, cohort_events
):
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(raw_newsletter),
        StubOrganizer(organized_newsletter),
        StubCalendarClient(cohort_events),
    )

    response = await orchestrator.get_dashboard()

    assert response.source == SOURCE_FRESH
    assert response.data.newsletter_data.sections[0].section_title == "Deadlines"
    assert response.data.processing_info.timestamp
    assert set(fake_primary.store) == {
        "newsletter-data",
        "myweek-data",
        "dashboard-data",
        "cohort-events",
    }


@pytest.mark.asyncio
async def test_cache_hit_skips_pipeline(hybrid_cache, raw_newsletter, organized_newsletter, cohort_events):
    scraper = StubScraper(raw_newsletter)
    orchestrator = build_orchestrator(
        hybrid_cache, scraper, StubOrganizer(organized_newsletter), StubCalendarClient(cohort_events)
    )

    first = await orchestrator.get_dashboard()
    second = await orchestrator.get_dashboard()

    assert scraper.calls == 1
    assert second.source == CacheSource.PRIMARY.value
    assert second.data.processing_info.timestamp == first.data.processing_info.timestamp


@pytest.mark.asyncio
async def test_forced_refresh_reruns_pipeline(hybrid_cache, raw_newsletter, organized_newsletter, cohort_events):
    scraper = StubScraper(raw_newsletter)
    orchestrator = build_orchestrator(
        hybrid_cache, scraper, StubOrganizer(organized_newsletter), StubCalendarClient(cohort_events)
    )

    first = await orchestrator.get_dashboard(force_refresh=True)
    second = await orchestrator.get_dashboard(force_refresh=True)

    assert scraper.calls == 2
    assert second.source == SOURCE_FRESH
    assert first.data.processing_info.timestamp != second.data.processing_info.timestamp


@pytest.mark.asyncio
async def test_organizer_failure_serves_unorganized_newsletter(
    hybrid_cache, fake_primary, raw_newsletter, cohort_events
):
    organizer = StubOrganizer(error=NewsletterOrganizationError("AI down", models_tried=["gpt-4o-mini"]))
    orchestrator = build_orchestrator(
        hybrid_cache, StubScraper(raw_newsletter), organizer, StubCalendarClient(cohort_events)
    )

    response = await orchestrator.get_dashboard()

    sections = response.data.newsletter_data.sections
    assert len(sections) == 1
    assert sections[0].section_title == FALLBACK_SECTION_TITLE
    assert len(sections[0].items) == 2
    assert response.data.newsletter_data.ai_debug_info.models_tried == ["gpt-4o-mini"]
    assert "newsletter-data" not in fake_primary.store
    assert "dashboard-data" not in fake_primary.store
    assert "cohort-events" in fake_primary.store


@pytest.mark.asyncio
async def test_calendar_failure_yields_empty_buckets(
    hybrid_cache, fake_primary, raw_newsletter, organized_newsletter
):
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(raw_newsletter),
        StubOrganizer(organized_newsletter),
        StubCalendarClient(error=CalendarFetchError("feed unreachable")),
    )

    response = await orchestrator.get_dashboard()

    data = response.data
    assert data.cohort_events.blue == []
    assert data.cohort_events.gold == []
    assert data.my_week_data.blue_summary == NO_EVENTS_SUMMARY
    assert data.my_week_data.gold_summary == NO_EVENTS_SUMMARY
    assert data.my_week_data.blue_events == []
    assert data.my_week_data.gold_events == []
    assert data.newsletter_data.sections[0].section_title == "Deadlines"
    assert "cohort-events" not in fake_primary.store
    assert "dashboard-data" not in fake_primary.store


@pytest.mark.asyncio
async def test_scrape_failure_uses_cached_newsletter(hybrid_cache, organized_newsletter, cohort_events):
    await hybrid_cache.set(CacheKey.NEWSLETTER_DATA, organized_newsletter)
    calendar_client = StubCalendarClient(cohort_events)
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(error=NewsletterScrapeError("archive down")),
        StubOrganizer(organized_newsletter),
        calendar_client,
    )

    result = await orchestrator.run_pipeline()

    assert result.newsletter_from_cache is True
    assert result.dashboard.newsletter_data.sections[0].items[0].title == "Problem Set 3"
    assert calendar_client.calls == 1
    assert not result.fully_succeeded


@pytest.mark.asyncio
async def test_scrape_failure_without_cache_is_unrecoverable(hybrid_cache, cohort_events):
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(error=NewsletterScrapeError("archive down")),
        StubOrganizer(),
        StubCalendarClient(cohort_events),
    )

    with pytest.raises(DashboardUnavailableError) as exc:
        await orchestrator.get_dashboard()

    assert "archive down" in str(exc.value)


@pytest.mark.asyncio
async def test_pipeline_timeout_is_unrecoverable(hybrid_cache, raw_newsletter, organized_newsletter):
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(raw_newsletter),
        StubOrganizer(organized_newsletter),
        SlowCalendarClient(),
        timeout=0.05,
    )

    with pytest.raises(DashboardUnavailableError):
        await orchestrator.run_pipeline()


@pytest.mark.asyncio
async def test_calendar_only_run_skips_newsletter(hybrid_cache, fake_primary, cohort_events):
    scraper = StubScraper(error=NewsletterScrapeError("should not be called"))
    orchestrator = build_orchestrator(
        hybrid_cache, scraper, StubOrganizer(), StubCalendarClient(cohort_events)
    )

    result = await orchestrator.run_pipeline(include_newsletter=False)
    written = await orchestrator.cache_pipeline_result(result, write_static=True)

    assert scraper.calls == 0
    assert result.dashboard.newsletter_data.sections == []
    assert written == ["cohort-events", "myweek-data"]
    assert set(fake_primary.store) == {"cohort-events", "myweek-data"}


@pytest.mark.asyncio
async def test_processing_info_records_stage_timings(
    hybrid_cache, raw_newsletter, organized_newsletter, cohort_events
):
    orchestrator = build_orchestrator(
        hybrid_cache,
        StubScraper(raw_newsletter),
        StubOrganizer(organized_newsletter),
        StubCalendarClient(cohort_events),
    )

    result = await orchestrator.run_pipeline()

    info = result.dashboard.processing_info
    assert info.total_time >= info.my_week_time
    assert result.newsletter.duration_ms == info.newsletter_time
    assert result.calendar.duration_ms == info.calendar_time
