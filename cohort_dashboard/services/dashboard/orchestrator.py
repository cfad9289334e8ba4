# cohort_dashboard/services/dashboard/orchestrator.py
"""
Dashboard Orchestrator

Produces ``UnifiedDashboardData`` either from the hybrid cache or by running
the pipeline:

    Stage A  newsletter: archive -> scrape -> AI organize   \
                                                             > settle-all join
    Stage B  calendar: cohort ICS feeds -> six buckets      /
    Stage C  weekly synthesis per cohort (after A and B settle)

Every stage is wrapped so it settles to a value: failures become typed
fallbacks (catch-all newsletter section, empty buckets, "no events" summary)
and are recorded in the stage outcome. The request fails only when no
newsletter can be produced from either the source or the cache, or when the
pipeline exceeds its master timeout.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger, log_stage_timing
from cohort_dashboard.models.domain.dashboard_domain import (
    CohortEvents,
    CohortMyWeekAnalysis,
    NewsletterPayload,
    ProcessingInfo,
    UnifiedDashboardData,
)
from cohort_dashboard.services.cache.hybrid_cache import HybridCache
from cohort_dashboard.services.cache.keys import CacheKey
from cohort_dashboard.services.myweek.analyzer import NO_EVENTS_SUMMARY, WeeklySynthesizer
from cohort_dashboard.services.myweek.week_window import compute_week_window
from cohort_dashboard.services.newsletter.organizer import (
    NewsletterOrganizationError,
    NewsletterOrganizer,
    build_fallback_newsletter,
)

logger = get_logger(__name__)

SOURCE_FRESH = "fresh"


class DashboardUnavailableError(Exception):
    """Raised when neither the live pipeline nor the cache can produce a dashboard."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass
class StageOutcome:
    name: str
    value: Any
    ok: bool
    duration_ms: int
    error: str | None = None


@dataclass
class PipelineResult:
    dashboard: UnifiedDashboardData
    newsletter: StageOutcome
    calendar: StageOutcome
    my_week: StageOutcome
    newsletter_from_cache: bool = False
    newsletter_skipped: bool = False

    @property
    def fully_succeeded(self) -> bool:
        return (
            self.newsletter.ok
            and not self.newsletter_skipped
            and not self.newsletter_from_cache
            and self.dashboard.newsletter_data.is_organized()
            and self.calendar.ok
            and self.my_week.ok
        )


@dataclass
class DashboardResponse:
    data: UnifiedDashboardData
    source: str


def empty_week_analysis(now: datetime, tz_name: str | None = None) -> CohortMyWeekAnalysis:
    window = compute_week_window(now, tz_name)
    return CohortMyWeekAnalysis(
        week_start=window.week_start,
        week_end=window.week_end,
        blue_summary=NO_EVENTS_SUMMARY,
        gold_summary=NO_EVENTS_SUMMARY,
    )


async def settle(name: str, work: Awaitable[Any], fallback: Callable[[], Any]) -> StageOutcome:
    """Await ``work`` and convert any failure into the stage's fallback value."""
    started = time.monotonic()
    try:
        value = await work
    except Exception as e:
        duration_ms = int((time.monotonic() - started) * 1000)
        error = f"{type(e).__name__}: {e}"
        log_stage_timing(name, False, duration_ms, error)
        return StageOutcome(name, fallback(), False, duration_ms, error)

    duration_ms = int((time.monotonic() - started) * 1000)
    log_stage_timing(name, True, duration_ms)
    return StageOutcome(name, value, True, duration_ms)


class DashboardOrchestrator:
    def __init__(
        self,
        cache: HybridCache,
        scraper,
        organizer: NewsletterOrganizer,
        calendar_client,
        synthesizer: WeeklySynthesizer,
        clock: Callable[[], datetime] | None = None,
        pipeline_timeout: float | None = None,
        tz_name: str | None = None,
    ):
        self.cache = cache
        self.scraper = scraper
        self.organizer = organizer
        self.calendar_client = calendar_client
        self.synthesizer = synthesizer
        self.clock = clock or (lambda: datetime.now(UTC))
        self.pipeline_timeout = pipeline_timeout or settings.PIPELINE_TIMEOUT_SECONDS
        self.tz_name = tz_name or settings.DASHBOARD_TIMEZONE

    async def get_dashboard(self, force_refresh: bool = False) -> DashboardResponse:
        """
        Cached dashboard when available, otherwise a full pipeline run.

        Raises:
            DashboardUnavailableError: unrecoverable (no newsletter anywhere, or timeout)
        """
        if not force_refresh:
            hit = await self.cache.get(CacheKey.DASHBOARD_DATA)
            if hit is not None:
                try:
                    data = UnifiedDashboardData.model_validate(hit.data)
                    return DashboardResponse(data, hit.source.value)
                except ValidationError as e:
                    logger.warning(
                        "Cached dashboard has unexpected shape, regenerating",
                        source=hit.source.value,
                        error=str(e)[:200],
                    )
        else:
            logger.info("Forced refresh requested, bypassing cache read")

        result = await self.run_pipeline(include_newsletter=True)
        await self.cache_pipeline_result(result, write_static=False)
        return DashboardResponse(result.dashboard, SOURCE_FRESH)

    async def run_pipeline(self, include_newsletter: bool = True) -> PipelineResult:
        try:
            return await asyncio.wait_for(
                self._run_pipeline(include_newsletter), timeout=self.pipeline_timeout
            )
        except TimeoutError as e:
            logger.error("Dashboard pipeline timed out", timeout_seconds=self.pipeline_timeout)
            raise DashboardUnavailableError(
                f"Pipeline exceeded {self.pipeline_timeout}s timeout"
            ) from e

    async def _run_pipeline(self, include_newsletter: bool) -> PipelineResult:
        started = time.monotonic()
        now = self.clock()
        logger.info("Dashboard pipeline starting", include_newsletter=include_newsletter)

        if include_newsletter:
            newsletter_work = settle("newsletter", self.acquire_newsletter(now), lambda: None)
        else:
            newsletter_work = settle("newsletter", _skipped_newsletter(), lambda: None)

        newsletter_outcome, calendar_outcome = await asyncio.gather(
            newsletter_work,
            settle("calendar", self.acquire_calendar(), CohortEvents),
        )

        newsletter_from_cache = False
        newsletter = newsletter_outcome.value
        if newsletter is None:
            newsletter = await self._cached_newsletter()
            if newsletter is None:
                raise DashboardUnavailableError(
                    f"Newsletter unavailable and no cached copy: {newsletter_outcome.error}"
                )
            newsletter_from_cache = True

        cohort_events: CohortEvents = calendar_outcome.value

        if calendar_outcome.ok:
            my_week_outcome = await settle(
                "my_week",
                self.synthesizer.analyze(cohort_events, newsletter, now),
                lambda: empty_week_analysis(now, self.tz_name),
            )
        else:
            # without calendar data both cohorts report the "no events" summary
            my_week_outcome = StageOutcome(
                "my_week",
                empty_week_analysis(now, self.tz_name),
                False,
                0,
                "Skipped: calendar unavailable",
            )
            log_stage_timing("my_week", False, 0, my_week_outcome.error)

        processing_info = ProcessingInfo(
            total_time=int((time.monotonic() - started) * 1000),
            newsletter_time=newsletter_outcome.duration_ms,
            calendar_time=calendar_outcome.duration_ms,
            my_week_time=my_week_outcome.duration_ms,
            timestamp=datetime.now(UTC).isoformat(),
        )
        logger.info(
            "Dashboard pipeline completed",
            total_ms=processing_info.total_time,
            newsletter_ms=processing_info.newsletter_time,
            calendar_ms=processing_info.calendar_time,
            my_week_ms=processing_info.my_week_time,
            newsletter_ok=newsletter_outcome.ok,
            newsletter_from_cache=newsletter_from_cache,
            calendar_ok=calendar_outcome.ok,
        )

        return PipelineResult(
            dashboard=UnifiedDashboardData(
                newsletter_data=newsletter,
                my_week_data=my_week_outcome.value,
                cohort_events=cohort_events,
                processing_info=processing_info,
            ),
            newsletter=newsletter_outcome,
            calendar=calendar_outcome,
            my_week=my_week_outcome,
            newsletter_from_cache=newsletter_from_cache,
            newsletter_skipped=not include_newsletter,
        )

    async def acquire_newsletter(self, now: datetime | None = None) -> NewsletterPayload:
        """
        Stage A. Scrape failures propagate; an AI organizer failure degrades to
        the unorganized catch-all section.
        """
        started = time.monotonic()
        url = await self.scraper.get_latest_newsletter_url()
        raw = await self.scraper.scrape_newsletter(url)

        now = now or self.clock()
        today = now.astimezone(ZoneInfo(self.tz_name)).date()
        try:
            return await self.organizer.organize(raw.sections, raw.source_url or url, raw.title, today)
        except NewsletterOrganizationError as e:
            logger.warning(
                "AI organizer failed, serving unorganized newsletter",
                error=str(e),
                models_tried=e.models_tried,
            )
            return build_fallback_newsletter(
                raw,
                str(e),
                models_tried=e.models_tried,
                processing_time=int((time.monotonic() - started) * 1000),
            )

    async def acquire_calendar(self) -> CohortEvents:
        """Stage B."""
        return await self.calendar_client.get_cohort_events(
            settings.CALENDAR_DAYS_AHEAD, settings.CALENDAR_EVENT_LIMIT
        )

    async def _cached_newsletter(self) -> NewsletterPayload | None:
        hit = await self.cache.get(CacheKey.NEWSLETTER_DATA)
        if hit is None:
            return None
        try:
            newsletter = NewsletterPayload.model_validate(hit.data)
        except ValidationError as e:
            logger.warning("Cached newsletter has unexpected shape", error=str(e)[:200])
            return None
        logger.info("Using cached newsletter", source=hit.source.value)
        return newsletter

    async def _dashboard_with_cached_newsletter(
        self, dashboard: UnifiedDashboardData
    ) -> UnifiedDashboardData | None:
        """
        Calendar-only runs rebuild the aggregate around the last organized
        newsletter so the cached dashboard follows the current week window.
        """
        newsletter = await self._cached_newsletter()
        if newsletter is None or not newsletter.is_organized():
            logger.info("No organized newsletter cached, leaving dashboard-data untouched")
            return None
        return dashboard.model_copy(update={"newsletter_data": newsletter})

    async def cache_pipeline_result(self, result: PipelineResult, write_static: bool) -> list[str]:
        """
        Write the artifacts each successful stage produced. Degraded values are
        never written so they cannot displace good cached data.
        """
        written: list[str] = []

        if (
            result.newsletter.ok
            and not result.newsletter_skipped
            and result.dashboard.newsletter_data.is_organized()
        ):
            await self.cache.set(CacheKey.NEWSLETTER_DATA, result.dashboard.newsletter_data, write_static)
            written.append(CacheKey.NEWSLETTER_DATA.value)

        if result.calendar.ok:
            await self.cache.set(CacheKey.COHORT_EVENTS, result.dashboard.cohort_events, write_static)
            written.append(CacheKey.COHORT_EVENTS.value)

        if result.calendar.ok and result.my_week.ok:
            await self.cache.set(CacheKey.MY_WEEK_DATA, result.dashboard.my_week_data, write_static)
            written.append(CacheKey.MY_WEEK_DATA.value)

        if result.fully_succeeded:
            await self.cache.set(CacheKey.DASHBOARD_DATA, result.dashboard, write_static)
            written.append(CacheKey.DASHBOARD_DATA.value)
        elif result.newsletter_skipped and result.calendar.ok and result.my_week.ok:
            refreshed = await self._dashboard_with_cached_newsletter(result.dashboard)
            if refreshed is not None:
                await self.cache.set(CacheKey.DASHBOARD_DATA, refreshed, write_static)
                written.append(CacheKey.DASHBOARD_DATA.value)

        logger.info("Pipeline artifacts cached", keys=written, write_static=write_static)
        return written


async def _skipped_newsletter() -> NewsletterPayload:
    return NewsletterPayload(sections=[])
