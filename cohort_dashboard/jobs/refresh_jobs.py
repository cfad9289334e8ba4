"""
Scheduled refresh jobs.

Both jobs run the dashboard pipeline proactively and write results to the
hybrid cache with the static fallback tier enabled, so user requests between
runs are served from cache:

- newsletter refresh (daily, morning): newsletter + calendar + weekly summaries
- cache refresh (midnight): calendar + weekly summaries only, no scraping
"""

import asyncio
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.services.dashboard.orchestrator import (
    DashboardOrchestrator,
    DashboardUnavailableError,
    PipelineResult,
)

logger = get_logger(__name__)

RETRY_DELAY_SECONDS = 1800  # 30 minutes after a failed scheduled run


class RefreshJobError(Exception):
    """Raised when a refresh job cannot produce data worth caching."""

    def __init__(self, message: str, job: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.job = job
        self.recoverable = recoverable


class RefreshJobMetrics:
    """Metrics for a single job run."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.total_duration_ms = 0
        self.keys_written: list[str] = []
        self.stage_errors: dict[str, str] = {}

    def record_result(self, result: PipelineResult, keys_written: list[str]):
        self.keys_written = keys_written
        for outcome in (result.newsletter, result.calendar, result.my_week):
            if not outcome.ok:
                self.stage_errors[outcome.name] = outcome.error or "unknown"

    def finalize(self):
        self.total_duration_ms = int((datetime.now(UTC) - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "job_run": self.job_name,
            "start_time": self.start_time.isoformat(),
            "duration_ms": self.total_duration_ms,
            "keys_written": list(self.keys_written),
            "stage_errors": dict(self.stage_errors),
        }


class _RefreshJob:
    job_name = "refresh"
    include_newsletter = True
    message = "Cache refreshed"

    def __init__(self, orchestrator: DashboardOrchestrator):
        self.orchestrator = orchestrator
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = RefreshJobMetrics(self.job_name)

    async def run_once(self) -> dict:
        """
        Run the pipeline once and write the artifacts with ``write_static``.

        Returns:
            Dict: JSON summary ``{success, message, timestamp, ...}``

        Raises:
            RefreshJobError: the required stages failed; nothing degraded is cached
        """
        if self.is_running:
            logger.warning("Refresh job already running, skipping this iteration", job=self.job_name)
            return {"success": False, "skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()
            structlog.contextvars.bind_contextvars(job=self.job_name)
            logger.info("Starting refresh job")

            try:
                result = await self.orchestrator.run_pipeline(include_newsletter=self.include_newsletter)
            except DashboardUnavailableError as e:
                raise RefreshJobError(f"{self.job_name} failed: {e}", job=self.job_name) from e

            self._check_result(result)

            keys_written = await self.orchestrator.cache_pipeline_result(result, write_static=True)
            self.job_metrics.record_result(result, keys_written)
            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            summary = {
                "success": True,
                "message": self.message,
                "timestamp": self.last_run_time.isoformat(),
                "durationMs": self.job_metrics.total_duration_ms,
                "cached": {key: True for key in keys_written},
                **self._stage_fields(result),
            }
            logger.info("Refresh job completed", **self.job_metrics.to_dict())
            return summary

        except RefreshJobError as e:
            self.job_metrics.finalize()
            logger.error("Refresh job failed", error=str(e), **self.job_metrics.to_dict())
            raise

        finally:
            structlog.contextvars.unbind_contextvars("job")
            self.is_running = False

    def _check_result(self, result: PipelineResult) -> None:
        if not result.calendar.ok:
            raise RefreshJobError(
                f"Calendar stage failed: {result.calendar.error}", job=self.job_name
            )

    def _stage_fields(self, result: PipelineResult) -> dict:
        my_week = result.dashboard.my_week_data
        return {
            "weekStart": my_week.week_start,
            "weekEnd": my_week.week_end,
            "blueEvents": len(my_week.blue_events),
            "goldEvents": len(my_week.gold_events),
        }

    def get_job_status(self) -> dict:
        return {
            "job_name": self.job_name,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }


class NewsletterRefreshJob(_RefreshJob):
    """Daily refresh: Stage A + B + C, all four cache keys."""

    job_name = "newsletter_refresh"
    include_newsletter = True
    message = "Newsletter and cache refreshed"

    def _check_result(self, result: PipelineResult) -> None:
        if not result.newsletter.ok or result.newsletter_from_cache:
            raise RefreshJobError(
                f"Newsletter stage failed: {result.newsletter.error}", job=self.job_name
            )
        if not result.dashboard.newsletter_data.is_organized():
            raise RefreshJobError(
                "Newsletter organization failed, keeping previously cached newsletter",
                job=self.job_name,
            )
        super()._check_result(result)

    def _stage_fields(self, result: PipelineResult) -> dict:
        newsletter = result.dashboard.newsletter_data
        return {
            "newsletterUrl": newsletter.source_url,
            "sectionsProcessed": len(newsletter.sections),
            **super()._stage_fields(result),
        }


class CacheRefreshJob(_RefreshJob):
    """Midnight refresh: Stage B + C with an empty newsletter, no scraping."""

    job_name = "cache_refresh"
    include_newsletter = False
    message = "Cache refreshed at midnight"


def parse_daily_time(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


def seconds_until(at: time, now: datetime, tz_name: str | None = None) -> float:
    """Seconds from ``now`` until the next occurrence of ``at`` local to the dashboard timezone."""
    tz = ZoneInfo(tz_name or settings.DASHBOARD_TIMEZONE)
    local_now = now.astimezone(tz)
    target = datetime.combine(local_now.date(), at, tzinfo=tz)
    if target <= local_now:
        target = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return (target - local_now).total_seconds()


async def run_daily(job: _RefreshJob, at: time) -> None:
    """Run ``job`` every day at ``at`` until cancelled."""
    logger.info("Starting daily refresh scheduler", job=job.job_name, at=at.strftime("%H:%M"))

    while True:
        delay = seconds_until(at, datetime.now(UTC))
        logger.info("Next refresh scheduled", job=job.job_name, in_seconds=round(delay))
        await asyncio.sleep(delay)

        try:
            await job.run_once()
        except RefreshJobError as e:
            logger.error(
                "Scheduled refresh failed, retrying later",
                job=job.job_name,
                error=str(e),
                retry_in_seconds=RETRY_DELAY_SECONDS,
            )
            await asyncio.sleep(RETRY_DELAY_SECONDS)
            try:
                await job.run_once()
            except RefreshJobError as retry_error:
                logger.error("Scheduled refresh retry failed", job=job.job_name, error=str(retry_error))
