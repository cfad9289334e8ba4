"""
Background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, wires the dashboard services and delegates to the job.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger, setup_logging
from cohort_dashboard.jobs.refresh_jobs import parse_daily_time, run_daily
from cohort_dashboard.services.dashboard.container import DashboardServices, build_services

logger = get_logger(__name__)

JobCoroutine = Callable[[DashboardServices], Awaitable[None]]


async def start_newsletter_refresh_scheduler(services: DashboardServices) -> None:
    await run_daily(services.newsletter_job, parse_daily_time(settings.NEWSLETTER_REFRESH_TIME))


async def start_cache_refresh_scheduler(services: DashboardServices) -> None:
    await run_daily(services.cache_job, parse_daily_time(settings.CACHE_REFRESH_TIME))


async def run_newsletter_refresh_once(services: DashboardServices) -> None:
    summary = await services.newsletter_job.run_once()
    logger.info("Newsletter refresh finished", **summary)


async def run_cache_refresh_once(services: DashboardServices) -> None:
    summary = await services.cache_job.run_once()
    logger.info("Cache refresh finished", **summary)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "newsletter_refresh": start_newsletter_refresh_scheduler,
    "cache_refresh": start_cache_refresh_scheduler,
    "newsletter_refresh_once": run_newsletter_refresh_once,
    "cache_refresh_once": run_cache_refresh_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "newsletter_refresh").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    services = await build_services(settings)
    try:
        await JOB_REGISTRY[name](services)
    finally:
        await services.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment == "production")
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
