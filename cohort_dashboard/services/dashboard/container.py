# cohort_dashboard/services/dashboard/container.py
"""
Service wiring shared by the API lifespan and the background worker.
"""

from dataclasses import dataclass

from cohort_dashboard.config import Settings, settings
from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.jobs.refresh_jobs import CacheRefreshJob, NewsletterRefreshJob
from cohort_dashboard.services.ai.model_chain import ModelFallbackChain
from cohort_dashboard.services.cache.hybrid_cache import HybridCache
from cohort_dashboard.services.cache.static_store import StaticFileStore
from cohort_dashboard.services.calendar.ics_client import CalendarClient
from cohort_dashboard.services.dashboard.orchestrator import DashboardOrchestrator
from cohort_dashboard.services.infrastructure.redis_client import (
    PrimaryStoreClient,
    init_primary_store,
)
from cohort_dashboard.services.myweek.analyzer import WeeklySynthesizer
from cohort_dashboard.services.newsletter.organizer import NewsletterOrganizer
from cohort_dashboard.services.newsletter.scraper import NewsletterScraper

logger = get_logger(__name__)


@dataclass
class DashboardServices:
    primary_store: PrimaryStoreClient | None
    cache: HybridCache
    chain: ModelFallbackChain
    scraper: NewsletterScraper
    organizer: NewsletterOrganizer
    calendar_client: CalendarClient
    synthesizer: WeeklySynthesizer
    orchestrator: DashboardOrchestrator
    newsletter_job: NewsletterRefreshJob
    cache_job: CacheRefreshJob

    async def close(self) -> None:
        errors = []

        close_completion = getattr(self.chain.completion_fn, "close", None)
        if close_completion is not None:
            try:
                await close_completion()
            except Exception as e:
                errors.append(f"AI client: {e}")

        if self.primary_store is not None:
            try:
                await self.primary_store.close()
            except Exception as e:
                errors.append(f"Primary store: {e}")

        if errors:
            logger.warning("Some services had shutdown errors", errors=errors)
        else:
            logger.info("All services closed successfully")


async def build_services(config: Settings = settings) -> DashboardServices:
    primary_store = await init_primary_store(config)
    cache = HybridCache(
        primary_store,
        StaticFileStore(config.STATIC_CACHE_DIR),
        default_ttl=config.CACHE_TTL_SECONDS,
    )
    chain = ModelFallbackChain(config.model_chain(), timeout_seconds=config.AI_TIMEOUT_SECONDS)

    scraper = NewsletterScraper(config.NEWSLETTER_ARCHIVE_URL, config.SCRAPE_TIMEOUT_SECONDS)
    organizer = NewsletterOrganizer(chain)
    calendar_client = CalendarClient(
        config.cohort_sources(), config.auxiliary_sources(), config.CALENDAR_TIMEOUT_SECONDS
    )
    synthesizer = WeeklySynthesizer(chain, config.DASHBOARD_TIMEZONE)
    orchestrator = DashboardOrchestrator(
        cache,
        scraper,
        organizer,
        calendar_client,
        synthesizer,
        pipeline_timeout=config.PIPELINE_TIMEOUT_SECONDS,
        tz_name=config.DASHBOARD_TIMEZONE,
    )

    logger.info(
        "Dashboard services initialized",
        primary_store=primary_store is not None,
        static_cache_dir=config.STATIC_CACHE_DIR,
        models=chain.models,
    )
    return DashboardServices(
        primary_store=primary_store,
        cache=cache,
        chain=chain,
        scraper=scraper,
        organizer=organizer,
        calendar_client=calendar_client,
        synthesizer=synthesizer,
        orchestrator=orchestrator,
        newsletter_job=NewsletterRefreshJob(orchestrator),
        cache_job=CacheRefreshJob(orchestrator),
    )
