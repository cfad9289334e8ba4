import asyncio
import json
from datetime import UTC, datetime

import pytest

from cohort_dashboard.models.domain.dashboard_domain import (
    AIDebugInfo,
    CalendarEvent,
    CohortEvents,
    NewsletterItem,
    NewsletterPayload,
    NewsletterSection,
    TimeSensitiveInfo,
)
from cohort_dashboard.services.ai.model_chain import ModelFallbackChain
from cohort_dashboard.services.cache.hybrid_cache import HybridCache
from cohort_dashboard.services.cache.static_store import StaticFileStore
from cohort_dashboard.services.infrastructure.redis_client import PrimaryStoreError

TZ = "America/Los_Angeles"
# Thursday 2025-09-18, 10:00 Pacific
FIXED_NOW = datetime(2025, 9, 18, 17, 0, tzinfo=UTC)


class FakePrimaryStore:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def ping(self) -> bool:
        return True


class FailingPrimaryStore:
    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        raise PrimaryStoreError("connection refused", "set")

    async def get(self, key: str) -> str | None:
        raise PrimaryStoreError("connection refused", "get")

    async def delete(self, key: str) -> bool:
        raise PrimaryStoreError("connection refused", "delete")

    async def ping(self) -> bool:
        return False


class SlowResponse:
    def __init__(self, seconds: float, text: str = "{}"):
        self.seconds = seconds
        self.text = text


class ScriptedCompletion:
    """
    Completion function stub. ``responses`` maps model name to a string, an
    exception, a SlowResponse, or a callable ``(system, prompt) -> str``.
    Unlisted models fail.
    """

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, model: str, system_message: str, prompt: str) -> str:
        self.calls.append((model, prompt))
        response = self.responses.get(model)
        if response is None:
            raise RuntimeError(f"{model} unavailable")
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, SlowResponse):
            await asyncio.sleep(response.seconds)
            return response.text
        if callable(response):
            return response(system_message, prompt)
        return response


class StubScraper:
    def __init__(self, raw: NewsletterPayload | None = None, error: Exception | None = None):
        self.raw = raw
        self.error = error
        self.calls = 0

    async def get_latest_newsletter_url(self) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.raw.source_url

    async def scrape_newsletter(self, url: str) -> NewsletterPayload:
        return self.raw


class StubOrganizer:
    def __init__(self, organized: NewsletterPayload | None = None, error: Exception | None = None):
        self.organized = organized
        self.error = error
        self.calls = 0

    async def organize(self, raw_sections, source_url, title=None, today=None) -> NewsletterPayload:
        self.calls += 1
        if self.error:
            raise self.error
        return self.organized


class StubCalendarClient:
    def __init__(self, events: CohortEvents | None = None, error: Exception | None = None):
        self.events = events if events is not None else CohortEvents()
        self.error = error
        self.calls = 0

    async def get_cohort_events(self, days_ahead=None, limit=None) -> CohortEvents:
        self.calls += 1
        if self.error:
            raise self.error
        return self.events


def week_summary_response(summary: str = "Focus on the problem set deadline.", events=None):
    """Weekly synthesis responder returning the same JSON for every cohort."""

    def _respond(system_message: str, prompt: str) -> str:
        return json.dumps({"events": events or [], "summary": summary})

    return _respond


def make_chain(responses: dict, models=None, timeout_seconds: float = 1.0) -> ModelFallbackChain:
    return ModelFallbackChain(
        models or list(responses.keys()),
        completion_fn=ScriptedCompletion(responses),
        timeout_seconds=timeout_seconds,
    )


@pytest.fixture
def fake_primary():
    return FakePrimaryStore()


@pytest.fixture
def static_store(tmp_path):
    return StaticFileStore(tmp_path / "cache")


@pytest.fixture
def hybrid_cache(fake_primary, static_store):
    return HybridCache(fake_primary, static_store)


@pytest.fixture
def fallback_only_cache(static_store):
    return HybridCache(None, static_store)


@pytest.fixture
def raw_newsletter():
    return NewsletterPayload(
        source_url="https://mailchi.mp/example/weekly-update",
        title="Weekly Update",
        sections=[
            NewsletterSection(
                section_title="Deadlines",
                items=[NewsletterItem(title="Problem Set 3", html="<p>Due Sep 21</p>")],
            ),
            NewsletterSection(
                section_title="Community",
                items=[
                    NewsletterItem(
                        title="Alumni Mixer",
                        html='<p>Join us. <a href="https://example.com/rsvp">RSVP</a></p>',
                    )
                ],
            ),
        ],
    )


@pytest.fixture
def organized_newsletter(raw_newsletter):
    return NewsletterPayload(
        source_url=raw_newsletter.source_url,
        title=raw_newsletter.title,
        sections=[
            NewsletterSection(
                section_title="Deadlines",
                items=[
                    NewsletterItem(
                        title="Problem Set 3",
                        html="<p>Due Sep 21</p>",
                        time_sensitive=TimeSensitiveInfo(
                            dates=["2025-09-21"],
                            deadline="2025-09-21",
                            event_type="deadline",
                            priority="high",
                        ),
                    )
                ],
            ),
        ],
        ai_debug_info=AIDebugInfo(model="gpt-4o-mini", models_tried=["gpt-4o-mini"], total_sections=1),
    )


@pytest.fixture
def cohort_events():
    return CohortEvents(
        blue=[
            CalendarEvent(
                uid="blue-1",
                title="Microeconomics",
                start="2025-09-16T16:00:00+00:00",
                end="2025-09-16T19:00:00+00:00",
                cohort="blue",
            ),
            CalendarEvent(
                uid="blue-2",
                title="Next Month Lecture",
                start="2025-10-20T16:00:00+00:00",
                cohort="blue",
            ),
        ],
        gold=[
            CalendarEvent(
                uid="gold-1",
                title="Leadership Communication",
                start="2025-09-19T01:00:00+00:00",
                cohort="gold",
            ),
        ],
    )


def make_services(cache, scraper, organizer, calendar_client, chain=None):
    from cohort_dashboard.jobs.refresh_jobs import CacheRefreshJob, NewsletterRefreshJob
    from cohort_dashboard.services.dashboard.container import DashboardServices
    from cohort_dashboard.services.dashboard.orchestrator import DashboardOrchestrator
    from cohort_dashboard.services.myweek.analyzer import WeeklySynthesizer

    chain = chain or make_chain({"gpt-4o-mini": week_summary_response()})
    synthesizer = WeeklySynthesizer(chain, TZ)
    orchestrator = DashboardOrchestrator(
        cache,
        scraper,
        organizer,
        calendar_client,
        synthesizer,
        clock=lambda: FIXED_NOW,
        tz_name=TZ,
    )
    return DashboardServices(
        primary_store=cache.primary,
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


@pytest.fixture
def client_for():
    """Returns a factory that serves the app with the given services."""
    from fastapi.testclient import TestClient

    from cohort_dashboard.main import app
    from cohort_dashboard.routes.dependencies import get_services

    def _client(services):
        app.dependency_overrides[get_services] = lambda: services
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()
