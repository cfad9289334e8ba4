# cohort_dashboard/main.py
"""
FastAPI application with cache store and service lifecycle management.
"""

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger, setup_logging
from cohort_dashboard.routes import ai_self_test, calendar, cron, dashboard, health, my_week, newsletter
from cohort_dashboard.services.dashboard.container import build_services

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment == "production")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the dashboard services on startup and release them on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    # Primary store failures degrade to fallback-only mode inside build_services
    app.state.services = await build_services(settings)

    yield

    logger.info("Application shutting down")
    await app.state.services.close()


app = FastAPI(
    title="Cohort Dashboard",
    description="Newsletter, cohort calendars and weekly summaries behind a hybrid cache",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(dashboard.router)
app.include_router(my_week.router)
app.include_router(newsletter.router)
app.include_router(calendar.router)
app.include_router(cron.router)
app.include_router(ai_self_test.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Bind method and path for every log line of the request, then log its timing."""
    started = time.perf_counter()
    with structlog.contextvars.bound_contextvars(method=request.method, path=request.url.path):
        response = await call_next(request)
        logger.info(
            "HTTP request completed",
            status_code=response.status_code,
            cache_source=response.headers.get("X-Cache-Source"),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
