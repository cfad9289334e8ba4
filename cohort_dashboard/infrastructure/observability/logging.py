"""
Structured logging for the cohort dashboard.

JSON lines in production, a console renderer in development. Values bound with
``structlog.contextvars`` (job name, refresh trigger) are merged into every
event emitted while they are bound.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON renderer when True, human-readable console output otherwise
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_stage_timing(stage: str, ok: bool, duration_ms: float, error: str = None):
    """One event per pipeline stage; degraded stages log at warning."""
    logger = get_logger("pipeline")

    log_data = {"stage": stage, "ok": ok, "duration_ms": duration_ms}
    if error:
        log_data["error"] = error

    if ok:
        logger.info("Pipeline stage completed", **log_data)
    else:
        logger.warning("Pipeline stage degraded", **log_data)
