"""Cache key enumeration and result types shared by both cache tiers."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class CacheKey(str, Enum):
    NEWSLETTER_DATA = "newsletter-data"
    MY_WEEK_DATA = "myweek-data"
    DASHBOARD_DATA = "dashboard-data"
    COHORT_EVENTS = "cohort-events"


class CacheSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class CacheErrorKind(str, Enum):
    NOT_CONFIGURED = "not_configured"
    MISS = "miss"
    UNAVAILABLE = "unavailable"
    CORRUPT = "corrupt"
    WRITE_FAILED = "write_failed"


@dataclass(frozen=True)
class CacheReadResult:
    """Outcome of reading one tier: either data or an error kind."""

    data: Any = None
    error: CacheErrorKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CacheWriteResult:
    tier: CacheSource
    error: CacheErrorKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CacheHit:
    data: Any
    source: CacheSource
