# cohort_dashboard/services/cache/hybrid_cache.py
"""
Hybrid Cache
Primary key-value store (Redis) with a static JSON file fallback.

Read order:
1. Primary store, when configured. A non-empty value is returned immediately.
2. Static file for the key, when the primary misses, is absent or errors.
3. Otherwise a miss (``None``). A complete miss is not an error; callers
   regenerate the value.

Writes always target the primary store (TTL defaults to 8 hours) and
optionally the static file. Write failures are logged and never raised.
"""

import asyncio
import json
from typing import Any

from pydantic import BaseModel

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.services.cache.keys import (
    CacheErrorKind,
    CacheHit,
    CacheKey,
    CacheReadResult,
    CacheSource,
    CacheWriteResult,
)
from cohort_dashboard.services.cache.static_store import StaticFileStore

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 28800


def serialize_value(value: Any) -> str:
    """Serialize a cache value (pydantic model or plain JSON data)."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(value, indent=2)


def _key_name(key: CacheKey | str) -> str:
    return key.value if isinstance(key, CacheKey) else key


class HybridCache:
    """Two-tier cache. ``primary`` may be None (fallback-only mode)."""

    def __init__(
        self,
        primary,
        static_store: StaticFileStore,
        default_ttl: int = DEFAULT_TTL_SECONDS,
    ):
        self.primary = primary
        self.static_store = static_store
        self.default_ttl = default_ttl

    @property
    def primary_available(self) -> bool:
        return self.primary is not None

    async def get(self, key: CacheKey | str) -> CacheHit | None:
        name = _key_name(key)

        primary_result = await self.read_primary(name)
        if primary_result.ok:
            logger.info("Cache hit", key=name, source=CacheSource.PRIMARY.value)
            return CacheHit(primary_result.data, CacheSource.PRIMARY)
        if primary_result.error is not CacheErrorKind.NOT_CONFIGURED:
            logger.info(
                "Primary cache unavailable for key",
                key=name,
                reason=primary_result.error.value,
                detail=primary_result.detail,
            )

        fallback_result = await self.read_fallback(name)
        if fallback_result.ok:
            logger.info("Cache hit", key=name, source=CacheSource.FALLBACK.value)
            return CacheHit(fallback_result.data, CacheSource.FALLBACK)

        logger.info(
            "Complete cache miss",
            key=name,
            primary_reason=primary_result.error.value,
            fallback_reason=fallback_result.error.value,
        )
        return None

    async def read_primary(self, key: CacheKey | str) -> CacheReadResult:
        if self.primary is None:
            return CacheReadResult(error=CacheErrorKind.NOT_CONFIGURED)

        name = _key_name(key)
        try:
            raw = await self.primary.get(name)
        except Exception as e:
            return CacheReadResult(error=CacheErrorKind.UNAVAILABLE, detail=str(e))

        if raw is None:
            return CacheReadResult(error=CacheErrorKind.MISS)

        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            return CacheReadResult(error=CacheErrorKind.CORRUPT, detail=str(e))

        if data is None:
            return CacheReadResult(error=CacheErrorKind.MISS)
        return CacheReadResult(data=data)

    async def read_fallback(self, key: CacheKey | str) -> CacheReadResult:
        return await self.static_store.read(_key_name(key))

    async def set(
        self,
        key: CacheKey | str,
        value: Any,
        write_static: bool = False,
        ttl: int | None = None,
    ) -> list[CacheWriteResult]:
        """
        Best-effort write. Returns one result per tier attempted so callers
        and tests can inspect failures; nothing is raised. ``ttl=0`` stores the
        primary entry without expiry.
        """
        name = _key_name(key)
        ttl = self.default_ttl if ttl is None else ttl
        serialized = serialize_value(value)
        results = [await self._write_primary(name, serialized, ttl)]

        if write_static:
            static_result = await self.static_store.write(name, serialized)
            if not static_result.ok:
                logger.error(
                    "Static cache write failed", key=name, error=static_result.detail
                )
            results.append(static_result)

        return results

    async def _write_primary(self, name: str, serialized: str, ttl: int) -> CacheWriteResult:
        if self.primary is None:
            logger.warning("Primary store not available - skipping write", key=name)
            return CacheWriteResult(CacheSource.PRIMARY, CacheErrorKind.NOT_CONFIGURED)

        try:
            await self.primary.set_with_ttl(name, serialized, ttl)
        except Exception as e:
            logger.error("Primary cache write failed", key=name, error=str(e))
            return CacheWriteResult(CacheSource.PRIMARY, CacheErrorKind.WRITE_FAILED, str(e))

        logger.info("Primary cache write successful", key=name, ttl=ttl)
        return CacheWriteResult(CacheSource.PRIMARY)

    async def delete(self, key: CacheKey | str) -> bool:
        """Invalidate the primary entry. Static files are only ever overwritten."""
        if self.primary is None:
            return False

        name = _key_name(key)
        try:
            deleted = await self.primary.delete(name)
        except Exception as e:
            logger.error("Failed to delete primary cache key", key=name, error=str(e))
            return False

        logger.info("Deleted primary cache key", key=name, deleted=deleted)
        return deleted

    async def health_check(self) -> dict:
        primary_ok = await self.primary.ping() if self.primary is not None else False
        return {
            "primary_configured": self.primary is not None,
            "primary_ok": primary_ok,
            "static_dir": str(self.static_store.directory),
            "static_writable": await asyncio.to_thread(self.static_store.is_writable),
        }
