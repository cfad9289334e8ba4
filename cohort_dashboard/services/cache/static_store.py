"""
Static-file fallback tier: one JSON file per cache key under a fixed directory.

Writes go to a temporary file in the same directory and are moved into place
with ``os.replace`` so concurrent readers never observe a partial file.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.services.cache.keys import (
    CacheErrorKind,
    CacheReadResult,
    CacheSource,
    CacheWriteResult,
)

logger = get_logger(__name__)


class StaticFileStore:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    async def read(self, key: str) -> CacheReadResult:
        return await asyncio.to_thread(self._read_sync, key)

    async def write(self, key: str, serialized: str) -> CacheWriteResult:
        return await asyncio.to_thread(self._write_sync, key, serialized)

    def is_writable(self) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            return os.access(self.directory, os.W_OK)
        except OSError:
            return False

    def _read_sync(self, key: str) -> CacheReadResult:
        path = self.path_for(key)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CacheReadResult(error=CacheErrorKind.MISS, detail=str(path))
        except UnicodeDecodeError as e:
            return CacheReadResult(error=CacheErrorKind.CORRUPT, detail=str(e))
        except OSError as e:
            return CacheReadResult(error=CacheErrorKind.UNAVAILABLE, detail=str(e))

        try:
            return CacheReadResult(data=json.loads(content))
        except json.JSONDecodeError as e:
            return CacheReadResult(error=CacheErrorKind.CORRUPT, detail=str(e))

    def _write_sync(self, key: str, serialized: str) -> CacheWriteResult:
        path = self.path_for(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{key}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(serialized)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return CacheWriteResult(CacheSource.FALLBACK, CacheErrorKind.WRITE_FAILED, str(e))

        logger.info("Static cache write successful", key=key, path=str(path))
        return CacheWriteResult(CacheSource.FALLBACK)
