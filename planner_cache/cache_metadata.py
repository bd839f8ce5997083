from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Mapping, Optional

from planner_cache import settings
from planner_cache.errors import StorageOperationFailed
from planner_cache.kv_store import KeyValueStore

CACHE_METADATA_KEY = "cache_metadata"

log = logging.getLogger("planner_cache.metadata")


def _now_ms() -> int:
    return int(time.time() * 1000)


class CacheMetadata:
    """Per-store "last refreshed" times used to decide if cached data is fresh.

    The table lives in memory and is written through to the key/value store.
    Failing to persist it only costs an extra refresh, so write errors are logged.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_ms: Optional[Mapping[str, int]] = None,
        default_ttl_ms: int = settings.DEFAULT_CACHE_TTL_MS,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.kv = kv
        self.ttl_ms = dict(settings.CACHE_TTL_MS if ttl_ms is None else ttl_ms)
        self.default_ttl_ms = int(default_ttl_ms)
        self._clock_ms = clock_ms
        self._updated: Dict[str, int] = {}

    async def load(self) -> None:
        try:
            stored = await self.kv.get(CACHE_METADATA_KEY, {})
        except StorageOperationFailed as exc:
            log.warning("Failed to load cache metadata: %s", exc)
            stored = {}
        self._updated = {k: int(v) for k, v in (stored or {}).items()}

    async def _save(self) -> None:
        try:
            await self.kv.set(CACHE_METADATA_KEY, self._updated)
        except StorageOperationFailed as exc:
            log.warning("Failed to save cache metadata: %s", exc)

    def ttl_for(self, store: str) -> int:
        return int(self.ttl_ms.get(store, self.default_ttl_ms))

    def last_updated_ms(self, store: str) -> Optional[int]:
        return self._updated.get(store)

    def is_fresh(self, store: str) -> bool:
        last = self._updated.get(store)
        if not last:
            return False
        return (self._clock_ms() - last) < self.ttl_for(store)

    def age_text(self, store: str) -> str:
        last = self._updated.get(store)
        if not last:
            return "never cached"
        minutes = (self._clock_ms() - last) // 60000
        hours = minutes // 60
        if hours > 0:
            return f"{hours}h {minutes % 60}m ago"
        if minutes > 0:
            return f"{minutes}m ago"
        return "just now"

    async def mark_updated(self, store: str) -> None:
        self._updated[store] = self._clock_ms()
        await self._save()

    async def invalidate(self, store: str) -> None:
        self._updated.pop(store, None)
        await self._save()

    async def invalidate_all(self) -> None:
        self._updated = {}
        await self._save()
