from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from planner_cache.cache_metadata import CacheMetadata
from planner_cache.local_store import LocalStore, Record
from planner_cache.operations import CreateOp, DeleteOp, UpdateOp
from planner_cache.pending_queue import PendingOperationQueue
from planner_cache.settings import PENDING_SYNC_STORE
from planner_cache.sync_engine import SyncEngine

log = logging.getLogger("planner_cache.data")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class OfflineDataService:
    """Cache-first reads and optimistic writes.

    A write lands in the local store first and is then appended to the pending
    queue; if the local write raises, nothing is queued and the error reaches
    the caller. When online, every write also asks the engine for a sync.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: PendingOperationQueue,
        engine: SyncEngine,
        metadata: CacheMetadata,
        is_online: Callable[[], bool],
        clock: Callable[[], str] = _now_iso,
    ) -> None:
        self.store = store
        self.queue = queue
        self.engine = engine
        self.metadata = metadata
        self.is_online = is_online
        self._clock = clock

    @staticmethod
    def _check_store(store: str) -> None:
        if store == PENDING_SYNC_STORE:
            raise ValueError(f"{PENDING_SYNC_STORE!r} is not an entity store")

    def _kick(self) -> None:
        if self.is_online():
            self.engine.request_sync()

    # ------------------------------------------------------------------ writes

    async def create(self, store: str, record: Dict[str, Any]) -> Record:
        self._check_store(store)
        now = self._clock()
        rec = dict(record)
        if not rec.get("id"):
            rec["id"] = uuid.uuid4().hex
        rec.setdefault("created_at", now)
        rec["updated_at"] = now

        await self.store.put(store, rec)
        await self.queue.add_pending_sync(CreateOp(store=store, payload=rec))
        self._kick()
        return rec

    async def update(self, store: str, item_id: Any, changes: Dict[str, Any]) -> Record:
        self._check_store(store)
        current = await self.store.get(store, item_id)
        if current is None:
            log.info("Updating %s/%s with no local copy", store, item_id)
            current = {}
        rec = {**current, **changes, "id": item_id, "updated_at": self._clock()}

        await self.store.put(store, rec)
        await self.queue.add_pending_sync(UpdateOp(store=store, item_id=item_id, payload=rec))
        self._kick()
        return rec

    async def delete(self, store: str, item_id: Any) -> None:
        self._check_store(store)
        await self.store.delete(store, item_id)
        await self.queue.add_pending_sync(DeleteOp(store=store, item_id=item_id))
        self._kick()

    # ------------------------------------------------------------------ reads

    async def get_all(self, store: str) -> List[Record]:
        return await self.store.get_all(store)

    async def get(self, store: str, item_id: Any) -> Optional[Record]:
        return await self.store.get(store, item_id)

    async def updated_since(self, store: str, since: Optional[str]) -> List[Record]:
        return await self.store.updated_since(store, since)

    # ------------------------------------------------------------------ freshness

    def is_fresh(self, store: str) -> bool:
        return self.metadata.is_fresh(store)

    def cache_age(self, store: str) -> str:
        return self.metadata.age_text(store)

    async def force_refresh(self, store: str) -> bool:
        if not self.is_online():
            log.info("Cannot force refresh while offline")
            return False
        await self.metadata.invalidate(store)
        log.info("Force refresh triggered for %s", store)
        return True
