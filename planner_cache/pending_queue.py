from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from planner_cache.errors import UnknownOperationType
from planner_cache.local_store import LocalStore
from planner_cache.operations import Operation, PendingOperation, from_record, new_operation_id, to_record
from planner_cache.settings import PENDING_SYNC_STORE

log = logging.getLogger("planner_cache.queue")


def _order_key(record: Dict[str, Any]) -> tuple[str, str]:
    return (str(record.get("timestamp") or ""), str(record.get("id") or ""))


class PendingOperationQueue:
    """FIFO log of local mutations the remote side has not acknowledged yet.

    Entries are never merged: two updates to the same record stay two entries.
    Read order from the backing store is unspecified, so reads sort by issue
    timestamp (strictly increasing within a process) and then by id.
    """

    def __init__(
        self,
        store: LocalStore,
        store_name: str = PENDING_SYNC_STORE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.store_name = store_name
        self._clock = clock
        self._last_issued: Optional[datetime] = None

    def _issue_time(self) -> datetime:
        now = self._clock()
        if self._last_issued is not None and now <= self._last_issued:
            now = self._last_issued + timedelta(microseconds=1)
        self._last_issued = now
        return now

    async def add_pending_sync(self, op: Operation) -> PendingOperation:
        issued = self._issue_time()
        pending = PendingOperation(
            id=new_operation_id(int(issued.timestamp() * 1000)),
            op=op,
            timestamp=issued.isoformat(timespec="microseconds"),
        )
        await self.store.put(self.store_name, to_record(pending))
        log.debug("Queued %s %s/%s as %s", op.type.value, op.store, op.item_id, pending.id)
        return pending

    async def get_pending_records(self) -> List[Dict[str, Any]]:
        """Raw queue entries in issue order, including ones that no longer decode."""
        records = await self.store.get_all(self.store_name)
        return sorted(records, key=_order_key)

    async def get_pending_sync(self) -> List[PendingOperation]:
        pending: List[PendingOperation] = []
        for record in await self.get_pending_records():
            try:
                pending.append(from_record(record))
            except UnknownOperationType as exc:
                log.warning("Skipping queue entry: %s", exc)
        return pending

    async def remove_pending_sync(self, op_id: str) -> None:
        await self.store.delete(self.store_name, op_id)

    async def record_failure(self, pending: PendingOperation, error: str) -> PendingOperation:
        """Keep the entry queued, bumping its attempt count."""
        updated = pending.failed(error)
        await self.store.put(self.store_name, to_record(updated))
        return updated

    async def size(self) -> int:
        return await self.store.count(self.store_name)

    async def clear(self) -> None:
        await self.store.clear(self.store_name)
