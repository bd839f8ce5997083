from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from planner_api.remote_client import RemoteDataClient
from planner_cache.errors import StorageOperationFailed, UnknownOperationType
from planner_cache.kv_store import KeyValueStore
from planner_cache.operations import CreateOp, DeleteOp, PendingOperation, UpdateOp, from_record
from planner_cache.pending_queue import PendingOperationQueue

log = logging.getLogger("planner_cache.sync")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0  # unknown operation types, removed without a remote call
    skipped: int = 0  # held back behind an earlier failure on the same record
    started_at: str = ""
    finished_at: str = ""
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.failed == 0 and self.dropped == 0 and self.skipped == 0


class SyncEngine:
    """Single-flight drain of the pending queue through the remote client.

    Idle -> Syncing only when online and no drain is running; a request in any
    other situation is a no-op. Operations are sent one at a time in queue
    order. A failed operation stays queued and the drain moves on, except that
    later operations on the same record wait for the next pass so one record's
    changes never reach the remote side out of order.

    ``last_sync_timestamp`` advances after every pass that got through the
    whole queue snapshot, even when some operations were left queued. A local
    storage fault aborts the pass and leaves it untouched.
    """

    def __init__(
        self,
        queue: PendingOperationQueue,
        remote: RemoteDataClient,
        kv: KeyValueStore,
        is_online: Callable[[], bool] = lambda: True,
        on_status: Optional[Callable[[str, dict], None]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.queue = queue
        self.remote = remote
        self.kv = kv
        self.is_online = is_online
        self.on_status_cb = on_status
        self._clock = clock

        self.sync_in_progress: bool = False
        self.last_result: Optional[SyncResult] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> SyncPhase:
        return SyncPhase.SYNCING if self.sync_in_progress else SyncPhase.IDLE

    async def get_last_sync(self) -> Optional[str]:
        return await self.kv.get_last_sync()

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, details)
        except Exception:
            log.exception("Status callback error (type=%s)", typ)

    # ------------------------------------------------------------------ triggers

    def request_sync(self) -> Optional[asyncio.Task]:
        """Schedule a drain on the running loop; returns None when it is a no-op."""
        if self._task is not None and not self._task.done():
            return None
        if self.sync_in_progress or not self.is_online():
            return None
        self._task = asyncio.get_running_loop().create_task(self.sync_with_server())
        return self._task

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    async def sync_with_server(self) -> Optional[SyncResult]:
        if self.sync_in_progress or not self.is_online():
            return None

        self.sync_in_progress = True
        result = SyncResult(started_at=self._clock().isoformat())
        log.info("Starting sync...")
        try:
            await self._drain(result)
            result.finished_at = self._clock().isoformat()
            await self.kv.set_last_sync(result.finished_at)
            self.last_result = result
            log.info(
                "Sync complete attempted=%d succeeded=%d failed=%d dropped=%d skipped=%d",
                result.attempted,
                result.succeeded,
                result.failed,
                result.dropped,
                result.skipped,
            )
            self._emit_status("sync_complete", {"result": result})
            return result
        except StorageOperationFailed:
            log.exception("Sync failed")
            self._emit_status("sync_failed", {"result": result})
            return None
        finally:
            self.sync_in_progress = False

    # ------------------------------------------------------------------ drain

    async def _drain(self, result: SyncResult) -> None:
        records = await self.queue.get_pending_records()
        if not records:
            return

        log.info("Processing %d pending operations", len(records))
        self._emit_status("sync_started", {"pending": len(records), "message": "Syncing..."})
        blocked: Set[Tuple[str, Any]] = set()

        for record in records:
            try:
                pending = from_record(record)
            except UnknownOperationType as exc:
                log.warning("Dropping queue entry: %s", exc)
                await self.queue.remove_pending_sync(record.get("id"))
                result.dropped += 1
                continue

            key = pending.entity_key
            if key[1] is not None and key in blocked:
                log.info("Holding %s until earlier changes to %s/%s sync", pending.id, key[0], key[1])
                result.skipped += 1
                continue

            result.attempted += 1
            try:
                await self.process_pending_operation(pending)
            except Exception as exc:  # noqa: BLE001
                log.error("Failed to sync operation %s (%s %s/%s): %s",
                          pending.id, pending.op.type.value, key[0], key[1], exc)
                result.failed += 1
                result.errors.append(f"{pending.id}: {exc}")
                blocked.add(key)
                await self.queue.record_failure(pending, str(exc))
                continue

            await self.queue.remove_pending_sync(pending.id)
            result.succeeded += 1

    async def process_pending_operation(self, pending: PendingOperation) -> Dict[str, Any] | None:
        op = pending.op
        if isinstance(op, CreateOp):
            return await self.remote.create_direct(op.store, op.payload)
        if isinstance(op, UpdateOp):
            return await self.remote.update_direct(op.store, op.item_id, op.payload)
        if isinstance(op, DeleteOp):
            await self.remote.delete_direct(op.store, op.item_id)
            return None
        raise UnknownOperationType(getattr(op, "type", None), pending.id)
