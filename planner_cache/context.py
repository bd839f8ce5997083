from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Set, Union

from planner_api.remote_client import RemoteDataClient
from planner_cache import settings
from planner_cache.cache_metadata import CacheMetadata
from planner_cache.connectivity import ConnectivityMonitor
from planner_cache.data_service import OfflineDataService
from planner_cache.kv_store import KeyValueStore
from planner_cache.local_store import LocalStore
from planner_cache.pending_queue import PendingOperationQueue
from planner_cache.realtime import ChangeCallback, ChangeFeed, RealtimeChangeListener
from planner_cache.sync_engine import SyncEngine

log = logging.getLogger("planner_cache.context")

StatusCallback = Callable[[str, dict], None]

# Feed statuses that tell us whether the backend is reachable.
_FEED_ONLINE = {"ws_connect"}
_FEED_OFFLINE = {"ws_close", "ws_error", "ws_run_exception", "ws_ping_timeout"}


def feed_status_to_connectivity(
    monitor: ConnectivityMonitor, on_status: Optional[StatusCallback] = None
) -> StatusCallback:
    """Status callback for a change feed that forwards reachability to ``monitor``.

    The feed runs one connection per store. The process is online while at
    least one of them is connected and goes offline when the last one drops.
    """
    connected: Set[Any] = set()

    def _on_status(typ: str, details: dict) -> None:
        store = (details or {}).get("store")
        if typ in _FEED_ONLINE:
            was_empty = not connected
            connected.add(store)
            if was_empty:
                monitor.report_online()
        elif typ in _FEED_OFFLINE:
            connected.discard(store)
            if not connected:
                monitor.report_offline()
        if on_status is not None:
            on_status(typ, details)

    return _on_status


@dataclass
class CacheContext:
    """Everything the offline cache needs, built once and passed to callers."""

    store: LocalStore
    kv: KeyValueStore
    metadata: CacheMetadata
    queue: PendingOperationQueue
    engine: SyncEngine
    monitor: ConnectivityMonitor
    data: OfflineDataService
    listener: Optional[RealtimeChangeListener] = None
    on_status: Optional[StatusCallback] = None
    _started: bool = field(default=False, repr=False)

    def attach_feed(self, feed: ChangeFeed, history_limit: int = settings.REALTIME_HISTORY_LIMIT) -> RealtimeChangeListener:
        self.listener = RealtimeChangeListener(self.store, feed, history_limit=history_limit)
        return self.listener

    def subscribe(self, stores: Iterable[str], callback: Optional[ChangeCallback] = None) -> List[str]:
        if self.listener is None:
            raise RuntimeError("No change feed attached")
        subscribed = []
        for name in stores:
            if not self.store.has_store(name):
                log.warning("Not subscribing to unknown store %s", name)
                continue
            self.listener.subscribe(name, callback)
            subscribed.append(name)
        return subscribed

    def start(self) -> None:
        """Start the connectivity consumer and, when online, an initial drain."""
        if self._started:
            return
        self._started = True
        self.monitor.start()
        if self.monitor.online:
            self.engine.request_sync()

    async def close(self) -> None:
        if self.listener is not None:
            await self.listener.unsubscribe_all()
        await self.monitor.stop()
        await self.engine.wait_idle()
        await self.store.close()
        self._started = False


async def open_context(
    remote: RemoteDataClient,
    db_path: Union[str, Path, None] = None,
    stores: Iterable[str] = settings.DEFAULT_STORES,
    version: int = settings.SCHEMA_VERSION,
    initial_online: Union[bool, Callable[[], bool]] = True,
    on_status: Optional[StatusCallback] = None,
) -> CacheContext:
    """Open the local database and wire the cache components together.

    Raises StorageUnavailable when the database cannot be opened or upgraded.
    """
    store = LocalStore(db_path, stores=stores, version=version)
    await store.open()

    kv = KeyValueStore(store)
    metadata = CacheMetadata(kv)
    await metadata.load()
    store.on_bulk_write = metadata.mark_updated

    queue = PendingOperationQueue(store)
    monitor = ConnectivityMonitor(initial_online=initial_online, on_status=on_status)
    engine = SyncEngine(queue, remote, kv, is_online=monitor.is_online, on_status=on_status)
    monitor.on_online = engine.request_sync
    monitor.on_sync_requested = engine.request_sync

    data = OfflineDataService(store, queue, engine, metadata, is_online=monitor.is_online)
    return CacheContext(
        store=store,
        kv=kv,
        metadata=metadata,
        queue=queue,
        engine=engine,
        monitor=monitor,
        data=data,
        on_status=on_status,
    )
