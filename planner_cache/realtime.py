from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Protocol

from planner_cache import settings
from planner_cache.errors import CacheError
from planner_cache.local_store import LocalStore

log = logging.getLogger("planner_cache.realtime")


class ChangeEventType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    event_type: ChangeEventType
    new_record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ReceivedChange:
    event: ChangeEvent
    received_at: datetime


class ChangeChannel(Protocol):
    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        ...

    async def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    def open(self, store: str) -> ChangeChannel:
        ...


_CLOSED = object()


class QueueChangeChannel:
    """Change events handed from a producer to one consumer through an asyncio.Queue.

    With ``maxsize`` > 0 a producer awaiting ``put`` is held back until the
    consumer catches up.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(0, int(maxsize)))
        self.closed = False

    async def put(self, event: ChangeEvent) -> None:
        if not self.closed:
            await self._queue.put(event)

    def put_nowait(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "QueueChangeChannel":
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


ChangeCallback = Callable[[str, ChangeEvent], Any]


@dataclass
class _Subscription:
    store: str
    channel: ChangeChannel
    task: asyncio.Task
    callback: Optional[ChangeCallback] = None
    history: Deque[ReceivedChange] = field(default_factory=deque)


class RealtimeChangeListener:
    """Applies server-pushed changes to the local store, one consumer task per store.

    insert/update events replace the local record (a missing local record is
    simply created), delete events remove it. Each applied event is kept in a
    per-store in-memory history for diagnostics; the history is dropped on
    unsubscribe. This runs independently of the pending queue and the sync
    engine.
    """

    def __init__(
        self,
        store: LocalStore,
        feed: ChangeFeed,
        history_limit: int = settings.REALTIME_HISTORY_LIMIT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.feed = feed
        self.history_limit = max(0, int(history_limit))
        self._clock = clock
        self._subs: Dict[str, _Subscription] = {}

    def subscribe(self, store: str, callback: Optional[ChangeCallback] = None) -> ChangeChannel:
        existing = self._subs.get(store)
        if existing is not None:
            log.warning("Already subscribed to %s", store)
            return existing.channel

        channel = self.feed.open(store)
        task = asyncio.get_running_loop().create_task(self._consume(store, channel))
        self._subs[store] = _Subscription(
            store=store,
            channel=channel,
            task=task,
            callback=callback,
            history=deque(maxlen=self.history_limit or None),
        )
        log.info("Subscribed to %s changes", store)
        return channel

    async def unsubscribe(self, store: str) -> None:
        sub = self._subs.pop(store, None)
        if sub is None:
            return
        await self._release(sub)
        log.info("Unsubscribed from %s changes", store)

    async def unsubscribe_all(self) -> None:
        subs = list(self._subs.values())
        self._subs.clear()
        for sub in subs:
            await self._release(sub)

    async def _release(self, sub: _Subscription) -> None:
        try:
            await sub.channel.close()
        except Exception:
            log.exception("Failed to close %s channel", sub.store)
        sub.task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await sub.task

    def is_subscribed_to(self, store: str) -> bool:
        return store in self._subs

    def subscription_count(self) -> int:
        return len(self._subs)

    def get_changes(self, store: str) -> List[ReceivedChange]:
        sub = self._subs.get(store)
        return list(sub.history) if sub is not None else []

    def clear_changes(self, store: Optional[str] = None) -> None:
        for name, sub in self._subs.items():
            if store is None or name == store:
                sub.history.clear()

    async def _consume(self, store: str, channel: ChangeChannel) -> None:
        async for event in channel:
            try:
                await self.apply(store, event)
            except CacheError as exc:
                log.error("Failed to apply %s change to %s: %s", event.event_type.value, store, exc)
            except Exception:
                log.exception("Unexpected error applying %s change to %s", event.event_type.value, store)

    async def apply(self, store: str, event: ChangeEvent) -> None:
        if event.event_type is ChangeEventType.DELETE:
            record_id = (event.old_record or {}).get("id")
            if record_id is None:
                log.warning("Delete event for %s without old record id", store)
                return
            await self.store.delete(store, record_id)
        else:
            if not event.new_record:
                log.warning("%s event for %s without new record", event.event_type.value, store)
                return
            await self.store.put(store, event.new_record)

        sub = self._subs.get(store)
        if sub is None:
            return
        sub.history.append(ReceivedChange(event=event, received_at=self._clock()))
        if sub.callback is not None:
            try:
                result = sub.callback(store, event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("Change callback error (store=%s)", store)
