from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from planner_cache.local_store import LocalStore
from planner_cache.realtime import ChangeEvent, ChangeEventType, QueueChangeChannel, RealtimeChangeListener
from tests._fakes import TEST_STORES, FakeFeed, open_store, wait_for

RECEIVED = datetime(2026, 6, 1, 9, 30, tzinfo=timezone.utc)


def _listener(store, feed, **kwargs):
    return RealtimeChangeListener(store, feed, clock=lambda: RECEIVED, **kwargs)


def test_update_for_missing_record_inserts_it(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        await feed.channels["goals"].put(ChangeEvent(ChangeEventType.UPDATE, new_record={"id": "g1", "title": "remote"}))
        await wait_for(lambda: len(listener.get_changes("goals")) == 1)
        rec = await store.get("goals", "g1")
        await listener.unsubscribe_all()
        await store.close()
        return rec

    assert asyncio.run(scenario()) == {"id": "g1", "title": "remote"}


def test_delete_removes_record_and_history_is_kept(tmp_path: Path):
    seen = []

    async def scenario():
        store = await open_store(tmp_path)
        await store.put("habits", {"id": "h1"})
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("habits", callback=lambda name, event: seen.append((name, event.event_type)))
        channel = feed.channels["habits"]
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "h2"}))
        await channel.put(ChangeEvent(ChangeEventType.DELETE, old_record={"id": "h1"}))
        await wait_for(lambda: len(listener.get_changes("habits")) == 2)
        ids = sorted(r["id"] for r in await store.get_all("habits"))
        history = listener.get_changes("habits")
        await listener.unsubscribe_all()
        await store.close()
        return ids, history

    ids, history = asyncio.run(scenario())
    assert ids == ["h2"]
    assert [h.event.event_type for h in history] == [ChangeEventType.INSERT, ChangeEventType.DELETE]
    assert all(h.received_at == RECEIVED for h in history)
    assert seen == [("habits", ChangeEventType.INSERT), ("habits", ChangeEventType.DELETE)]


def test_async_callback_is_awaited(tmp_path: Path):
    seen = []

    async def on_change(name, event):
        await asyncio.sleep(0)
        seen.append(event.new_record["id"])

    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals", callback=on_change)
        await feed.channels["goals"].put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "g1"}))
        await wait_for(lambda: seen == ["g1"])
        await listener.unsubscribe_all()
        await store.close()

    asyncio.run(scenario())
    assert seen == ["g1"]


def test_unsubscribe_closes_channel_and_drops_history(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        listener.subscribe("habits")
        again = listener.subscribe("goals")
        counts = [listener.subscription_count()]
        await feed.channels["goals"].put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "g1"}))
        await wait_for(lambda: len(listener.get_changes("goals")) == 1)

        await listener.unsubscribe("goals")
        await listener.unsubscribe("goals")
        counts.append(listener.subscription_count())
        state = (
            again is feed.channels["goals"],
            feed.channels["goals"].closed,
            listener.is_subscribed_to("goals"),
            listener.get_changes("goals"),
        )
        await listener.unsubscribe_all()
        counts.append(listener.subscription_count())
        await store.close()
        return counts, state

    counts, state = asyncio.run(scenario())
    assert counts == [2, 1, 0]
    assert state == (True, True, False, [])


def test_history_is_bounded_and_clearable(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed, history_limit=2)
        listener.subscribe("goals")
        for i in range(4):
            await listener.apply("goals", ChangeEvent(ChangeEventType.INSERT, new_record={"id": f"g{i}"}))
        kept = [h.event.new_record["id"] for h in listener.get_changes("goals")]
        listener.clear_changes("goals")
        cleared = listener.get_changes("goals")
        stored = await store.count("goals")
        await listener.unsubscribe_all()
        await store.close()
        return kept, cleared, stored

    kept, cleared, stored = asyncio.run(scenario())
    assert kept == ["g2", "g3"]
    assert cleared == []
    assert stored == 4


def test_bad_events_are_skipped_and_consumer_keeps_running(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        channel = feed.channels["goals"]
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"title": "no id"}))
        await channel.put(ChangeEvent(ChangeEventType.DELETE, old_record=None))
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "g1"}))
        await wait_for(lambda: len(listener.get_changes("goals")) == 1)
        count = await store.count("goals")
        await listener.unsubscribe_all()
        await store.close()
        return count

    assert asyncio.run(scenario()) == 1


def test_consumer_survives_events_the_store_rejects(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        channel = feed.channels["goals"]
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": 2**64}))
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "g1"}))
        await wait_for(lambda: len(listener.get_changes("goals")) == 1)
        rec = await store.get("goals", "g1")
        await listener.unsubscribe_all()
        await store.close()
        return rec

    assert asyncio.run(scenario()) == {"id": "g1"}


def test_consumer_survives_unexpected_errors(tmp_path: Path):
    class FlakyStore(LocalStore):
        async def put(self, store, record):
            if record.get("id") == "boom":
                raise RuntimeError("disk went away")
            return await super().put(store, record)

    async def scenario():
        store = await FlakyStore(tmp_path / "cache.sqlite3", stores=TEST_STORES, version=1).open()
        feed = FakeFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        channel = feed.channels["goals"]
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "boom"}))
        await channel.put(ChangeEvent(ChangeEventType.INSERT, new_record={"id": "g2"}))
        await wait_for(lambda: len(listener.get_changes("goals")) == 1)
        rec = await store.get("goals", "g2")
        await listener.unsubscribe_all()
        await store.close()
        return rec

    assert asyncio.run(scenario()) == {"id": "g2"}


def test_unsubscribe_all_closes_every_channel_after_a_consumer_died(tmp_path: Path):
    class BrokenChannel(QueueChangeChannel):
        async def __anext__(self):
            raise RuntimeError("feed decoder crashed")

    class MixedFeed(FakeFeed):
        def open(self, store):
            if store == "goals":
                channel = BrokenChannel()
                self.channels[store] = channel
                return channel
            return super().open(store)

    async def scenario():
        store = await open_store(tmp_path)
        feed = MixedFeed()
        listener = _listener(store, feed)
        listener.subscribe("goals")
        listener.subscribe("habits")
        await wait_for(lambda: listener._subs["goals"].task.done())
        await listener.unsubscribe_all()
        await store.close()
        return feed.channels["goals"].closed, feed.channels["habits"].closed, listener.subscription_count()

    assert asyncio.run(scenario()) == (True, True, 0)
