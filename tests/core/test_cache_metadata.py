from __future__ import annotations

import asyncio
from pathlib import Path

from planner_cache.cache_metadata import CacheMetadata
from planner_cache.kv_store import KeyValueStore
from tests._fakes import open_store

MINUTE_MS = 60 * 1000


def test_freshness_follows_per_store_ttl(tmp_path: Path):
    now = {"ms": 1_000_000}

    async def scenario():
        store = await open_store(tmp_path)
        meta = CacheMetadata(
            KeyValueStore(store),
            ttl_ms={"goals": 5 * MINUTE_MS},
            default_ttl_ms=MINUTE_MS,
            clock_ms=lambda: now["ms"],
        )
        await meta.mark_updated("goals")
        await meta.mark_updated("habits")
        now["ms"] += 2 * MINUTE_MS
        result = (meta.is_fresh("goals"), meta.is_fresh("habits"), meta.is_fresh("kanban_cards"))
        await store.close()
        return result

    assert asyncio.run(scenario()) == (True, False, False)


def test_age_text():
    now = {"ms": 0}
    meta = CacheMetadata(kv=None, clock_ms=lambda: now["ms"])
    assert meta.age_text("goals") == "never cached"
    meta._updated["goals"] = 10 * MINUTE_MS
    now["ms"] = 10 * MINUTE_MS + 30_000
    assert meta.age_text("goals") == "just now"
    now["ms"] = 17 * MINUTE_MS
    assert meta.age_text("goals") == "7m ago"
    now["ms"] = 10 * MINUTE_MS + 125 * MINUTE_MS
    assert meta.age_text("goals") == "2h 5m ago"


def test_metadata_survives_reload_and_invalidation(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        kv = KeyValueStore(store)
        first = CacheMetadata(kv, clock_ms=lambda: 5_000)
        await first.mark_updated("goals")
        await first.mark_updated("habits")
        await first.invalidate("habits")

        second = CacheMetadata(kv, clock_ms=lambda: 5_000)
        await second.load()
        loaded = (second.last_updated_ms("goals"), second.last_updated_ms("habits"))
        await second.invalidate_all()

        third = CacheMetadata(kv)
        await third.load()
        cleared = third.last_updated_ms("goals")
        await store.close()
        return loaded, cleared

    loaded, cleared = asyncio.run(scenario())
    assert loaded == (5_000, None)
    assert cleared is None


def test_last_sync_round_trip(tmp_path: Path):
    async def scenario():
        store = await open_store(tmp_path)
        kv = KeyValueStore(store)
        before = await kv.get_last_sync()
        await kv.set_last_sync("2026-06-01T10:00:00+00:00")
        after = await kv.get_last_sync()
        await kv.delete("last_sync_timestamp")
        gone = await kv.get("last_sync_timestamp", "missing")
        await store.close()
        return before, after, gone

    assert asyncio.run(scenario()) == (None, "2026-06-01T10:00:00+00:00", "missing")
