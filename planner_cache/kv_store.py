from __future__ import annotations

import json
from typing import Any, Optional

from planner_cache.local_store import META_TABLE, LocalStore

LAST_SYNC_KEY = "last_sync_timestamp"


class KeyValueStore:
    """Scalar values kept beside the entity stores (sync state, cache metadata)."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    async def get(self, key: str, default: Any = None) -> Any:
        row = await self.store.execute(
            lambda conn: conn.execute(f"SELECT value FROM {META_TABLE} WHERE key = ?", (key,)).fetchone()
        )
        if row is None or row["value"] is None:
            return default
        return json.loads(row["value"])

    async def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value, ensure_ascii=False, default=str)
        await self.store.execute(
            lambda conn: conn.execute(
                f"INSERT OR REPLACE INTO {META_TABLE} (key, value) VALUES (?, ?)", (key, raw)
            )
        )

    async def delete(self, key: str) -> None:
        await self.store.execute(lambda conn: conn.execute(f"DELETE FROM {META_TABLE} WHERE key = ?", (key,)))

    async def get_last_sync(self) -> Optional[str]:
        return await self.get(LAST_SYNC_KEY)

    async def set_last_sync(self, timestamp: str) -> None:
        await self.set(LAST_SYNC_KEY, timestamp)
