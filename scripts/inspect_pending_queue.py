#!/usr/bin/env python3
"""Print the pending sync queue and sync state of a local planner cache.

Useful when a device reports changes that never reached the backend: it shows
every queued operation in drain order with its attempt count and last error,
plus the last successful sync time and per-store cache freshness.

Usage examples
  python scripts/inspect_pending_queue.py --db data/planner_cache.sqlite3
  python scripts/inspect_pending_queue.py --db data/planner_cache.sqlite3 --json
  python scripts/inspect_pending_queue.py --db data/planner_cache.sqlite3 --drop-unknown
"""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime

from planner_cache.cache_metadata import CacheMetadata
from planner_cache.errors import UnknownOperationType
from planner_cache.kv_store import KeyValueStore
from planner_cache.local_store import LocalStore
from planner_cache.operations import from_record
from planner_cache.pending_queue import PendingOperationQueue
from planner_cache.settings import DEFAULT_STORES, SCHEMA_VERSION


def log(msg: str):
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{ts}] {msg}", flush=True)


async def inspect(db: str, as_json: bool, drop_unknown: bool) -> int:
    store = LocalStore(db, stores=DEFAULT_STORES, version=SCHEMA_VERSION)
    await store.open()
    try:
        kv = KeyValueStore(store)
        metadata = CacheMetadata(kv)
        await metadata.load()
        queue = PendingOperationQueue(store)
        records = await queue.get_pending_records()
        last_sync = await kv.get_last_sync()

        unknown = []
        for record in records:
            try:
                from_record(record)
            except UnknownOperationType:
                unknown.append(record)

        if as_json:
            print(json.dumps({"last_sync": last_sync, "pending": records}, ensure_ascii=False, indent=2))
        else:
            log(f"last sync: {last_sync or 'never'}")
            log(f"pending operations: {len(records)}")
            for record in records:
                item = record.get("itemId") or (record.get("payload") or {}).get("id")
                line = (
                    f"  {record.get('timestamp')}  {record.get('id')}  "
                    f"{str(record.get('type')):<7} {record.get('store')}/{item}  attempts={record.get('attempts', 0)}"
                )
                if record.get("lastError"):
                    line += f"  last_error={record['lastError']}"
                print(line)
            for name in store.store_names():
                if metadata.last_updated_ms(name) is not None:
                    print(f"  cache {name}: {metadata.age_text(name)} fresh={metadata.is_fresh(name)}")

        if drop_unknown and unknown:
            for record in unknown:
                await queue.remove_pending_sync(record.get("id"))
            log(f"dropped {len(unknown)} entries with unknown operation type")
    finally:
        await store.close()
    return 0


def main() -> None:
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--db", required=True, help="Path to the local cache database")
    ap.add_argument("--json", action="store_true", help="Emit the raw queue as JSON")
    ap.add_argument("--drop-unknown", action="store_true", help="Remove entries whose type cannot be replayed")
    args = ap.parse_args()
    raise SystemExit(asyncio.run(inspect(args.db, args.json, args.drop_unknown)))


if __name__ == "__main__":
    main()
