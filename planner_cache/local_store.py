"""Persistent, schema-versioned record store backed by one SQLite file.

Each named store is one table keyed by the record ``id`` with a non-unique
index over ``updated_at``. Records are kept as JSON text and every write is a
full replacement of the stored record.

All public methods are coroutines. The blocking sqlite calls run in a worker
thread, one at a time, so the event loop only suspends at transaction
boundaries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from planner_cache import settings
from planner_cache.errors import StorageOperationFailed, StorageUnavailable, UnknownStore

Record = Dict[str, Any]
T = TypeVar("T")

_STORE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TABLE_PREFIX = "store_"
META_TABLE = "kv_meta"

log = logging.getLogger("planner_cache.store")


def _table(store: str) -> str:
    return f'"{_TABLE_PREFIX}{store}"'


def _encode(record: Record) -> str:
    try:
        return json.dumps(record, ensure_ascii=False, default=str)
    except (ValueError, TypeError) as exc:
        raise StorageOperationFailed(f"Record is not serialisable: {exc}") from exc


def _decode(raw: str) -> Record:
    return json.loads(raw)


def _updated_at(record: Record) -> Optional[str]:
    value = record.get("updated_at")
    return None if value is None else str(value)


def configure_sqlite_connection(connection: sqlite3.Connection, busy_timeout_ms: int) -> None:
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")


class LocalStore:
    def __init__(
        self,
        db_path: str | Path | None = None,
        stores: Iterable[str] = settings.DEFAULT_STORES,
        version: int = settings.SCHEMA_VERSION,
        busy_timeout_ms: int = settings.SQLITE_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = Path(db_path or settings.DB_PATH)
        self.version = int(version)
        self.busy_timeout_ms = int(busy_timeout_ms)
        self.requested_stores: List[str] = []
        for name in stores:
            if not _STORE_NAME_RE.match(name):
                raise ValueError(f"Invalid store name {name!r}")
            if name not in self.requested_stores:
                self.requested_stores.append(name)

        self._conn: Optional[sqlite3.Connection] = None
        self._stores: set[str] = set()
        self._lock = asyncio.Lock()
        # Called with the store name after a successful bulk write.
        self.on_bulk_write: Optional[Callable[[str], Awaitable[None]]] = None

    # ------------------------------------------------------------------ lifecycle

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> "LocalStore":
        """Open the database, running the upgrade step when the version grew.

        Any failure here is reported as StorageUnavailable.
        """
        if self._conn is not None:
            return self
        try:
            conn, stores = await asyncio.to_thread(self._open_sync)
        except StorageUnavailable:
            raise
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(f"Cannot open local database {self.db_path}: {exc}") from exc
        self._conn = conn
        self._stores = stores
        log.info("Local store open path=%s version=%s stores=%d", self.db_path, self.version, len(stores))
        return self

    async def close(self) -> None:
        conn = self._conn
        if conn is None:
            return
        async with self._lock:
            self._conn = None
            await asyncio.to_thread(conn.close)

    def _open_sync(self) -> tuple[sqlite3.Connection, set[str]]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=max(1.0, self.busy_timeout_ms / 1000),
            isolation_level=None,
        )
        try:
            configure_sqlite_connection(conn, self.busy_timeout_ms)
            persisted = int(conn.execute("PRAGMA user_version").fetchone()[0])
            if persisted > self.version:
                raise StorageUnavailable(
                    f"Database {self.db_path} has schema version {persisted}, newer than {self.version}"
                )
            conn.execute(f"CREATE TABLE IF NOT EXISTS {META_TABLE} (key TEXT PRIMARY KEY, value TEXT)")
            if persisted < self.version:
                self._upgrade(conn, persisted)
            stores = self._existing_stores(conn)
        except Exception:
            conn.close()
            raise

        missing = [s for s in self.requested_stores if s not in stores]
        if missing:
            log.warning(
                "Stores %s are not in schema version %s; bump the version to create them",
                ", ".join(missing),
                self.version,
            )
        return conn, stores

    def _upgrade(self, conn: sqlite3.Connection, persisted: int) -> None:
        existing = self._existing_stores(conn)
        conn.execute("BEGIN")
        try:
            for store in self.requested_stores:
                if store in existing:
                    continue
                conn.execute(
                    f"CREATE TABLE {_table(store)} ("
                    "id NOT NULL PRIMARY KEY, updated_at TEXT, data TEXT NOT NULL)"
                )
                conn.execute(
                    f'CREATE INDEX "idx_{store}_updated_at" ON {_table(store)} (updated_at)'
                )
                log.info("Created store: %s", store)
            conn.execute(f"PRAGMA user_version = {self.version}")
            conn.execute("COMMIT")
        except Exception as exc:
            conn.execute("ROLLBACK")
            raise StorageUnavailable(
                f"Schema upgrade {persisted} -> {self.version} failed: {exc}"
            ) from exc

    @staticmethod
    def _existing_stores(conn: sqlite3.Connection) -> set[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name GLOB ?",
            (_TABLE_PREFIX + "*",),
        ).fetchall()
        return {row["name"][len(_TABLE_PREFIX):] for row in rows}

    # ------------------------------------------------------------------ helpers

    def store_names(self) -> List[str]:
        return sorted(self._stores)

    def has_store(self, store: str) -> bool:
        return store in self._stores

    async def _require(self, store: str) -> None:
        if self._conn is None:
            await self.open()
        if store not in self._stores:
            raise UnknownStore(store)

    async def execute(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn(connection)`` in the worker thread under the store lock."""
        if self._conn is None:
            await self.open()
        async with self._lock:
            conn = self._conn
            if conn is None:
                raise StorageOperationFailed("Local store is closed")
            try:
                return await asyncio.to_thread(fn, conn)
            except (sqlite3.Error, OverflowError, ValueError, TypeError) as exc:
                raise StorageOperationFailed(str(exc)) from exc

    @staticmethod
    def _in_transaction(conn: sqlite3.Connection, fn: Callable[[sqlite3.Connection], T]) -> T:
        conn.execute("BEGIN")
        try:
            result = fn(conn)
            conn.execute("COMMIT")
            return result
        except Exception:
            conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------ reads

    async def get_all(self, store: str) -> List[Record]:
        await self._require(store)

        def _read(conn: sqlite3.Connection) -> List[Record]:
            rows = conn.execute(f"SELECT data FROM {_table(store)}").fetchall()
            return [_decode(row["data"]) for row in rows]

        return await self.execute(_read)

    async def get(self, store: str, record_id: Any) -> Optional[Record]:
        await self._require(store)

        def _read(conn: sqlite3.Connection) -> Optional[Record]:
            row = conn.execute(f"SELECT data FROM {_table(store)} WHERE id = ?", (record_id,)).fetchone()
            return None if row is None else _decode(row["data"])

        return await self.execute(_read)

    async def updated_since(self, store: str, since: Optional[str] = None) -> List[Record]:
        """Records with ``updated_at`` after ``since``, oldest first."""
        await self._require(store)

        def _read(conn: sqlite3.Connection) -> List[Record]:
            if since is None:
                rows = conn.execute(
                    f"SELECT data FROM {_table(store)} ORDER BY updated_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT data FROM {_table(store)} WHERE updated_at > ? ORDER BY updated_at",
                    (str(since),),
                ).fetchall()
            return [_decode(row["data"]) for row in rows]

        return await self.execute(_read)

    async def count(self, store: str) -> int:
        await self._require(store)
        return await self.execute(
            lambda conn: int(conn.execute(f"SELECT COUNT(*) FROM {_table(store)}").fetchone()[0])
        )

    # ------------------------------------------------------------------ writes

    async def put(self, store: str, record: Record) -> Any:
        """Insert or replace ``record`` by its id. Returns the id."""
        await self._require(store)
        if not isinstance(record, dict) or record.get("id") in (None, ""):
            raise StorageOperationFailed(f"Record for store {store!r} has no id")
        record_id = record["id"]
        data = _encode(record)

        def _write(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT OR REPLACE INTO {_table(store)} (id, updated_at, data) VALUES (?, ?, ?)",
                (record_id, _updated_at(record), data),
            )

        await self.execute(_write)
        return record_id

    async def put_all(self, store: str, records: Sequence[Optional[Record]]) -> int:
        """Upsert ``records`` in one transaction; records without an id are skipped."""
        await self._require(store)
        if not records:
            return 0
        rows = [
            (r["id"], _updated_at(r), _encode(r))
            for r in records
            if isinstance(r, dict) and r.get("id") not in (None, "")
        ]

        def _write(conn: sqlite3.Connection) -> None:
            conn.executemany(
                f"INSERT OR REPLACE INTO {_table(store)} (id, updated_at, data) VALUES (?, ?, ?)",
                rows,
            )

        await self.execute(lambda conn: self._in_transaction(conn, _write))
        if self.on_bulk_write is not None:
            await self.on_bulk_write(store)
        return len(rows)

    async def delete(self, store: str, record_id: Any) -> None:
        await self._require(store)
        await self.execute(
            lambda conn: conn.execute(f"DELETE FROM {_table(store)} WHERE id = ?", (record_id,))
        )

    async def clear(self, store: str) -> None:
        await self._require(store)
        await self.execute(lambda conn: conn.execute(f"DELETE FROM {_table(store)}"))
