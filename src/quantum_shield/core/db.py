# SPDX-License-Identifier: MPL-2.0
"""
Durable record storage.

Records are JSON objects grouped into collections (``shields``,
``provenance``, ``identities``, ``reconciliation``) and addressed by key.
Two implementations share the :class:`DurableStore` protocol: an in-memory
store for tests and local runs, and a SQLite store built on ``aiosqlite``.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import aiosqlite

from quantum_shield.core.exceptions import StorageError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]

# SQL statements for schema creation
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS records (
        collection TEXT NOT NULL,
        key TEXT NOT NULL,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (collection, key)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_records_collection ON records(collection)
    """,
]

UPSERT = """
    INSERT INTO records (collection, key, data, updated_at) VALUES (?, ?, ?, ?)
    ON CONFLICT(collection, key) DO UPDATE SET
        data = excluded.data,
        updated_at = excluded.updated_at
"""


class DurableStore(Protocol):
    """Keyed JSON record storage. Every call may suspend."""

    async def put(self, collection: str, key: str, record: Record) -> None: ...

    async def get(self, collection: str, key: str) -> Optional[Record]: ...

    async def query(
        self, collection: str, predicate: Optional[Predicate] = None
    ) -> List[Record]: ...

    async def delete(self, collection: str, key: str) -> bool: ...

    async def close(self) -> None: ...


def _encode(record: Record) -> str:
    try:
        return json.dumps(record, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise StorageError(f"Record is not JSON serializable: {exc}") from exc


class InMemoryStore:
    """Process-local store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, str]] = {}

    async def put(self, collection: str, key: str, record: Record) -> None:
        self._collections.setdefault(collection, {})[key] = _encode(record)

    async def get(self, collection: str, key: str) -> Optional[Record]:
        raw = self._collections.get(collection, {}).get(key)
        return None if raw is None else json.loads(raw)

    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Record]:
        records = [json.loads(raw) for raw in self._collections.get(collection, {}).values()]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    async def delete(self, collection: str, key: str) -> bool:
        return self._collections.get(collection, {}).pop(key, None) is not None

    async def close(self) -> None:
        return None


class SQLiteStore:
    """
    SQLite-backed store.

    The connection is opened lazily on first use. Insertion order within a
    collection is preserved across updates, so queries return records in the
    order they were first written.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        async with self._lock:
            if self._conn is None:
                try:
                    conn = await aiosqlite.connect(self.db_path)
                    await conn.execute("PRAGMA journal_mode=WAL")
                    await conn.execute("PRAGMA synchronous = NORMAL")
                    await conn.execute("PRAGMA busy_timeout = 5000")
                    for statement in SCHEMA:
                        await conn.execute(statement)
                    await conn.commit()
                except aiosqlite.Error as exc:
                    raise StorageError(
                        f"Failed to open database: {exc}", {"path": self.db_path}
                    ) from exc
                logger.info("Opened record store at %s", self.db_path)
                self._conn = conn
        return self._conn

    async def put(self, collection: str, key: str, record: Record) -> None:
        data = _encode(record)
        conn = await self._connection()
        try:
            await conn.execute(
                UPSERT,
                (collection, key, data, datetime.now(timezone.utc).isoformat()),
            )
            await conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to write record: {exc}", {"collection": collection, "key": key}
            ) from exc

    async def get(self, collection: str, key: str) -> Optional[Record]:
        conn = await self._connection()
        try:
            async with conn.execute(
                "SELECT data FROM records WHERE collection = ? AND key = ?",
                (collection, key),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to read record: {exc}", {"collection": collection, "key": key}
            ) from exc
        return None if row is None else json.loads(row[0])

    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Record]:
        conn = await self._connection()
        try:
            async with conn.execute(
                "SELECT data FROM records WHERE collection = ? ORDER BY rowid",
                (collection,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to query records: {exc}", {"collection": collection}
            ) from exc
        records = [json.loads(row[0]) for row in rows]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    async def delete(self, collection: str, key: str) -> bool:
        conn = await self._connection()
        try:
            cursor = await conn.execute(
                "DELETE FROM records WHERE collection = ? AND key = ?", (collection, key)
            )
            await conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to delete record: {exc}", {"collection": collection, "key": key}
            ) from exc
        return cursor.rowcount > 0

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


def open_store(database: str) -> DurableStore:
    """In-memory store for ``":memory:"``, SQLite otherwise."""
    if database == ":memory:":
        return InMemoryStore()
    return SQLiteStore(database)
