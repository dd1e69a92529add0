"""
Persistent key -> response store, partitioned by name.

Two backends share one contract:
- SQLiteCacheStore: durable across restarts of the worker
- InMemoryCacheStore: process-local, for tests and ephemeral hosts

Every operation is idempotent and atomic per key. Concurrent writes to the
same key resolve last-write-wins in commit order. Failures raise
StoreUnavailableError; nothing is silently dropped.
"""
import json
import sqlite3
import threading
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

from offline_worker.exceptions import StoreUnavailableError
from .core import CacheEntry, PartitionHandle, Response

logger = logging.getLogger("cache.store")


class CacheStore(Protocol):
    """
    Interface for partitioned cache stores.

    Implementations:
    - SQLiteCacheStore: sqlite3 file (default)
    - InMemoryCacheStore: dict guarded by a lock
    """

    def open(self, name: str) -> PartitionHandle:
        """Open (creating if needed) a partition."""
        ...

    def match(self, handle: PartitionHandle, key: str) -> Optional[CacheEntry]:
        """Look up an entry; None on miss."""
        ...

    def put(self, handle: PartitionHandle, key: str, response: Response) -> None:
        """Store a response, overwriting any entry for the key."""
        ...

    def delete(self, handle: PartitionHandle, key: str) -> bool:
        """Delete an entry. Returns True if one was removed."""
        ...

    def keys(self, handle: PartitionHandle) -> List[str]:
        """Keys stored in a partition."""
        ...

    def list_partitions(self) -> Set[str]:
        """Names of all existing partitions."""
        ...

    def delete_partition(self, name: str) -> bool:
        """Delete a partition and its entries. Returns True if it existed."""
        ...

    def stats(self) -> Dict[str, int]:
        """Entry count per partition."""
        ...


# =============================================================================
# SQLite backend
# =============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS partitions (
    name TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    partition TEXT NOT NULL REFERENCES partitions(name) ON DELETE CASCADE,
    request_key TEXT NOT NULL,
    status INTEGER NOT NULL,
    status_text TEXT,
    headers TEXT NOT NULL,
    body BLOB NOT NULL,
    stored_at TEXT NOT NULL,
    PRIMARY KEY (partition, request_key)
);

CREATE INDEX IF NOT EXISTS idx_entries_partition ON entries(partition);
"""


class SQLiteCacheStore:
    """
    SQLite-based cache store.

    One connection per operation, so handles can be shared freely between
    request threads. SQLite serializes writers; the last commit wins.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database with schema."""
        try:
            with self._get_connection() as conn:
                conn.executescript(SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError("init", str(e)) from e
        logger.info(f"Cache store ready at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _operation(self, name: str):
        """Run a store operation, translating sqlite errors."""
        try:
            with self._get_connection() as conn:
                yield conn
        except sqlite3.Error as e:
            logger.warning(f"Store {name} failed: {e}")
            raise StoreUnavailableError(name, str(e)) from e

    def _ensure_partition(self, conn: sqlite3.Connection, name: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO partitions (name, created_at) VALUES (?, ?)",
            (name, datetime.utcnow().isoformat() + "Z"),
        )

    # =========================================================================
    # Partitions
    # =========================================================================

    def open(self, name: str) -> PartitionHandle:
        with self._operation("open") as conn:
            self._ensure_partition(conn, name)
            conn.commit()
        return PartitionHandle(name)

    def list_partitions(self) -> Set[str]:
        with self._operation("list_partitions") as conn:
            cursor = conn.execute("SELECT name FROM partitions")
            return {row["name"] for row in cursor.fetchall()}

    def delete_partition(self, name: str) -> bool:
        with self._operation("delete_partition") as conn:
            conn.execute("DELETE FROM entries WHERE partition = ?", (name,))
            cursor = conn.execute("DELETE FROM partitions WHERE name = ?", (name,))
            conn.commit()
            return cursor.rowcount > 0

    # =========================================================================
    # Entries
    # =========================================================================

    def match(self, handle: PartitionHandle, key: str) -> Optional[CacheEntry]:
        with self._operation("match") as conn:
            cursor = conn.execute(
                """
                SELECT * FROM entries
                WHERE partition = ? AND request_key = ?
                """,
                (handle.name, key),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_entry(row)

    def put(self, handle: PartitionHandle, key: str, response: Response) -> None:
        with self._operation("put") as conn:
            # A write through a handle whose partition was deleted recreates it
            self._ensure_partition(conn, handle.name)
            conn.execute(
                """
                INSERT OR REPLACE INTO entries (
                    partition, request_key, status, status_text,
                    headers, body, stored_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    handle.name,
                    key,
                    response.status,
                    response.status_text,
                    json.dumps(response.headers),
                    sqlite3.Binary(response.body),
                    datetime.utcnow().isoformat(),
                ),
            )
            conn.commit()

    def delete(self, handle: PartitionHandle, key: str) -> bool:
        with self._operation("delete") as conn:
            cursor = conn.execute(
                "DELETE FROM entries WHERE partition = ? AND request_key = ?",
                (handle.name, key),
            )
            conn.commit()
            return cursor.rowcount > 0

    def keys(self, handle: PartitionHandle) -> List[str]:
        with self._operation("keys") as conn:
            cursor = conn.execute(
                "SELECT request_key FROM entries WHERE partition = ? ORDER BY request_key",
                (handle.name,),
            )
            return [row["request_key"] for row in cursor.fetchall()]

    def stats(self) -> Dict[str, int]:
        with self._operation("stats") as conn:
            cursor = conn.execute(
                """
                SELECT p.name AS name, COUNT(e.request_key) AS entries
                FROM partitions p
                LEFT JOIN entries e ON e.partition = p.name
                GROUP BY p.name
                """
            )
            return {row["name"]: row["entries"] for row in cursor.fetchall()}

    def _row_to_entry(self, row: sqlite3.Row) -> CacheEntry:
        response = Response(
            status=row["status"],
            body=bytes(row["body"]),
            headers=json.loads(row["headers"]),
            status_text=row["status_text"] or "",
        )
        return CacheEntry(
            key=row["request_key"],
            response=response,
            stored_at=datetime.fromisoformat(row["stored_at"]),
        )


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryCacheStore:
    """Process-local cache store. Contents are lost on restart."""

    def __init__(self):
        self._partitions: Dict[str, Dict[str, CacheEntry]] = {}
        self._lock = threading.RLock()

    def open(self, name: str) -> PartitionHandle:
        with self._lock:
            self._partitions.setdefault(name, {})
        return PartitionHandle(name)

    def list_partitions(self) -> Set[str]:
        with self._lock:
            return set(self._partitions)

    def delete_partition(self, name: str) -> bool:
        with self._lock:
            return self._partitions.pop(name, None) is not None

    def match(self, handle: PartitionHandle, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._partitions.get(handle.name, {}).get(key)

    def put(self, handle: PartitionHandle, key: str, response: Response) -> None:
        entry = CacheEntry(key=key, response=response, stored_at=datetime.utcnow())
        with self._lock:
            self._partitions.setdefault(handle.name, {})[key] = entry

    def delete(self, handle: PartitionHandle, key: str) -> bool:
        with self._lock:
            return self._partitions.get(handle.name, {}).pop(key, None) is not None

    def keys(self, handle: PartitionHandle) -> List[str]:
        with self._lock:
            return sorted(self._partitions.get(handle.name, {}))

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {name: len(entries) for name, entries in self._partitions.items()}


def create_store(backend: str, db_path: Optional[Path] = None) -> CacheStore:
    """Build a store for the configured backend name."""
    if backend == "memory":
        return InMemoryCacheStore()
    if backend == "sqlite":
        if db_path is None:
            raise ValueError("sqlite store requires a db_path")
        return SQLiteCacheStore(db_path)
    raise ValueError(f"Unknown store backend: {backend}")
