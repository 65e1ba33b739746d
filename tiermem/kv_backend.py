"""
Key-Value Backing Store for Short-Term Memory

Minimal list/value store with the operations the short-term store needs:
append-to-list, range read, list length, get/set single value (with an
optional TTL), multi-key delete. Payloads are opaque bytes.

Backends:
    InMemoryKVBackend - process-local dicts under a lock (tests, single process)
    SQLiteKVBackend   - durable file (or :memory:) database, one transaction per write

Every backend failure is raised as StoreUnavailable.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from tiermem.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class KVBackend(Protocol):
    """Protocol for key-value backing stores."""

    def rpush(self, key: str, value: bytes) -> int:
        """Append to the list at *key*; return the new length."""
        ...

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[bytes]:
        """Return list items between *start* and *stop* (inclusive, negative from end)."""
        ...

    def llen(self, key: str) -> int:
        ...

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        """Set a single value; *ttl* in seconds, None for no expiry."""
        ...

    def delete(self, *keys: str) -> int:
        """Delete keys (lists or values) atomically; return how many existed."""
        ...

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        ...


def _redis_slice(items: List[bytes], start: int, stop: int) -> List[bytes]:
    """Apply inclusive, negative-aware range semantics to a list."""
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if stop < 0:
        stop = n + stop
    if start > stop or start >= n:
        return []
    return items[start:stop + 1]


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryKVBackend:
    """Thread-safe in-process key-value store."""

    def __init__(self):
        self._lists: Dict[str, List[bytes]] = {}
        self._values: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _expired(self, key: str, now: float) -> bool:
        """Drop *key* if its TTL elapsed. Must be called while holding the lock."""
        entry = self._values.get(key)
        if entry is None:
            return True
        _, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._values[key]
            return True
        return False

    def rpush(self, key: str, value: bytes) -> int:
        with self._lock:
            items = self._lists.setdefault(key, [])
            items.append(bytes(value))
            return len(items)

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[bytes]:
        with self._lock:
            return _redis_slice(list(self._lists.get(key, [])), start, stop)

    def llen(self, key: str) -> int:
        with self._lock:
            return len(self._lists.get(key, []))

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            if self._expired(key, time.time()):
                return None
            return self._values[key][0]

    def set(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        with self._lock:
            self._values[key] = (bytes(value), expires_at)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            now = time.time()
            for key in keys:
                if key in self._lists:
                    del self._lists[key]
                    removed += 1
                if key in self._values and not self._expired(key, now):
                    del self._values[key]
                    removed += 1
        return removed

    def keys(self) -> List[str]:
        with self._lock:
            now = time.time()
            live = [k for k in list(self._values) if not self._expired(k, now)]
            return sorted(set(self._lists) | set(live))

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_list (
    seq   INTEGER PRIMARY KEY AUTOINCREMENT,
    key   TEXT NOT NULL,
    value BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kv_list_key ON kv_list(key, seq);
CREATE TABLE IF NOT EXISTS kv_value (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    expires_at REAL
);
"""


class SQLiteKVBackend:
    """
    SQLite-backed key-value store.

    One connection shared across threads and guarded by a lock; each
    mutating call runs in its own transaction, so a list append or a
    multi-key delete is all-or-nothing.
    """

    def __init__(self, db_path: str = ":memory:", wal_mode: bool = True):
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            if wal_mode and db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open key-value store at {db_path}: {e}") from e
        logger.debug(f"SQLiteKVBackend opened at {db_path}")

    def _read(self, sql: str, params: tuple = ()) -> List[tuple]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Key-value read failed: {e}") from e

    def rpush(self, key: str, value: bytes) -> int:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO kv_list (key, value) VALUES (?, ?)", (key, bytes(value))
                )
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM kv_list WHERE key = ?", (key,)
                ).fetchone()
            return row[0]
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Key-value append failed for {key}: {e}") from e

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[bytes]:
        rows = self._read("SELECT value FROM kv_list WHERE key = ? ORDER BY seq", (key,))
        return _redis_slice([bytes(r[0]) for r in rows], start, stop)

    def llen(self, key: str) -> int:
        return self._read("SELECT COUNT(*) FROM kv_list WHERE key = ?", (key,))[0][0]

    def get(self, key: str) -> Optional[bytes]:
        rows = self._read(
            "SELECT value FROM kv_value WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, time.time()),
        )
        return bytes(rows[0][0]) if rows else None

    def set(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO kv_value (key, value, expires_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "expires_at = excluded.expires_at",
                    (key, bytes(value), expires_at),
                )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Key-value set failed for {key}: {e}") from e

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        marks = ",".join("?" for _ in keys)
        now = time.time()
        try:
            with self._lock, self._conn:
                lists = self._conn.execute(
                    f"SELECT COUNT(DISTINCT key) FROM kv_list WHERE key IN ({marks})", keys
                ).fetchone()[0]
                values = self._conn.execute(
                    f"SELECT COUNT(*) FROM kv_value WHERE key IN ({marks}) "
                    f"AND (expires_at IS NULL OR expires_at > ?)",
                    (*keys, now),
                ).fetchone()[0]
                self._conn.execute(f"DELETE FROM kv_list WHERE key IN ({marks})", keys)
                self._conn.execute(f"DELETE FROM kv_value WHERE key IN ({marks})", keys)
            return lists + values
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Key-value delete failed: {e}") from e

    def ping(self) -> bool:
        try:
            self._read("SELECT 1")
            return True
        except StoreUnavailable:
            return False

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_kv_backend(kind: str, location: str = "") -> KVBackend:
    """Create a key-value backend from a parsed endpoint."""
    if kind == "memory":
        return InMemoryKVBackend()
    elif kind == "sqlite":
        return SQLiteKVBackend(db_path=location or ":memory:")
    else:
        raise ValueError(f"Unknown key-value backend: {kind!r}")
