"""
cache/store.py -- SQLite-backed ephemeral key-value store with per-key TTL.

Holds the short-lived auth state: SRP handshake sessions, the current refresh
token per user, and the refresh-token blacklist. Keys are opaque strings; the
callers own the key naming (auth:srp:*, auth:refresh:*, auth:blacklist:*).

Every entry carries an absolute expiry timestamp. Expired entries are treated
exactly like missing ones on read and are physically removed either lazily
(on read) or by purge_expired(), which the API lifespan calls periodically.

Concurrency: one sqlite3 connection shared across request threads, guarded by
a lock. Each public method is a single critical section, which makes pop()
and compare_and_set() atomic with respect to every other caller in this
process.

Usage:
    store = EphemeralStore()
    store.set_with_ttl("auth:srp:abc", payload, ttl=300)
    payload = store.pop("auth:srp:abc")    # read-and-delete, None if absent/expired
    store.purge_expired()
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional

logger = logging.getLogger("srpauth.cache")

_DEFAULT_DB = Path(__file__).parent / "srpauth_sessions.db"

_DDL = """
CREATE TABLE IF NOT EXISTS ephemeral (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class EphemeralStore:
    def __init__(
        self,
        db_path: Path | str = _DEFAULT_DB,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        """Return the value for key if it exists and hasn't expired."""
        with self._lock:
            return self._get_live(key)

    def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        """Store value under key for ttl seconds, replacing any existing entry."""
        if ttl <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO ephemeral (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._clock() + ttl),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._delete(key)

    def pop(self, key: str) -> Optional[str]:
        """Atomically read and delete key. Returns None if absent or expired.

        Whatever the outcome, the key is gone afterwards.
        """
        with self._lock:
            value = self._get_live(key)
            self._delete(key)
            return value

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._get_live(key) is not None

    def ttl(self, key: str) -> int:
        """Remaining lifetime in whole seconds, or -2 if the key does not exist (Redis convention)."""
        with self._lock:
            row = self._conn.execute("SELECT expires_at FROM ephemeral WHERE key = ?", (key,)).fetchone()
        if row is None:
            return -2
        remaining = row[0] - self._clock()
        return int(remaining) if remaining > 0 else -2

    def compare_and_set(self, key: str, expected: str, value: str, ttl: int) -> bool:
        """Replace key's value only if it currently equals expected and is live.

        Returns True when the swap happened. The TTL is reset to ttl seconds.
        """
        with self._lock:
            now = self._clock()
            cursor = self._conn.execute(
                "UPDATE ephemeral SET value = ?, expires_at = ? WHERE key = ? AND value = ? AND expires_at > ?",
                (value, now + ttl, key, expected, now),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM ephemeral WHERE expires_at <= ?", (self._clock(),))
            self._conn.commit()
        if cursor.rowcount:
            logger.info("Purged %d expired ephemeral entries", cursor.rowcount)
        return cursor.rowcount

    def ping(self) -> bool:
        with self._lock:
            self._conn.execute("SELECT 1").fetchone()
        return True

    def _get_live(self, key: str) -> Optional[str]:
        row = self._conn.execute("SELECT value, expires_at FROM ephemeral WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at <= self._clock():
            self._delete(key)
            return None
        return value

    def _delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM ephemeral WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
