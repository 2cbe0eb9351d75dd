import logging
import sqlite3
import threading

import msgspec

from stepflow.application.port import CacheBackend
from stepflow.domain.exception import CacheError
from stepflow.domain.value_object import CacheEntry

logger = logging.getLogger(__name__)


class SQLiteCacheBackend(CacheBackend):
    """SQLite-based durable cache tier. Entries are stored as msgspec JSON."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize the SQLite cache backend.

        :param db_path: Path to SQLite database file (defaults to in-memory)
        :type db_path: str
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(CacheEntry)
        self._init_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def _init_database(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                workflow_id TEXT,
                entry TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_entries_workflow ON cache_entries (workflow_id)")
        conn.commit()

    def get(self, key: str) -> CacheEntry | None:
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT entry FROM cache_entries WHERE key = ?", (key,)
                ).fetchone()
            if row is None:
                return None
            return self._decoder.decode(row[0])
        except (sqlite3.Error, msgspec.MsgspecError) as e:
            raise CacheError(f"Failed to read cache entry '{key}': {e}", details={"key": key}) from e

    def set(self, entry: CacheEntry) -> None:
        try:
            payload = self._encoder.encode(entry).decode("utf-8")
            with self._lock:
                conn = self._get_connection()
                conn.execute(
                    "INSERT OR REPLACE INTO cache_entries (key, workflow_id, entry) VALUES (?, ?, ?)",
                    (entry.key, entry.workflow_id, payload),
                )
                conn.commit()
        except (sqlite3.Error, msgspec.MsgspecError, TypeError) as e:
            raise CacheError(f"Failed to write cache entry '{entry.key}': {e}", details={"key": entry.key}) from e

    def delete(self, key: str) -> bool:
        try:
            with self._lock:
                conn = self._get_connection()
                cursor = conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheError(f"Failed to delete cache entry '{key}': {e}", details={"key": key}) from e

    def clear(self, workflow_id: str | None = None) -> int:
        try:
            with self._lock:
                conn = self._get_connection()
                if workflow_id is None:
                    cursor = conn.execute("DELETE FROM cache_entries")
                else:
                    cursor = conn.execute("DELETE FROM cache_entries WHERE workflow_id = ?", (workflow_id,))
                conn.commit()
            logger.debug("Deleted %d durable cache entries", cursor.rowcount)
            return cursor.rowcount
        except sqlite3.Error as e:
            raise CacheError(f"Failed to clear cache: {e}", details={"workflowId": workflow_id}) from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __del__(self):
        """Close the database connection on cleanup."""
        self.close()
