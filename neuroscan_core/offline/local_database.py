# =============================================================================
# neuroscan_core/offline/local_database.py
# Local SQLite Store for Cache Partitions and Durable Key/Value Storage
# =============================================================================
"""
LocalDatabase - SQLite-backed persistent storage for the offline layer.

Holds two kinds of data in one file:
- Cache partitions and their entries (the persistent response cache).
  Entry order is insertion order, tracked by an autoincrement sequence.
- A small key/value table used as durable local storage (the offline
  write queue lives under a single key).

Features:
- Automatic schema creation
- Thread-local connections (callers may run queries via asyncio.to_thread)
- Transaction support
- Every sqlite3 failure surfaces as StorageError
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import logging

from neuroscan_core.errors import StorageError
from neuroscan_core.offline.config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)


class LocalDatabase:
    """
    Local SQLite database for cache partitions and local storage.
    """

    SCHEMA = {
        "cache_partitions": """
            CREATE TABLE IF NOT EXISTS cache_partitions (
                name TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        """,
        "cache_entries": """
            CREATE TABLE IF NOT EXISTS cache_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                partition TEXT NOT NULL
                    REFERENCES cache_partitions(name) ON DELETE CASCADE,
                cache_key TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                headers_json TEXT NOT NULL,
                body BLOB,
                stored_at REAL NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(partition, cache_key)
            )
        """,
        "local_storage": """
            CREATE TABLE IF NOT EXISTS local_storage (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
            # Enable foreign keys so dropping a partition drops its entries
            self._local.connection.execute("PRAGMA foreign_keys = ON")
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        try:
            with self.transaction() as conn:
                for table_name, schema in self.SCHEMA.items():
                    conn.execute(schema)
                    logger.debug(f"Created/verified table: {table_name}")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize local database: {e}", operation="initialize") from e

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def _run(self, operation: str, sql: str, params: Sequence[Any] = (), key: Optional[str] = None) -> sqlite3.Cursor:
        """Execute a single write statement in its own transaction."""
        try:
            with self.transaction() as conn:
                return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"{operation} failed: {e}", operation=operation, key=key) from e

    def _query(self, operation: str, sql: str, params: Sequence[Any] = (), key: Optional[str] = None) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"{operation} failed: {e}", operation=operation, key=key) from e

    # =========================================================================
    # CACHE PARTITIONS
    # =========================================================================

    def list_partitions(self) -> List[str]:
        """Return partition names in creation order."""
        rows = self._query(
            "list_partitions",
            "SELECT name FROM cache_partitions ORDER BY rowid ASC",
        )
        return [row["name"] for row in rows]

    def has_partition(self, name: str) -> bool:
        rows = self._query(
            "has_partition",
            "SELECT 1 FROM cache_partitions WHERE name = ?",
            [name],
            key=name,
        )
        return bool(rows)

    def open_partition(self, name: str) -> bool:
        """
        Create a partition if it does not exist.

        Returns:
            True if the partition was created by this call
        """
        cursor = self._run(
            "open_partition",
            "INSERT OR IGNORE INTO cache_partitions (name, created_at) VALUES (?, ?)",
            [name, datetime.now().isoformat()],
            key=name,
        )
        return cursor.rowcount > 0

    def delete_partition(self, name: str) -> bool:
        """
        Destroy a partition and all of its entries.

        Returns:
            True if a partition was deleted
        """
        cursor = self._run(
            "delete_partition",
            "DELETE FROM cache_partitions WHERE name = ?",
            [name],
            key=name,
        )
        return cursor.rowcount > 0

    # =========================================================================
    # CACHE ENTRIES
    # =========================================================================

    def put_entry(
        self,
        partition: str,
        cache_key: str,
        url: str,
        status: int,
        headers: List[Tuple[str, str]],
        body: bytes,
        stored_at: float,
    ) -> None:
        """
        Store an entry, replacing any entry with the same key.

        A replaced entry moves to the end of the partition's order.
        """
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO cache_partitions (name, created_at) VALUES (?, ?)",
                    [partition, datetime.now().isoformat()],
                )
                conn.execute(
                    "DELETE FROM cache_entries WHERE partition = ? AND cache_key = ?",
                    [partition, cache_key],
                )
                conn.execute(
                    """
                    INSERT INTO cache_entries
                        (partition, cache_key, url, status, headers_json, body, stored_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        partition,
                        cache_key,
                        url,
                        status,
                        json.dumps(headers),
                        sqlite3.Binary(body),
                        stored_at,
                        datetime.now().isoformat(),
                    ],
                )
        except sqlite3.Error as e:
            raise StorageError(f"put_entry failed: {e}", operation="put_entry", key=cache_key) from e

    def get_entry(self, partition: str, cache_key: str) -> Optional[Dict[str, Any]]:
        """Return a stored entry as a dict, or None."""
        rows = self._query(
            "get_entry",
            """
            SELECT cache_key, url, status, headers_json, body, stored_at
            FROM cache_entries
            WHERE partition = ? AND cache_key = ?
            """,
            [partition, cache_key],
            key=cache_key,
        )
        if not rows:
            return None

        row = rows[0]
        return {
            "key": row["cache_key"],
            "url": row["url"],
            "status": row["status"],
            "headers": [tuple(h) for h in json.loads(row["headers_json"])],
            "body": bytes(row["body"]) if row["body"] is not None else b"",
            "stored_at": row["stored_at"],
        }

    def entry_keys(self, partition: str) -> List[str]:
        """Return entry keys in storage (insertion) order."""
        rows = self._query(
            "entry_keys",
            "SELECT cache_key FROM cache_entries WHERE partition = ? ORDER BY seq ASC",
            [partition],
            key=partition,
        )
        return [row["cache_key"] for row in rows]

    def delete_entry(self, partition: str, cache_key: str) -> bool:
        """
        Delete one entry. Deleting a missing entry is a no-op.

        Returns:
            True if an entry was deleted
        """
        cursor = self._run(
            "delete_entry",
            "DELETE FROM cache_entries WHERE partition = ? AND cache_key = ?",
            [partition, cache_key],
            key=cache_key,
        )
        return cursor.rowcount > 0

    def count_entries(self, partition: str) -> int:
        rows = self._query(
            "count_entries",
            "SELECT COUNT(*) AS count FROM cache_entries WHERE partition = ?",
            [partition],
            key=partition,
        )
        return rows[0]["count"] if rows else 0

    # =========================================================================
    # LOCAL STORAGE (KEY/VALUE)
    # =========================================================================

    def get_item(self, key: str) -> Optional[str]:
        """Get a raw stored value."""
        rows = self._query(
            "get_item",
            "SELECT value FROM local_storage WHERE key = ?",
            [key],
            key=key,
        )
        return rows[0]["value"] if rows else None

    def set_item(self, key: str, value: str) -> None:
        """Set a raw stored value; committed before returning."""
        self._run(
            "set_item",
            """
            INSERT OR REPLACE INTO local_storage (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value, datetime.now().isoformat()],
            key=key,
        )

    def remove_item(self, key: str) -> None:
        """Remove a stored value if present."""
        self._run(
            "remove_item",
            "DELETE FROM local_storage WHERE key = ?",
            [key],
            key=key,
        )

    def close(self) -> None:
        """Close this thread's database connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database(db_path: Optional[Path] = None) -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        _local_database = LocalDatabase.get_instance(db_path)
        _local_database.initialize()
    return _local_database
