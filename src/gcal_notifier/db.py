"""
SQLite key/value persistence for OAuth tokens and the event cache.
"""

import logging
import sqlite3
import threading
import time
from pathlib import Path

from gcal_notifier.models import PersistenceError

TOKENS_KEY = "tokens"
EVENTS_KEY = "events"

logger = logging.getLogger(__name__)


class BlobStore:
    """Manages the SQLite state database holding opaque blobs by key.

    The connection may be used from the fetch and OAuth worker threads, so
    every statement runs under one lock.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row  # Enable column access by name
            self._init_schema()
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open state database {self.db_path}: {e}") from e

    def _init_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        self.conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise PersistenceError("State database not connected")
        return self.conn

    def load_blob(self, key: str) -> bytes | None:
        """Return the stored value for key, or None when absent."""
        conn = self._require_conn()
        try:
            with self._lock:
                row = conn.execute("SELECT value FROM blobs WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read blob {key!r}: {e}") from e
        if row is None:
            return None
        value = row["value"]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def save_blob(self, key: str, data: bytes):
        """Insert or replace the value for key and commit."""
        conn = self._require_conn()
        try:
            with self._lock:
                conn.execute(
                    "INSERT INTO blobs (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, sqlite3.Binary(data), int(time.time())),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write blob {key!r}: {e}") from e
        logger.debug("Saved blob %s (%d bytes)", key, len(data))

    def delete_blob(self, key: str):
        conn = self._require_conn()
        try:
            with self._lock:
                conn.execute("DELETE FROM blobs WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete blob {key!r}: {e}") from e

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_status(db_path: Path) -> list:
    """
    Return (key, size, updated_at) rows for every stored blob.

    Returns an empty list when the DB file does not exist or has no blobs table yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master")}
        if "blobs" not in tables:
            return []
        cursor = conn.execute("""
            SELECT key, LENGTH(value) AS size, updated_at
            FROM blobs
            ORDER BY key
        """)
        return cursor.fetchall()
    finally:
        conn.close()
