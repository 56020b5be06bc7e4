"""Durable local key-value storage backed by SQLite."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# SQL schema for the local key-value store
SCHEMA = """
-- Key-value pairs grouped by namespace
CREATE TABLE IF NOT EXISTS kv_store (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

CREATE INDEX IF NOT EXISTS idx_kv_namespace ON kv_store(namespace);
"""

DEFAULT_NAMESPACE = "local"


class LocalStore:
    """SQLite-based key-value map.

    Holds the local payload cache and revision counters. A store can hand
    out views onto other namespaces of the same database with ``scoped()``;
    the remote fallback lives in its own namespace this way.
    """

    def __init__(self, db_path: str | Path, namespace: str = DEFAULT_NAMESPACE):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            namespace: Namespace this view reads and writes.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self.namespace = namespace
        self._conn: sqlite3.Connection | None = None
        self._parent: "LocalStore | None" = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._parent is not None:
            self._parent.connect()
            return
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._parent is not None:
            return
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._parent is not None:
            return self._parent._ensure_connected()
        if self._conn is None:
            self.connect()
        return self._conn

    def scoped(self, namespace: str) -> "LocalStore":
        """Return a view onto another namespace sharing this connection."""
        view = LocalStore(":memory:", namespace)
        view.db_path = self.db_path
        view._parent = self._parent or self
        return view

    def get(self, key: str) -> str | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        ).fetchone()
        return row["value"] if row else None

    def get_with_timestamp(self, key: str) -> tuple[str, datetime] | None:
        """Get a value together with the time it was last written."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value, updated_at FROM kv_store WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        ).fetchone()
        if row is None:
            return None
        return row["value"], datetime.fromisoformat(row["updated_at"])

    def set(self, key: str, value: str) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO kv_store (namespace, key, value, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(namespace, key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (self.namespace, key, value, datetime.now().isoformat()),
        )
        conn.commit()

    def remove(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key existed.
        """
        conn = self._ensure_connected()
        cursor = conn.execute(
            "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        )
        conn.commit()
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT key FROM kv_store WHERE namespace = ? ORDER BY key",
            (self.namespace,),
        )
        return [row["key"] for row in cursor]

    def clear(self) -> int:
        """Remove every key in this namespace.

        Returns:
            Number of keys removed.
        """
        conn = self._ensure_connected()
        cursor = conn.execute(
            "DELETE FROM kv_store WHERE namespace = ?", (self.namespace,)
        )
        conn.commit()
        return cursor.rowcount
