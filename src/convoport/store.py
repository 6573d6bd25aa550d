"""Namespaced key-value store with SQLite persistence."""

import json
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Self


class KeyValueStore:
    """Durable key-value store for sync state.

    Values are JSON-encoded. Keys live in a namespace so several
    independent stores can share one database file.
    """

    def __init__(self, db_path: Path, namespace: str = "default") -> None:
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
            namespace: Key namespace for this store instance
        """
        self._db_path = db_path
        self._namespace = namespace
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # The rate limiter may be driven from worker threads; access is
        # still serialized by the single-flight orchestrator.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    @property
    def namespace(self) -> str:
        return self._namespace

    def ensure_schema(self) -> None:
        """Create the kv table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)
        self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by key, or default if missing."""
        cursor = self._conn.execute(
            "SELECT value FROM kv WHERE namespace = ? AND key = ?",
            (self._namespace, key),
        )
        row = cursor.fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        """Insert or replace a value."""
        self._conn.execute(
            """
            INSERT INTO kv (namespace, key, value) VALUES (?, ?, ?)
            ON CONFLICT(namespace, key) DO UPDATE SET value = excluded.value
            """,
            (self._namespace, key, json.dumps(value)),
        )
        self._conn.commit()

    def remove(self, keys: str | Iterable[str]) -> None:
        """Remove one key or several keys. Missing keys are ignored."""
        if isinstance(keys, str):
            keys = [keys]
        self._conn.executemany(
            "DELETE FROM kv WHERE namespace = ? AND key = ?",
            [(self._namespace, key) for key in keys],
        )
        self._conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        """List keys in this namespace starting with prefix."""
        cursor = self._conn.execute(
            "SELECT key FROM kv WHERE namespace = ? ORDER BY key",
            (self._namespace,),
        )
        return [row["key"] for row in cursor if row["key"].startswith(prefix)]

    def clear(self) -> None:
        """Remove every key in this namespace."""
        self._conn.execute("DELETE FROM kv WHERE namespace = ?", (self._namespace,))
        self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
