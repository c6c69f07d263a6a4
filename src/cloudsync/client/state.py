"""Durable key-value settings for the sync engine.

This module provides:
- LocalSettings: SQLite-backed key-value store

The engine's managers keep their small pieces of durable state here,
each under a key derived from the zone name:
    TOKEN-<zone>        change token of the last committed fetch page
    CREATEDZONE-<zone>  whether the custom zone is known to exist
    CREATEDSUBDB-<zone> record type -> subscription id registry (JSON)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalSettings:
    """SQLite-based key-value store for durable engine state.

    Each write commits immediately (autocommit), so a value is durable as
    soon as the setter returns.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the settings database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get(self, key: str) -> str | None:
        """Get a raw string value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )

    def remove(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self._lock:
            cursor = self._conn.execute("SELECT key FROM settings ORDER BY key")
            return [row["key"] for row in cursor.fetchall()]

    # === Typed accessors ===

    def get_bool(self, key: str) -> bool:
        """Get a flag; a missing key reads as False."""
        return self.get(key) == "1"

    def set_bool(self, key: str, value: bool) -> None:
        self.set(key, "1" if value else "0")

    def get_json(self, key: str, default: Any = None) -> Any:
        """Get a JSON value, returning default if missing or unreadable."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Failed to decode setting %s, ignoring stored value", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, sort_keys=True))
