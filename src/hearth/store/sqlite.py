"""SQLite storage for per-user records."""

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..errors import StoreUnavailable
from .base import StateStore


class SQLiteStateStore(StateStore):
    """Persistent key-value storage using SQLite.

    Records live in a single table keyed by the namespaced key, with a
    version column used for compare-and-swap. Blocking sqlite calls run in
    a worker thread so one user's I/O never stalls another's request.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the records table if it doesn't exist."""
        try:
            with self._lock:
                conn = self._get_connection()
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS records (
                        key         TEXT PRIMARY KEY,
                        value       TEXT NOT NULL,
                        version     INTEGER NOT NULL,
                        updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
                    )
                """)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot initialize {self.db_path}: {e}") from e

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except sqlite3.Error as e:
            raise StoreUnavailable(str(e)) from e

    def _locked(self, fn, *args):
        with self._lock:
            return fn(self._get_connection(), *args)

    async def get_versioned(self, key: str) -> tuple[dict[str, Any] | None, int]:
        return await self._run(self._get_versioned, key)

    async def compare_and_set(
        self, key: str, value: dict[str, Any], expected_version: int
    ) -> bool:
        return await self._run(self._compare_and_set, key, json.dumps(value), expected_version)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        await self._run(self._set, key, json.dumps(value))

    async def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @staticmethod
    def _get_versioned(
        conn: sqlite3.Connection, key: str
    ) -> tuple[dict[str, Any] | None, int]:
        row = conn.execute(
            "SELECT value, version FROM records WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None, 0
        return json.loads(row["value"]), row["version"]

    @staticmethod
    def _compare_and_set(
        conn: sqlite3.Connection, key: str, raw: str, expected_version: int
    ) -> bool:
        if expected_version == 0:
            cursor = conn.execute(
                """
                INSERT INTO records (key, value, version) VALUES (?, ?, 1)
                ON CONFLICT(key) DO NOTHING
                """,
                (key, raw),
            )
        else:
            cursor = conn.execute(
                """
                UPDATE records
                SET value = ?, version = version + 1, updated_at = datetime('now')
                WHERE key = ? AND version = ?
                """,
                (raw, key, expected_version),
            )
        conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _set(conn: sqlite3.Connection, key: str, raw: str) -> None:
        conn.execute(
            """
            INSERT INTO records (key, value, version) VALUES (?, ?, 1)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                version = records.version + 1,
                updated_at = datetime('now')
            """,
            (key, raw),
        )
        conn.commit()
