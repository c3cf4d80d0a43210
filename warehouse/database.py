"""SQLite persistence layer for the warehouse backend.

The repository is the durable local cache: it mirrors the last known record
snapshot and a handful of session settings so both survive a restart.  It
relies on the standard library :mod:`sqlite3` module; the remote spreadsheet
stays the system of record.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Optional

from .models import Transaction

LAST_SYNC_KEY = "last_sync_at"
FILTER_STATE_KEY = "ui_filter_state"
SESSION_KEYS: tuple[str, ...] = (LAST_SYNC_KEY, FILTER_STATE_KEY)


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        # The API thread pool and the background refresh share the connection.
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            self._connection.commit()

    # ------------------------------------------------------------------
    # Record snapshot
    # ------------------------------------------------------------------
    def replace_records(self, records: Iterable[Transaction]) -> None:
        """Overwrite the cached snapshot, keeping the in-memory order."""

        rows = [
            {
                "id": tx.id,
                "position": position,
                "kind": tx.kind.name,
                "payload": json.dumps(tx.to_dict(), ensure_ascii=False),
            }
            for position, tx in enumerate(records)
        ]
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute("DELETE FROM records")
            cursor.executemany(
                """
                INSERT OR REPLACE INTO records (id, position, kind, payload)
                VALUES (:id, :position, :kind, :payload)
                """,
                rows,
            )
            self._connection.commit()

    def load_records(self) -> list[Transaction]:
        """Return the cached snapshot; unreadable rows are dropped."""

        with self._lock:
            rows = self._connection.execute(
                "SELECT payload FROM records ORDER BY position ASC"
            ).fetchall()
        records: list[Transaction] = []
        for row in rows:
            try:
                records.append(Transaction.from_dict(json.loads(row["payload"])))
            except (TypeError, ValueError):
                continue
        return records

    def clear_records(self) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM records")
            self._connection.commit()

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._connection.commit()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def delete_settings(self, keys: Iterable[str]) -> None:
        with self._lock:
            self._connection.executemany(
                "DELETE FROM settings WHERE key = ?",
                [(key,) for key in keys],
            )
            self._connection.commit()

    def clear_session(self) -> None:
        """Forget everything tied to the signed-in user."""

        self.clear_records()
        self.delete_settings(SESSION_KEYS)
