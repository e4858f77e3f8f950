"""Async SQLite mirror of the event log.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from relay_wallet.core.models import HistoryEntry


class HistoryDatabase:
    """Thin async wrapper around the history SQLite file.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        await self._migrate()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def append(self, entry: HistoryEntry) -> None:
        assert self._conn is not None, "Database not connected. Call connect() first."
        await self._conn.execute(
            "INSERT INTO history (type, timestamp, context_json) VALUES (?, ?, ?)",
            (
                entry.type.value,
                entry.timestamp.isoformat(),
                json.dumps(entry.model_dump(mode="json")["context"]),
            ),
        )
        await self._conn.commit()

    async def load(self) -> list[HistoryEntry]:
        """Return every stored entry, oldest first."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(
            "SELECT type, timestamp, context_json FROM history ORDER BY id"
        )
        rows = await cursor.fetchall()
        return [
            HistoryEntry(
                type=row["type"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                context=json.loads(row["context_json"] or "{}"),
            )
            for row in rows
        ]

    async def _migrate(self) -> None:
        assert self._conn is not None
        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                context_json TEXT DEFAULT '{}'
            );
            """
        )
        await self._conn.commit()
