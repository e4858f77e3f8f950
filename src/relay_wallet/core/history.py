"""Append-only, time-ordered event log."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from relay_wallet.core.models import HistoryEntry, HistoryType

logger = logging.getLogger("relay_wallet.history")


class EventLog:
    """In-memory history of everything the broker did.

    Entries are never mutated or removed. Callers that want durability
    mirror new entries into a :class:`~relay_wallet.storage.database.HistoryDatabase`.
    """

    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []

    def append(self, entry_type: HistoryType, **context: Any) -> HistoryEntry:
        entry = HistoryEntry(type=entry_type, context=context)
        self._entries.append(entry)
        logger.debug(f"history += {entry_type.value}")
        return entry

    def restore(self, entries: Iterable[HistoryEntry]) -> int:
        """Prepend previously persisted entries. Returns how many were loaded."""
        restored = sorted(entries, key=lambda e: e.timestamp)
        self._entries[:0] = restored
        return len(restored)

    def list(
        self,
        limit: Optional[int] = None,
        entry_type: Optional[HistoryType] = None,
    ) -> list[HistoryEntry]:
        # Copy so callers can't mutate the log.
        entries = list(self._entries)
        if entry_type is not None:
            entries = [e for e in entries if e.type == entry_type]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def to_json(self) -> list[dict]:
        return [e.model_dump(mode="json") for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
