"""relay-wallet storage layer -- async SQLite history mirror."""

from relay_wallet.storage.database import HistoryDatabase

__all__ = ["HistoryDatabase"]
