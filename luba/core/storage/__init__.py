"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auction records (packed layout)
- Revealed escrows and bid tallies
- Settlement receipts
"""

from luba.core.storage.sqlite_adapter import SQLiteAdapter
from luba.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
