"""
contact_sync.storage - Persistence module

SQLite-backed contact store and sync log store.
"""

from contact_sync.storage.contact_store import ContactStore
from contact_sync.storage.db import SyncDatabase
from contact_sync.storage.sync_log_store import SyncLogStore

__all__ = ["SyncDatabase", "ContactStore", "SyncLogStore"]
