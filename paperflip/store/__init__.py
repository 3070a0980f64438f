"""
Store Module

Document and settings persistence.
"""

from paperflip.store.collection import DocumentCollection, DuplicateKeyError, StoreError
from paperflip.store.database import Database, DocumentRecord, SettingsRecord, get_db, reset_db

__all__ = [
    "DocumentCollection",
    "DuplicateKeyError",
    "StoreError",
    "Database",
    "DocumentRecord",
    "SettingsRecord",
    "get_db",
    "reset_db",
]
