"""Storage domain: adapter contract, SQLite and remote adapters."""

from tagloom.storage.adapter import (
    Blob,
    CollectionAdapter,
    Record,
    StorageAdapter,
    StorageResult,
    empty_blob,
    normalize_blob,
)
from tagloom.storage.remote import RemoteAdapter
from tagloom.storage.sqlite import SQLiteAdapter

__all__ = [
    "Blob",
    "CollectionAdapter",
    "Record",
    "RemoteAdapter",
    "SQLiteAdapter",
    "StorageAdapter",
    "StorageResult",
    "empty_blob",
    "normalize_blob",
]
