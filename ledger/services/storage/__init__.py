"""
Storage Services Package

Provides the abstract keyed-store interface, its SQLite implementation,
and the flat best-effort fallback mirror.
"""

from ledger.services.storage.interface import (
    Collection,
    ConstraintViolation,
    KeyedStoreInterface,
    Record,
    StorageError,
    StoreUnavailable,
)
from ledger.services.storage.sqlite_store import SCHEMA, SQLiteKeyedStore
from ledger.services.storage.fallback_cache import FallbackCache

__all__ = [
    # Interfaces
    "Collection",
    "KeyedStoreInterface",
    "Record",
    # Exceptions
    "ConstraintViolation",
    "StorageError",
    "StoreUnavailable",
    # Implementations
    "FallbackCache",
    "SCHEMA",
    "SQLiteKeyedStore",
]
