"""
Abstract Storage Interface

The services talk to a keyed store: a handful of independently keyed
collections of JSON-compatible records, each with secondary indexes.
Keeping that contract abstract lets tests and future backends swap the
SQLite implementation out without touching business logic.

The interface is intentionally small - get, index lookup, upsert, insert,
delete, plus two atomic multi-record operations.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Sequence

Record = dict[str, Any]


class Collection(str, Enum):
    """The collections of the keyed store."""
    USERS = "users"
    TRANSACTIONS = "transactions"
    RECURRING = "recurring_transactions"
    SPLITS = "splits"
    SETTINGS = "user_settings"


class KeyedStoreInterface(ABC):
    """
    Abstract interface for the keyed store.

    Every operation auto-initializes the store on first use and raises
    StoreUnavailable if it cannot be opened.
    """

    @abstractmethod
    async def init(self) -> None:
        """
        Open the store and create any missing collections and indexes.

        Idempotent: re-opening an existing store never clears it.

        Raises:
            StoreUnavailable: If the store cannot be opened
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def get(self, collection: Collection, key: str) -> Optional[Record]:
        """
        Fetch one record by primary key.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_all_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
    ) -> list[Record]:
        """
        Fetch every record whose index value equals `value`.

        Composite indexes take a tuple of values in index order.

        Raises:
            KeyError: If the collection has no such index
        """
        pass

    @abstractmethod
    async def get_one_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
    ) -> Optional[Record]:
        """Fetch the first record for an index value, for unique indexes."""
        pass

    @abstractmethod
    async def put(self, collection: Collection, record: Record) -> Record:
        """
        Insert or replace a record.

        Raises:
            ConstraintViolation: If a unique index would be violated
        """
        pass

    @abstractmethod
    async def add(self, collection: Collection, record: Record) -> Record:
        """
        Insert a new record.

        Raises:
            ConstraintViolation: On a duplicate primary key or unique index value
        """
        pass

    @abstractmethod
    async def delete(self, collection: Collection, key: str) -> bool:
        """
        Delete a record by primary key.

        Returns:
            True if a record was deleted, False if none existed
        """
        pass

    @abstractmethod
    async def put_many(self, collection: Collection, records: Sequence[Record]) -> None:
        """
        Upsert several records as one atomic unit of work.

        Either every record is written or none is.
        """
        pass

    @abstractmethod
    async def replace_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
        records: Sequence[Record],
    ) -> int:
        """
        Delete every record matching the index value, then insert `records`,
        as one atomic unit of work.

        Returns:
            The number of records deleted
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""

    kind = "unavailable"

    @property
    def user_message(self) -> str:
        return "Storage error. Please try again"


class StoreUnavailable(StorageError):
    """The store is not initialized or could not be reached."""

    @property
    def user_message(self) -> str:
        return "Storage is unavailable. Please try again"


class ConstraintViolation(StorageError):
    """Attempted to insert a duplicate primary key or unique index value."""

    kind = "already_exists"

    @property
    def user_message(self) -> str:
        return "Record already exists"
