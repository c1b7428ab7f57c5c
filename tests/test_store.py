"""Tests for the SQLite keyed store."""

import json
import sqlite3

import pytest

from ledger.services.storage import (
    Collection,
    ConstraintViolation,
    SQLiteKeyedStore,
    StoreUnavailable,
)
from ledger.services.storage.sqlite_store import SCHEMA_VERSION


def user_record(username: str, user_id: str) -> dict:
    return {"username": username, "user_id": user_id, "login_time": "2024-03-15T10:00:00"}


def split_record(split_id: str, user_id: str, on: str = "2024-03-01") -> dict:
    return {"id": split_id, "user_id": user_id, "date": on, "amount": "10.00"}


class TestLifecycle:
    """Opening, re-opening and upgrading the store."""

    async def test_init_is_idempotent_and_keeps_data(self, db_path):
        """Test that re-opening an existing store never clears it."""
        first = SQLiteKeyedStore(db_path)
        await first.init()
        await first.init()
        await first.put(Collection.USERS, user_record("alice", "USR-1"))
        await first.close()

        second = SQLiteKeyedStore(db_path)
        await second.init()
        assert await second.get(Collection.USERS, "alice") == user_record("alice", "USR-1")
        await second.close()

    async def test_operations_open_the_store_lazily(self, db_path):
        """Test that the first operation initializes an unopened store."""
        store = SQLiteKeyedStore(db_path)
        assert not store.is_ready
        assert await store.get(Collection.USERS, "nobody") is None
        assert store.is_ready
        await store.close()

    async def test_schema_version_is_recorded(self, store, db_path):
        """Test that the schema version lands in PRAGMA user_version."""
        conn = sqlite3.connect(str(db_path))
        try:
            assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        finally:
            conn.close()

    async def test_older_schema_is_upgraded_in_place(self, db_path):
        """Test that a missing index column is added and backfilled from the documents."""
        conn = sqlite3.connect(str(db_path))
        with conn:
            conn.execute(
                'CREATE TABLE "splits" (pk TEXT PRIMARY KEY NOT NULL, "user_id" TEXT, data TEXT NOT NULL)'
            )
            conn.execute(
                'INSERT INTO "splits" (pk, "user_id", data) VALUES (?, ?, ?)',
                ("s1", "USR-1", json.dumps(split_record("s1", "USR-1", "2024-01-05"))),
            )
        conn.close()

        store = SQLiteKeyedStore(db_path)
        await store.init()
        by_date = await store.get_all_by_index(Collection.SPLITS, "date", "2024-01-05")
        assert [r["id"] for r in by_date] == ["s1"]
        await store.close()

    async def test_newer_schema_is_refused(self, db_path):
        """Test that a store written by a newer version is not opened."""
        conn = sqlite3.connect(str(db_path))
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        conn.close()

        with pytest.raises(StoreUnavailable):
            await SQLiteKeyedStore(db_path).init()

    async def test_unopenable_path_raises_store_unavailable(self, tmp_path):
        """Test that a path SQLite cannot open is reported as unavailable."""
        store = SQLiteKeyedStore(tmp_path, open_attempts=1)
        with pytest.raises(StoreUnavailable):
            await store.get(Collection.USERS, "alice")
        assert not store.is_ready

    async def test_failed_operation_reopens_on_next_call(self, store):
        """Test that a broken connection is dropped and re-opened."""
        await store.put(Collection.USERS, user_record("alice", "USR-1"))
        store._conn.close()

        with pytest.raises(StoreUnavailable):
            await store.get(Collection.USERS, "alice")
        assert not store.is_ready

        assert (await store.get(Collection.USERS, "alice"))["user_id"] == "USR-1"


class TestRecords:
    """Single-record operations."""

    async def test_get_missing_returns_none(self, store):
        """Test that an absent key is None, not an error."""
        assert await store.get(Collection.TRANSACTIONS, "missing") is None

    async def test_put_replaces_existing_record(self, store):
        """Test that put is an upsert on the primary key."""
        await store.put(Collection.SPLITS, split_record("s1", "USR-1"))
        await store.put(Collection.SPLITS, {**split_record("s1", "USR-1"), "amount": "20.00"})

        assert (await store.get(Collection.SPLITS, "s1"))["amount"] == "20.00"
        assert len(await store.get_all_by_index(Collection.SPLITS, "user_id", "USR-1")) == 1

    async def test_add_rejects_duplicate_key(self, store):
        """Test that add refuses an existing primary key."""
        await store.add(Collection.USERS, user_record("alice", "USR-1"))
        with pytest.raises(ConstraintViolation):
            await store.add(Collection.USERS, user_record("alice", "USR-2"))

    async def test_unique_index_is_enforced(self, store):
        """Test that two users cannot share a user id, even through put."""
        await store.add(Collection.USERS, user_record("alice", "USR-1"))
        with pytest.raises(ConstraintViolation):
            await store.put(Collection.USERS, user_record("mallory", "USR-1"))
        assert await store.get(Collection.USERS, "mallory") is None

    async def test_record_without_key_is_rejected(self, store):
        """Test that a record missing its key path raises ValueError."""
        with pytest.raises(ValueError):
            await store.put(Collection.TRANSACTIONS, {"user_id": "USR-1"})

    async def test_delete_reports_whether_a_record_was_removed(self, store):
        """Test delete returns True once, then False."""
        await store.put(Collection.SPLITS, split_record("s1", "USR-1"))
        assert await store.delete(Collection.SPLITS, "s1") is True
        assert await store.delete(Collection.SPLITS, "s1") is False


class TestIndexes:
    """Secondary index lookups."""

    async def test_get_all_by_index_returns_only_matches(self, store):
        """Test that index lookup is an exact match on the indexed field."""
        await store.put(Collection.SPLITS, split_record("s1", "USR-1"))
        await store.put(Collection.SPLITS, split_record("s2", "USR-2"))
        await store.put(Collection.SPLITS, split_record("s3", "USR-1"))

        records = await store.get_all_by_index(Collection.SPLITS, "user_id", "USR-1")
        assert sorted(r["id"] for r in records) == ["s1", "s3"]

    async def test_composite_index(self, store):
        """Test lookup through the user_id + date composite index."""
        await store.put(Collection.TRANSACTIONS, {"id": "t1", "user_id": "USR-1", "date": "2024-03-01"})
        await store.put(Collection.TRANSACTIONS, {"id": "t2", "user_id": "USR-1", "date": "2024-03-02"})
        await store.put(Collection.TRANSACTIONS, {"id": "t3", "user_id": "USR-2", "date": "2024-03-01"})

        records = await store.get_all_by_index(
            Collection.TRANSACTIONS, "user_id_date", ("USR-1", "2024-03-01")
        )
        assert [r["id"] for r in records] == ["t1"]

    async def test_get_one_by_index(self, store):
        """Test single-record lookup through the unique user_id index."""
        await store.add(Collection.USERS, user_record("alice", "USR-1"))
        record = await store.get_one_by_index(Collection.USERS, "user_id", "USR-1")
        assert record["username"] == "alice"
        assert await store.get_one_by_index(Collection.USERS, "user_id", "USR-9") is None

    async def test_unknown_index_raises(self, store):
        """Test that an index the collection does not declare is a KeyError."""
        with pytest.raises(KeyError):
            await store.get_all_by_index(Collection.SPLITS, "title", "Dinner")


class TestAtomicWrites:
    """put_many and replace_by_index are all-or-nothing."""

    async def test_put_many_writes_every_record(self, store):
        """Test that put_many upserts all records."""
        await store.put_many(
            Collection.SPLITS, [split_record("s1", "USR-1"), split_record("s2", "USR-1")]
        )
        assert len(await store.get_all_by_index(Collection.SPLITS, "user_id", "USR-1")) == 2

    async def test_put_many_rolls_back_on_failure(self, store):
        """Test that one bad record leaves none of the batch behind."""
        with pytest.raises(ConstraintViolation):
            await store.put_many(
                Collection.USERS,
                [user_record("alice", "USR-1"), user_record("bob", "USR-1")],
            )
        assert await store.get(Collection.USERS, "alice") is None

    async def test_replace_by_index_swaps_the_partition(self, store):
        """Test that replace deletes the old partition and inserts the new one."""
        await store.put(Collection.SPLITS, split_record("old-1", "USR-1"))
        await store.put(Collection.SPLITS, split_record("old-2", "USR-1"))
        await store.put(Collection.SPLITS, split_record("other", "USR-2"))

        deleted = await store.replace_by_index(
            Collection.SPLITS, "user_id", "USR-1", [split_record("new-1", "USR-1")]
        )

        assert deleted == 2
        records = await store.get_all_by_index(Collection.SPLITS, "user_id", "USR-1")
        assert [r["id"] for r in records] == ["new-1"]
        assert await store.get(Collection.SPLITS, "other") is not None

    async def test_replace_by_index_is_atomic(self, store):
        """Test that a failed insert keeps the old partition intact."""
        await store.put(Collection.SPLITS, split_record("old-1", "USR-1"))

        with pytest.raises(ConstraintViolation):
            await store.replace_by_index(
                Collection.SPLITS,
                "user_id",
                "USR-1",
                [split_record("dup", "USR-1"), split_record("dup", "USR-1")],
            )

        records = await store.get_all_by_index(Collection.SPLITS, "user_id", "USR-1")
        assert [r["id"] for r in records] == ["old-1"]
