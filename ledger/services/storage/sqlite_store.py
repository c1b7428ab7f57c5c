"""
SQLite Keyed Store

The keyed store is a local SQLite file with one table per collection.
Each record is kept whole as a JSON document in `data`; its primary key
and index fields are copied into their own columns so lookups go through
real SQLite indexes instead of scans.

Schema creation is idempotent (IF NOT EXISTS) and versioned with
PRAGMA user_version. Opening an existing store never recreates or clears
a table; columns missing from an older file are added and backfilled
from the stored documents.

TRADEOFFS:
- Methods are async but run sqlite3 calls inline; the single-writer,
  cooperative model does not need a thread pool
- Records are schemaless documents; the pydantic models above this layer
  own validation
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union

import structlog
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger.services.storage.interface import (
    Collection,
    ConstraintViolation,
    KeyedStoreInterface,
    Record,
    StoreUnavailable,
)


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CollectionSchema:
    """Primary key path and secondary indexes of one collection."""

    key_path: str
    indexes: dict[str, tuple[str, ...]] = field(default_factory=dict)
    unique: frozenset[str] = frozenset()

    @property
    def index_columns(self) -> list[str]:
        columns: list[str] = []
        for fields in self.indexes.values():
            for name in fields:
                if name not in columns:
                    columns.append(name)
        return columns


SCHEMA: dict[Collection, CollectionSchema] = {
    Collection.USERS: CollectionSchema(
        key_path="username",
        indexes={"user_id": ("user_id",), "login_time": ("login_time",)},
        unique=frozenset({"user_id"}),
    ),
    Collection.TRANSACTIONS: CollectionSchema(
        key_path="id",
        indexes={
            "user_id": ("user_id",),
            "type": ("type",),
            "date": ("date",),
            "user_id_date": ("user_id", "date"),
        },
    ),
    Collection.RECURRING: CollectionSchema(
        key_path="id",
        indexes={"user_id": ("user_id",), "type": ("type",)},
    ),
    Collection.SPLITS: CollectionSchema(
        key_path="id",
        indexes={"user_id": ("user_id",), "date": ("date",)},
    ),
    Collection.SETTINGS: CollectionSchema(key_path="user_id"),
}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _column_value(value: Any) -> Optional[str]:
    """Normalize a key or index value to the text stored in its column."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class SQLiteKeyedStore(KeyedStoreInterface):
    """
    SQLite implementation of the keyed store.

    Any sqlite3 failure other than a constraint violation drops the
    connection and raises StoreUnavailable; the next call re-opens it.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        open_attempts: int = 2,
    ):
        self._db_path = db_path
        self._open_attempts = open_attempts
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_ready(self) -> bool:
        return self._conn is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = None
        for attempt in Retrying(
            stop=stop_after_attempt(self._open_attempts),
            wait=wait_exponential(multiplier=0.1, max=1),
            retry=retry_if_exception_type(sqlite3.OperationalError),
            reraise=True,
        ):
            with attempt:
                conn = sqlite3.connect(str(self._db_path))
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise StoreUnavailable(
                f"Store schema version {version} is newer than supported version {SCHEMA_VERSION}"
            )

        with conn:
            for collection, schema in SCHEMA.items():
                table = _quote(collection.value)
                columns = "".join(
                    f", {_quote(name)} TEXT" for name in schema.index_columns
                )
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    f"(pk TEXT PRIMARY KEY NOT NULL{columns}, data TEXT NOT NULL)"
                )
                self._add_missing_columns(conn, collection, schema)

                for index, fields in schema.indexes.items():
                    unique = "UNIQUE " if index in schema.unique else ""
                    index_name = _quote(f"idx_{collection.value}_{index}")
                    field_list = ", ".join(_quote(name) for name in fields)
                    conn.execute(
                        f"CREATE {unique}INDEX IF NOT EXISTS {index_name} "
                        f"ON {table} ({field_list})"
                    )
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        if version < SCHEMA_VERSION:
            logger.info(
                "store_schema_upgraded",
                path=str(self._db_path),
                from_version=version,
                to_version=SCHEMA_VERSION,
            )

    def _add_missing_columns(
        self,
        conn: sqlite3.Connection,
        collection: Collection,
        schema: CollectionSchema,
    ) -> None:
        """Bring a table created by an older schema up to date, keeping its rows."""
        table = _quote(collection.value)
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        for name in schema.index_columns:
            if name in existing:
                continue
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {_quote(name)} TEXT")
            conn.execute(
                f"UPDATE {table} SET {_quote(name)} = json_extract(data, ?)",
                (f"$.{name}",),
            )

    async def init(self) -> None:
        if self._conn is not None:
            return
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Could not open store at {self._db_path}: {e}") from e

        try:
            self._create_schema(conn)
        except StoreUnavailable:
            conn.close()
            raise
        except sqlite3.Error as e:
            conn.close()
            raise StoreUnavailable(f"Could not initialize store schema: {e}") from e

        self._conn = conn
        logger.debug("store_opened", path=str(self._db_path))

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def _ready(self) -> sqlite3.Connection:
        if self._conn is None:
            await self.init()
        return self._conn

    def _drop_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate sqlite3 failures into the storage error taxonomy."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"{operation}: {e}") from e
        except sqlite3.Error as e:
            self._drop_connection()
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    def _row_values(self, schema: CollectionSchema, record: Record) -> list[Optional[str]]:
        key = _column_value(record.get(schema.key_path))
        if key is None:
            raise ValueError(f"Record has no '{schema.key_path}' key")
        values = [key]
        values.extend(_column_value(record.get(name)) for name in schema.index_columns)
        values.append(json.dumps(record, sort_keys=True, default=str))
        return values

    def _insert_sql(self, collection: Collection, upsert: bool) -> str:
        schema = SCHEMA[collection]
        columns = ["pk", *schema.index_columns, "data"]
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO {_quote(collection.value)} "
            f"({', '.join(_quote(c) for c in columns)}) VALUES ({placeholders})"
        )
        if upsert:
            updates = ", ".join(
                f"{_quote(c)} = excluded.{_quote(c)}" for c in columns[1:]
            )
            sql += f" ON CONFLICT(pk) DO UPDATE SET {updates}"
        return sql

    def _index_clause(self, collection: Collection, index: str, value: Any) -> tuple[str, list]:
        schema = SCHEMA[collection]
        if index not in schema.indexes:
            raise KeyError(f"Collection '{collection.value}' has no index '{index}'")
        fields = schema.indexes[index]
        values = value if isinstance(value, (tuple, list)) else (value,)
        if len(values) != len(fields):
            raise ValueError(
                f"Index '{index}' expects {len(fields)} values, got {len(values)}"
            )
        clause = " AND ".join(f"{_quote(name)} = ?" for name in fields)
        return clause, [_column_value(v) for v in values]

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get(self, collection: Collection, key: str) -> Optional[Record]:
        conn = await self._ready()
        with self._guard(f"get {collection.value}"):
            row = conn.execute(
                f"SELECT data FROM {_quote(collection.value)} WHERE pk = ?",
                (_column_value(key),),
            ).fetchone()
        return json.loads(row[0]) if row else None

    async def get_all_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
    ) -> list[Record]:
        clause, params = self._index_clause(collection, index, value)
        conn = await self._ready()
        with self._guard(f"query {collection.value} by {index}"):
            rows = conn.execute(
                f"SELECT data FROM {_quote(collection.value)} WHERE {clause} ORDER BY rowid",
                params,
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    async def get_one_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
    ) -> Optional[Record]:
        clause, params = self._index_clause(collection, index, value)
        conn = await self._ready()
        with self._guard(f"lookup {collection.value} by {index}"):
            row = conn.execute(
                f"SELECT data FROM {_quote(collection.value)} WHERE {clause} LIMIT 1",
                params,
            ).fetchone()
        return json.loads(row[0]) if row else None

    async def put(self, collection: Collection, record: Record) -> Record:
        values = self._row_values(SCHEMA[collection], record)
        conn = await self._ready()
        with self._guard(f"put {collection.value}"):
            with conn:
                conn.execute(self._insert_sql(collection, upsert=True), values)
        return record

    async def add(self, collection: Collection, record: Record) -> Record:
        values = self._row_values(SCHEMA[collection], record)
        conn = await self._ready()
        with self._guard(f"add {collection.value}"):
            with conn:
                conn.execute(self._insert_sql(collection, upsert=False), values)
        return record

    async def delete(self, collection: Collection, key: str) -> bool:
        conn = await self._ready()
        with self._guard(f"delete {collection.value}"):
            with conn:
                cursor = conn.execute(
                    f"DELETE FROM {_quote(collection.value)} WHERE pk = ?",
                    (_column_value(key),),
                )
        return cursor.rowcount > 0

    async def put_many(self, collection: Collection, records: Sequence[Record]) -> None:
        schema = SCHEMA[collection]
        rows = [self._row_values(schema, record) for record in records]
        if not rows:
            return
        conn = await self._ready()
        with self._guard(f"put_many {collection.value}"):
            with conn:
                conn.executemany(self._insert_sql(collection, upsert=True), rows)

    async def replace_by_index(
        self,
        collection: Collection,
        index: str,
        value: Any,
        records: Sequence[Record],
    ) -> int:
        clause, params = self._index_clause(collection, index, value)
        schema = SCHEMA[collection]
        rows = [self._row_values(schema, record) for record in records]
        conn = await self._ready()
        with self._guard(f"replace {collection.value} by {index}"):
            with conn:
                cursor = conn.execute(
                    f"DELETE FROM {_quote(collection.value)} WHERE {clause}",
                    params,
                )
                deleted = cursor.rowcount
                if rows:
                    conn.executemany(self._insert_sql(collection, upsert=False), rows)
        return deleted
