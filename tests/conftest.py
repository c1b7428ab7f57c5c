"""
Shared fixtures.

Every service is built over a real SQLite file in a per-test temporary
directory, with a fixed clock and sequential ids so results are
deterministic.
"""

import itertools
from datetime import date, datetime
from typing import Optional

import pytest

from ledger.audit import AuditLogger
from ledger.config import SplitSettings
from ledger.models.ledger import Counterparty, Transaction, TransactionType, User
from ledger.services.identity import IdentityManager
from ledger.services.ledger_store import LedgerStore
from ledger.services.migration import LegacyImporter
from ledger.services.recurrence import RecurrenceEngine
from ledger.services.splits import SplitLedger
from ledger.services.storage import FallbackCache, SQLiteKeyedStore
from ledger.services.user_settings import UserSettingsStore


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()


class SequentialIds:
    def __init__(self, prefix: str = "id"):
        self._prefix = prefix
        self._counter = itertools.count(1)

    def new_id(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


def make_transaction(
    title: str = "Groceries",
    amount: str = "100.00",
    type: TransactionType = TransactionType.EXPENSE,
    on: date = date(2024, 3, 10),
    category: str = "food",
    **extra,
) -> Transaction:
    return Transaction(
        type=type,
        title=title,
        amount=amount,
        category=category,
        date=on,
        **extra,
    )


def as_counterparty(user: User, name: Optional[str] = None) -> Counterparty:
    return Counterparty(name=name or user.username, user_id=user.user_id)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 10, 0, 0))


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ledger.sqlite3"


@pytest.fixture
async def store(db_path):
    keyed_store = SQLiteKeyedStore(db_path)
    await keyed_store.init()
    yield keyed_store
    await keyed_store.close()


@pytest.fixture
def cache(tmp_path) -> FallbackCache:
    return FallbackCache(tmp_path / "fallback.json")


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def identity(store, clock, audit_logger) -> IdentityManager:
    return IdentityManager(store, clock=clock, audit_logger=audit_logger)


@pytest.fixture
def user_settings(store, clock) -> UserSettingsStore:
    return UserSettingsStore(store, clock=clock)


@pytest.fixture
def ledger(store, cache, clock, ids, audit_logger) -> LedgerStore:
    return LedgerStore(store, cache=cache, clock=clock, id_generator=ids, audit_logger=audit_logger)


@pytest.fixture
def recurrence(store, ledger, clock, ids, audit_logger) -> RecurrenceEngine:
    return RecurrenceEngine(store, ledger, clock=clock, id_generator=ids, audit_logger=audit_logger)


@pytest.fixture
def splits(store, identity, ledger, user_settings, cache, audit_logger) -> SplitLedger:
    return SplitLedger(
        store,
        identity,
        ledger,
        user_settings,
        cache=cache,
        id_generator=SequentialIds("grp"),
        settings=SplitSettings(),
        audit_logger=audit_logger,
    )


@pytest.fixture
def legacy_path(tmp_path):
    return tmp_path / "legacy.json"


@pytest.fixture
def importer(ledger, user_settings, legacy_path, audit_logger) -> LegacyImporter:
    return LegacyImporter(
        ledger,
        user_settings,
        legacy_path=legacy_path,
        migration_key="migration",
        audit_logger=audit_logger,
    )


@pytest.fixture
async def alice(identity) -> User:
    return await identity.register("alice", "alice-pw")


@pytest.fixture
async def bob(identity) -> User:
    return await identity.register("bob", "bob-pw")


@pytest.fixture
async def carol(identity) -> User:
    return await identity.register("carol", "carol-pw")
