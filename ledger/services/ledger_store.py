"""
Ledger Store

CRUD and filtered queries over one user's transactions.

Every call is parameterized by the acting user's id. Writes that would
touch a record owned by someone else are rejected with
NotFoundOrForbidden rather than silently re-scoped.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from ledger.audit import AuditLogger
from ledger.clock import Clock, IdGenerator, SystemClock, UUIDGenerator
from ledger.errors import NotFoundOrForbidden, ValidationError
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import (
    LedgerSummary,
    Transaction,
    TransactionFilter,
    TransactionType,
)
from ledger.services.storage import (
    Collection,
    FallbackCache,
    KeyedStoreInterface,
    StoreUnavailable,
)


logger = structlog.get_logger(__name__)


def apply_filter(
    transactions: list[Transaction],
    filter: Optional[TransactionFilter] = None,
) -> list[Transaction]:
    """
    Type equality, inclusive date range, newest first, then limit.

    The steps run in that order so `limit` always keeps the newest
    matching entries.
    """
    filter = filter or TransactionFilter()
    result = transactions
    if filter.type:
        result = [t for t in result if t.type == filter.type]
    if filter.start_date:
        result = [t for t in result if t.date >= filter.start_date]
    if filter.end_date:
        result = [t for t in result if t.date <= filter.end_date]
    result = sorted(result, key=lambda t: t.date, reverse=True)
    if filter.limit:
        result = result[:filter.limit]
    return result


class LedgerStore:
    """Transactions of one user at a time, keyed by the owner's user id."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        cache: Optional[FallbackCache] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._cache = cache
        self._clock = clock or SystemClock()
        self._ids = id_generator or UUIDGenerator()
        self._audit_logger = audit_logger

    @staticmethod
    def _require_user(user_id: str) -> None:
        if not user_id:
            raise ValidationError("A user id is required")

    async def _fetch_all(self, user_id: str) -> list[Transaction]:
        records = await self._store.get_all_by_index(Collection.TRANSACTIONS, "user_id", user_id)
        return [Transaction.model_validate(r) for r in records]

    async def _refresh_mirror(self, user_id: str) -> None:
        if not self._cache:
            return
        try:
            transactions = await self._fetch_all(user_id)
        except StoreUnavailable as e:
            logger.warning("fallback_refresh_skipped", user_id=user_id, error=str(e))
            return
        await self._cache.mirror_transactions(user_id, transactions)

    async def save(self, user_id: str, transaction: Transaction) -> Transaction:
        """
        Insert or replace a transaction in the owner's partition.

        Assigns an id and stamps `created_at` when they are missing.

        Raises:
            NotFoundOrForbidden: If the id already belongs to another user
        """
        self._require_user(user_id)
        stored = transaction.model_copy(update={
            "id": transaction.id or self._ids.new_id(),
            "user_id": user_id,
            "created_at": transaction.created_at or self._clock.now(),
        })

        existing = await self._store.get(Collection.TRANSACTIONS, stored.id)
        if existing and existing.get("user_id") != user_id:
            raise NotFoundOrForbidden()

        await self._store.put(Collection.TRANSACTIONS, stored.model_dump(mode="json"))

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.transaction_saved(user_id, stored.id, str(stored.amount))
            )
        await self._refresh_mirror(user_id)
        return stored

    async def query(
        self,
        user_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """
        The user's transactions matching `filter`, newest first.

        When the store is unavailable and a fallback cache is configured,
        the cached snapshot is filtered and returned instead.
        """
        self._require_user(user_id)
        try:
            transactions = await self._fetch_all(user_id)
        except StoreUnavailable as e:
            if not self._cache:
                raise
            transactions = await self._cache.load_transactions(user_id)
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.store_unavailable("query transactions", str(e))
                )
                await self._audit_logger.log(
                    AuditEventBuilder.fallback_served(user_id, "transactions", len(transactions))
                )
        return apply_filter(transactions, filter)

    async def get(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        """The user's transaction with this id, or None if it is absent or not theirs."""
        self._require_user(user_id)
        record = await self._store.get(Collection.TRANSACTIONS, transaction_id)
        if not record or record.get("user_id") != user_id:
            return None
        return Transaction.model_validate(record)

    async def recent(self, user_id: str, limit: int = 50) -> list[Transaction]:
        return await self.query(user_id, TransactionFilter(limit=limit))

    async def delete(self, user_id: str, transaction_id: str) -> None:
        """
        Delete one of the user's transactions.

        Ownership is checked against the stored record, not the caller's
        copy, so stale client state cannot delete another user's entry.

        Raises:
            NotFoundOrForbidden: If the record is absent or owned by another user
        """
        self._require_user(user_id)
        record = await self._store.get(Collection.TRANSACTIONS, transaction_id)
        if not record or record.get("user_id") != user_id:
            raise NotFoundOrForbidden("Transaction not found or access denied")

        await self._store.delete(Collection.TRANSACTIONS, transaction_id)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.transaction_deleted(user_id, transaction_id)
            )
        await self._refresh_mirror(user_id)

    async def summarize(self, user_id: str) -> LedgerSummary:
        """Totals for the dashboard: income, expenses, balance, savings rate."""
        transactions = await self.query(user_id)
        income = sum(
            (t.amount for t in transactions if t.type == TransactionType.INCOME),
            Decimal("0"),
        )
        expenses = sum(
            (t.amount for t in transactions if t.type == TransactionType.EXPENSE),
            Decimal("0"),
        )
        balance = income - expenses
        savings_rate = Decimal("0")
        if income > 0:
            savings_rate = (balance / income * 100).quantize(
                Decimal("0.1"), rounding=ROUND_HALF_UP
            )
        return LedgerSummary(
            total_income=income,
            total_expenses=expenses,
            balance=balance,
            savings_rate=savings_rate,
        )
