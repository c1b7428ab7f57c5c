"""
Recurrence Engine

Turns due recurring rules into concrete transactions, once per session.

A rule is due when it has never been materialized, or was last
materialized in a different calendar month. Materializing writes the
transaction first and then stamps the rule's `last_added`, so running
the engine twice in one month adds nothing the second time.

This is not a backfill: a rule skipped for three months produces one
transaction on the next run, not three.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from ledger.audit import AuditLogger
from ledger.clock import Clock, IdGenerator, SystemClock, UUIDGenerator
from ledger.errors import LedgerError, NotFoundOrForbidden, ValidationError
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import (
    RecurrenceResult,
    RecurringRule,
    Transaction,
    TransactionType,
)
from ledger.services.ledger_store import LedgerStore
from ledger.services.storage import Collection, KeyedStoreInterface, StorageError


logger = structlog.get_logger(__name__)

DEFAULT_CATEGORY = "other"
RECURRING_PREFIX = "Recurring: "
RECURRING_PLACEHOLDER = "Recurring entry"

OnMaterialized = Callable[[list[Transaction]], Awaitable[None]]


def is_due(rule: RecurringRule, now: datetime) -> bool:
    """True if the rule has not been materialized in `now`'s calendar month."""
    if rule.last_added is None:
        return True
    return (rule.last_added.year, rule.last_added.month) != (now.year, now.month)


def resolve_category(rule: RecurringRule) -> str:
    """
    Category of the materialized transaction.

    Income rules prefer their income type, then the rule type, then the
    category; expense rules use their category.
    """
    if rule.type == TransactionType.INCOME:
        candidates = (rule.income_type, rule.type.value, rule.category)
    else:
        candidates = (rule.category,)
    for candidate in candidates:
        if candidate:
            return candidate
    return DEFAULT_CATEGORY


def recurring_description(rule: RecurringRule) -> str:
    if rule.description:
        return f"{RECURRING_PREFIX}{rule.description}"
    return RECURRING_PLACEHOLDER


class RecurrenceEngine:
    """Recurring rule persistence plus the monthly materialization run."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        ledger: LedgerStore,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._ids = id_generator or UUIDGenerator()
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    async def save_rule(self, user_id: str, rule: RecurringRule) -> RecurringRule:
        """
        Insert or replace a rule in the owner's partition.

        Raises:
            NotFoundOrForbidden: If the rule id belongs to another user
        """
        if not user_id:
            raise ValidationError("A user id is required")
        stored = rule.model_copy(update={
            "id": rule.id or self._ids.new_id(),
            "user_id": user_id,
        })

        existing = await self._store.get(Collection.RECURRING, stored.id)
        if existing and existing.get("user_id") != user_id:
            raise NotFoundOrForbidden()

        await self._store.put(Collection.RECURRING, stored.model_dump(mode="json"))
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.recurring_rule_saved(user_id, stored.id, stored.type.value)
            )
        return stored

    async def list_rules(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
    ) -> list[RecurringRule]:
        records = await self._store.get_all_by_index(Collection.RECURRING, "user_id", user_id)
        rules = [RecurringRule.model_validate(r) for r in records]
        if type:
            rules = [r for r in rules if r.type == type]
        return rules

    async def register_rule_from_transaction(
        self,
        user_id: str,
        transaction: Transaction,
    ) -> RecurringRule:
        """
        Create the rule behind a transaction the user marked as recurring.

        The rule counts as already materialized this month, since the
        transaction itself is this month's entry.
        """
        is_income = transaction.type == TransactionType.INCOME
        rule = RecurringRule(
            type=transaction.type,
            title=transaction.title,
            amount=transaction.amount,
            category=None if is_income else transaction.category,
            income_type=transaction.category if is_income else None,
            description=transaction.description,
            last_added=self._clock.now(),
        )
        return await self.save_rule(user_id, rule)

    # -------------------------------------------------------------------------
    # Materialization
    # -------------------------------------------------------------------------

    async def _materialize(
        self,
        user_id: str,
        rule: RecurringRule,
        now: datetime,
    ) -> Transaction:
        transaction = Transaction(
            type=rule.type,
            title=rule.title,
            amount=rule.amount,
            category=resolve_category(rule),
            date=now.date(),
            description=recurring_description(rule),
            is_recurring=True,
        )
        saved = await self._ledger.save(user_id, transaction)

        rule.last_added = now
        await self._store.put(Collection.RECURRING, rule.model_dump(mode="json"))
        return saved

    async def run(
        self,
        user_id: str,
        on_materialized: Optional[OnMaterialized] = None,
    ) -> RecurrenceResult:
        """
        Materialize every due rule of the user, income rules first.

        A failure on one rule is logged and recorded in the result; the
        remaining rules are still processed. `on_materialized` is awaited
        once, and only if at least one transaction was created.
        """
        now = self._clock.now()
        result = RecurrenceResult()

        for rule_type in (TransactionType.INCOME, TransactionType.EXPENSE):
            for rule in await self.list_rules(user_id, rule_type):
                if not is_due(rule, now):
                    continue
                try:
                    saved = await self._materialize(user_id, rule, now)
                except (LedgerError, StorageError, ValueError) as e:
                    logger.error(
                        "recurring_rule_failed",
                        user_id=user_id,
                        rule_id=rule.id,
                        error=str(e),
                    )
                    result.failed_rule_ids.append(rule.id)
                    if self._audit_logger:
                        await self._audit_logger.log(
                            AuditEventBuilder.recurring_failed(user_id, rule.id, str(e))
                        )
                    continue

                result.materialized.append(saved)
                if self._audit_logger:
                    await self._audit_logger.log(
                        AuditEventBuilder.recurring_materialized(user_id, rule.id, saved.id)
                    )

        if result.has_changes and on_materialized:
            await on_materialized(result.materialized)
        return result
