"""
Split Ledger

Peer-to-peer debts between users of the same installation.

One settlement action ("I paid 90 for dinner with A and B") produces one
Split per counterparty in the creator's partition, all sharing a
group_id. Each of those is then mirrored into the counterparty's own
partition with the opposite type, so both ledgers read correctly without
a shared table.

CONSISTENCY:
- The creator's splits are written as one atomic unit
- Mirrors are separate, idempotent upserts into other partitions. A
  failed mirror is logged and reported, never rolled back into the
  primary write
- Money is divided in integer minor units; no float division
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence, Union
from uuid import UUID

import structlog

from ledger.audit import AuditLogger, create_correlation_id
from ledger.clock import IdGenerator, UUIDGenerator
from ledger.config import SplitSettings, get_settings
from ledger.errors import (
    AmountMismatch,
    LedgerError,
    NotFoundOrForbidden,
    UnknownCounterparty,
    ValidationError,
)
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import (
    Counterparty,
    Split,
    SplitDirection,
    SplitMode,
    SplitResult,
    SplitTotals,
    SplitType,
    Transaction,
    TransactionType,
)
from ledger.services.identity import IdentityManager
from ledger.services.ledger_store import LedgerStore
from ledger.services.storage import (
    Collection,
    FallbackCache,
    KeyedStoreInterface,
    StorageError,
    StoreUnavailable,
)
from ledger.services.user_settings import UserSettingsStore


logger = structlog.get_logger(__name__)

AmountLike = Union[Decimal, int, float, str]

CENT = Decimal("0.01")


def to_decimal(amount: AmountLike) -> Decimal:
    """Exact Decimal for user input; floats go through their repr."""
    if isinstance(amount, Decimal):
        result = amount
    else:
        try:
            result = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError(f"Invalid amount: {amount!r}") from e
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    return result


def to_minor_units(amount: AmountLike) -> int:
    """Whole cents, rounding half away from zero."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_even_split(total: AmountLike, participant_count: int) -> list[Decimal]:
    """
    Divide `total` into `participant_count` penny-exact shares.

    Every share gets the floor of the per-head amount in cents; the
    leftover cents go one each to the first shares. The shares always add
    up to the total rounded to cents.

        compute_even_split(10, 3) == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
    """
    if participant_count < 1:
        raise ValidationError("At least one participant is required")
    minor_units = to_minor_units(total)
    if minor_units < 0:
        raise ValidationError("Total amount cannot be negative")

    base, remainder = divmod(minor_units, participant_count)
    return [
        Decimal(base + (1 if index < remainder else 0)).scaleb(-2)
        for index in range(participant_count)
    ]


def describe_split_expense(description: Optional[str], participants: int) -> str:
    noun = "person" if participants == 1 else "people"
    summary = f"Split with {participants} {noun}"
    return f"{description} ({summary})" if description else summary


class SplitLedger:
    """Splits of one user plus the settlement and mirroring protocol."""

    def __init__(
        self,
        store: KeyedStoreInterface,
        identity: IdentityManager,
        ledger: LedgerStore,
        user_settings: UserSettingsStore,
        cache: Optional[FallbackCache] = None,
        id_generator: Optional[IdGenerator] = None,
        settings: Optional[SplitSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._identity = identity
        self._ledger = ledger
        self._user_settings = user_settings
        self._cache = cache
        self._ids = id_generator or UUIDGenerator()
        self._settings = settings or get_settings().splits
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _fetch_all(self, user_id: str) -> list[Split]:
        records = await self._store.get_all_by_index(Collection.SPLITS, "user_id", user_id)
        return [Split.model_validate(r) for r in records]

    async def list_splits(self, user_id: str) -> list[Split]:
        """
        All of the user's splits, newest first.

        Falls back to the cached snapshot when the store is unavailable.
        """
        try:
            splits = await self._fetch_all(user_id)
        except StoreUnavailable as e:
            if not self._cache:
                raise
            splits = await self._cache.load_splits(user_id)
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.store_unavailable("list splits", str(e))
                )
                await self._audit_logger.log(
                    AuditEventBuilder.fallback_served(user_id, "splits", len(splits))
                )
        return sorted(splits, key=lambda s: s.date, reverse=True)

    async def list_owed(self, user_id: str) -> list[Split]:
        """Splits where someone owes the user."""
        return [s for s in await self.list_splits(user_id) if s.type == SplitType.OWED]

    async def list_owe(self, user_id: str) -> list[Split]:
        """Splits where the user owes someone."""
        return [s for s in await self.list_splits(user_id) if s.type == SplitType.OWE]

    async def totals(self, user_id: str) -> SplitTotals:
        splits = await self.list_splits(user_id)
        return SplitTotals(
            owed_to_you=sum((s.amount for s in splits if s.type == SplitType.OWED), Decimal("0")),
            you_owe=sum((s.amount for s in splits if s.type == SplitType.OWE), Decimal("0")),
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _refresh_mirror(self, user_id: str) -> None:
        if not self._cache:
            return
        try:
            splits = await self._fetch_all(user_id)
        except StoreUnavailable as e:
            logger.warning("fallback_refresh_skipped", user_id=user_id, error=str(e))
            return
        await self._cache.mirror_splits(user_id, splits)

    async def replace_all(self, user_id: str, splits: Sequence[Split]) -> list[Split]:
        """
        Replace every split the user owns with `splits`, atomically.

        Entries without an id get a generated one. If any insert fails,
        nothing is deleted either.
        """
        if not user_id:
            raise ValidationError("A user id is required")
        stored = [
            s.model_copy(update={"id": s.id or self._ids.new_id(), "user_id": user_id})
            for s in splits
        ]
        await self._store.replace_by_index(
            Collection.SPLITS,
            "user_id",
            user_id,
            [s.model_dump(mode="json") for s in stored],
        )

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.splits_replaced(user_id, len(stored)))
        await self._refresh_mirror(user_id)
        return stored

    async def delete_split(self, user_id: str, split_id: str) -> bool:
        """
        Delete one of the user's splits.

        A split that is already gone is not an error (it may have been
        removed by an earlier, partially failed operation); the call
        returns False. A split owned by another user is still rejected.

        Raises:
            NotFoundOrForbidden: If the split belongs to another user
        """
        record = await self._store.get(Collection.SPLITS, split_id)
        if record and record.get("user_id") != user_id:
            raise NotFoundOrForbidden("Split not found or access denied")

        deleted = False
        if record:
            deleted = await self._store.delete(Collection.SPLITS, split_id)
        if not deleted:
            logger.warning("split_already_absent", user_id=user_id, split_id=split_id)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.split_deleted(user_id, split_id, deleted)
            )
        await self._refresh_mirror(user_id)
        return deleted

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def _manual_shares(
        self,
        total: Decimal,
        counterparties: Sequence[Counterparty],
        manual_shares: Optional[Sequence[AmountLike]],
        creator_share: Optional[AmountLike],
    ) -> list[Decimal]:
        if manual_shares is None or len(manual_shares) != len(counterparties):
            raise ValidationError("Manual mode needs one amount per counterparty")

        shares = [to_decimal(a).quantize(CENT, rounding=ROUND_HALF_UP) for a in manual_shares]
        own = to_decimal(creator_share if creator_share is not None else 0)
        if any(s < 0 for s in shares) or own < 0:
            raise ValidationError("Share amounts cannot be negative")

        if abs(sum(shares, Decimal("0")) + own - total) > self._settings.amount_epsilon:
            raise AmountMismatch()
        return shares

    async def _write_mirror(
        self,
        split: Split,
        creator_user_id: str,
        creator_name: str,
        correlation_id: UUID,
    ) -> Optional[Split]:
        """
        Best-effort copy of `split` into the counterparty's partition.

        Returns the mirror, or None if it was not written. Never raises.
        """
        try:
            if not await self._identity.user_id_exists(split.counterparty_id):
                return None
            mirror = split.mirrored_for(creator_user_id, creator_name)
            await self._store.put(Collection.SPLITS, mirror.model_dump(mode="json"))
        except (LedgerError, StorageError, ValueError) as e:
            logger.warning(
                "split_mirror_failed",
                split_id=split.id,
                counterparty_id=split.counterparty_id,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.split_mirror_failed(
                        split.id, split.counterparty_id, str(e), correlation_id
                    )
                )
            return None

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.split_mirrored(mirror.id, split.counterparty_id, correlation_id)
            )
        await self._refresh_mirror(split.counterparty_id)
        return mirror

    async def create_split(
        self,
        creator_user_id: str,
        creator_name: str,
        title: str,
        total_amount: AmountLike,
        split_date: date,
        description: Optional[str] = None,
        direction: SplitDirection = SplitDirection.COUNTERPARTIES_OWE_YOU,
        mode: SplitMode = SplitMode.EVEN,
        counterparties: Sequence[Counterparty] = (),
        manual_shares: Optional[Sequence[AmountLike]] = None,
        creator_share: Optional[AmountLike] = None,
        add_as_expense: bool = False,
        expense_category: Optional[str] = None,
    ) -> SplitResult:
        """
        Record one settlement action.

        Even mode divides the total among the counterparties and the
        creator; the creator's share (the last one) is not stored. Manual
        mode takes one amount per counterparty plus the creator's own
        share, which together must match the total.

        Every check runs before the first write, so a rejected settlement
        leaves no records behind.

        Raises:
            ValidationError: On missing or malformed input
            UnknownCounterparty: If a counterparty id is not a registered user
            AmountMismatch: If manual shares do not add up to the total
        """
        if not creator_user_id:
            raise ValidationError("Please login first")
        title = (title or "").strip()
        total = to_decimal(total_amount)
        if not title or total <= 0 or split_date is None:
            raise ValidationError("Please fill in all split fields correctly")
        if not counterparties:
            raise ValidationError("At least one counterparty is required")
        if any(c.user_id == creator_user_id for c in counterparties):
            raise ValidationError("You cannot split with yourself")

        for counterparty in counterparties:
            if not await self._identity.user_id_exists(counterparty.user_id):
                raise UnknownCounterparty(counterparty.user_id)

        if mode == SplitMode.MANUAL:
            shares = self._manual_shares(total, counterparties, manual_shares, creator_share)
        else:
            shares = compute_even_split(total, len(counterparties) + 1)[:len(counterparties)]

        group_id = self._ids.new_id()
        correlation_id = create_correlation_id()
        description = (description or "").strip() or None

        splits = [
            Split(
                id=f"{group_id}-{index}",
                group_id=group_id,
                user_id=creator_user_id,
                title=title,
                amount=share,
                type=direction.split_type,
                counterparty_name=counterparty.name,
                counterparty_id=counterparty.user_id,
                date=split_date,
                description=description,
            )
            for index, (counterparty, share) in enumerate(zip(counterparties, shares))
        ]
        await self._store.put_many(
            Collection.SPLITS, [s.model_dump(mode="json") for s in splits]
        )
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.split_created(
                    creator_user_id, group_id, len(splits), str(total), correlation_id
                )
            )

        result = SplitResult(group_id=group_id, splits=splits)
        for split in splits:
            mirror = await self._write_mirror(split, creator_user_id, creator_name, correlation_id)
            if mirror:
                result.mirrors.append(mirror)
            else:
                result.failed_mirror_ids.append(split.counterparty_id)

        if add_as_expense and direction == SplitDirection.COUNTERPARTIES_OWE_YOU:
            result.expense = await self._ledger.save(
                creator_user_id,
                Transaction(
                    type=TransactionType.EXPENSE,
                    title=title,
                    amount=total.quantize(CENT, rounding=ROUND_HALF_UP),
                    category=expense_category or self._settings.default_expense_category,
                    date=split_date,
                    description=describe_split_expense(description, len(splits)),
                    is_recurring=False,
                    split_id=group_id,
                ),
            )

        await self._refresh_mirror(creator_user_id)
        result.over_limit = await self.is_over_limit(creator_user_id)
        return result

    # -------------------------------------------------------------------------
    # Owe limit
    # -------------------------------------------------------------------------

    async def get_owe_limit(self, user_id: str) -> Optional[Decimal]:
        settings = await self._user_settings.get(user_id)
        return settings.owe_limit

    async def set_owe_limit(self, user_id: str, limit: Optional[AmountLike]) -> Optional[Decimal]:
        """
        Set the advisory ceiling on money owed to the user. None clears it.

        Raises:
            ValidationError: If the limit is negative
        """
        value = None
        if limit is not None:
            value = to_decimal(limit).quantize(CENT, rounding=ROUND_HALF_UP)
            if value < 0:
                raise ValidationError("Please enter a valid positive limit")

        await self._user_settings.save(user_id, owe_limit=value)
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.owe_limit_updated(
                    user_id, str(value) if value is not None else None
                )
            )
        return value

    async def is_over_limit(self, user_id: str) -> bool:
        """
        True if a limit is set and the total owed to the user exceeds it.

        Advisory only: nothing is blocked when this is True.
        """
        limit = await self.get_owe_limit(user_id)
        if limit is None:
            return False
        totals = await self.totals(user_id)
        return totals.owed_to_you > limit
