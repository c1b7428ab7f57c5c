"""
Core Data Models for Split Ledger

These models define the records kept in the keyed store:
users, transactions, recurring rules, splits and per-user settings.

Every record except User carries the `user_id` of its owner. That id is
the partition key for every query and is checked on every mutation.

Amounts are Decimals with two decimal places. They are serialized to
strings in the store so no float rounding ever touches a stored amount.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# Several models have a field called `date`, which shadows the type
# inside their class bodies.
LedgerDate = date

Amount = Annotated[Decimal, Field(ge=0, decimal_places=2)]


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money for a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class SplitType(str, Enum):
    """
    Polarity of a split from its owner's point of view.

    OWED: the counterparty owes the owner.
    OWE: the owner owes the counterparty.
    """
    OWED = "owed"
    OWE = "owe"

    def inverted(self) -> "SplitType":
        return SplitType.OWE if self is SplitType.OWED else SplitType.OWED


class SplitDirection(str, Enum):
    """Which side paid, as chosen by the creator of a settlement."""
    COUNTERPARTIES_OWE_YOU = "counterpartiesOweYou"
    YOU_OWE_COUNTERPARTIES = "youOweCounterparties"

    @property
    def split_type(self) -> SplitType:
        if self is SplitDirection.YOU_OWE_COUNTERPARTIES:
            return SplitType.OWE
        return SplitType.OWED


class SplitMode(str, Enum):
    """How the total of a settlement is divided."""
    EVEN = "even"
    MANUAL = "manual"


# =============================================================================
# USERS
# =============================================================================

class User(BaseModel):
    """
    A registered user, as returned to callers.

    `user_id` is the stable foreign key used by every other record;
    `username` is only the login handle.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1, max_length=100)
    user_id: str = Field(..., min_length=1)
    created_at: datetime
    login_time: Optional[datetime] = None
    avatar: Optional[str] = None


class UserAccount(User):
    """The stored user record. Never leaves the identity layer."""

    password_hash: str = Field(..., min_length=64, max_length=64)

    def to_public(self) -> User:
        return User(**self.model_dump(exclude={"password_hash"}))


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A concrete income or expense entry.

    `id`, `user_id` and `created_at` are filled in by the LedgerStore
    when the caller leaves them empty.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    type: TransactionType
    title: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    category: str = Field(..., min_length=1, max_length=100)
    date: LedgerDate
    description: Optional[str] = Field(default=None, max_length=1000)
    is_recurring: bool = False
    created_at: Optional[datetime] = None

    # group_id of the settlement this expense was paid for
    split_id: Optional[str] = None


class TransactionFilter(BaseModel):
    """Optional constraints for LedgerStore.query. Absent means unconstrained."""

    type: Optional[TransactionType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode='after')
    def validate_range(self) -> 'TransactionFilter':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class RecurringRule(BaseModel):
    """
    A template that materializes one transaction per calendar month.

    Income rules usually carry `income_type` (salary, freelance, ...)
    instead of `category`. `last_added` is the only state that prevents
    a second materialization in the same month.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    type: TransactionType
    title: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    category: Optional[str] = None
    income_type: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    last_added: Optional[datetime] = None


# =============================================================================
# SPLITS
# =============================================================================

class Counterparty(BaseModel):
    """A participant of a settlement, identified by their user id."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    user_id: str = Field(..., min_length=1)


class Split(BaseModel):
    """
    One participant's share of a settlement, as seen by `user_id`.

    All splits created by one settlement action share a `group_id`.
    A mirrored split lives in the counterparty's partition with the
    opposite type and the creator as its counterparty.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    group_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    type: SplitType
    counterparty_name: str = Field(..., min_length=1, max_length=100)
    counterparty_id: str = Field(..., min_length=1)
    date: LedgerDate
    description: Optional[str] = Field(default=None, max_length=1000)
    is_mirrored: bool = False

    def mirrored_for(self, creator_id: str, creator_name: str) -> "Split":
        """
        Build the counterpart record for the counterparty's own ledger.

        The mirror id is derived from the primary id, so writing the
        same mirror twice is an upsert of one record.
        """
        return self.model_copy(update={
            "id": f"{self.id}-mirror",
            "user_id": self.counterparty_id,
            "type": self.type.inverted(),
            "counterparty_name": creator_name,
            "counterparty_id": creator_id,
            "is_mirrored": True,
        })


# =============================================================================
# SETTINGS
# =============================================================================

class UserSettings(BaseModel):
    """
    Per-user preferences. One record per user id.

    A reserved pseudo user id holds the one-time legacy import flag
    (`migrated`) instead of real preferences.
    """

    user_id: str = Field(..., min_length=1)
    owe_limit: Optional[Amount] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    migrated: Optional[bool] = None
    updated_at: Optional[datetime] = None

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


# =============================================================================
# RESULTS
# =============================================================================

class LedgerSummary(BaseModel):
    """Dashboard aggregates for one user."""

    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    savings_rate: Decimal = Field(
        default=Decimal("0"),
        description="Balance as a percentage of income, one decimal place"
    )


class SplitTotals(BaseModel):
    """Outstanding amounts in both directions for one user."""

    owed_to_you: Decimal = Decimal("0")
    you_owe: Decimal = Decimal("0")


class SplitResult(BaseModel):
    """Everything written by one settlement action."""

    group_id: str
    splits: list[Split] = Field(default_factory=list)
    mirrors: list[Split] = Field(default_factory=list)
    failed_mirror_ids: list[str] = Field(
        default_factory=list,
        description="Counterparty ids whose mirror could not be written"
    )
    expense: Optional[Transaction] = None
    over_limit: bool = False


class RecurrenceResult(BaseModel):
    """Outcome of one RecurrenceEngine run."""

    materialized: list[Transaction] = Field(default_factory=list)
    failed_rule_ids: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return len(self.materialized) > 0


class ImportResult(BaseModel):
    """Outcome of the one-shot legacy import."""

    migrated: bool
    imported: int = 0
    message: str = ""


class SessionReport(BaseModel):
    """What LedgerSession.start changed for the user."""

    legacy_import: ImportResult
    recurrence: RecurrenceResult

    @property
    def has_changes(self) -> bool:
        return self.legacy_import.imported > 0 or self.recurrence.has_changes
