"""
Data Models Package

All records stored by the ledger and all results returned to callers
are pydantic models defined here.
"""

from ledger.models.ledger import (
    Counterparty,
    ImportResult,
    LedgerSummary,
    RecurrenceResult,
    RecurringRule,
    SessionReport,
    Split,
    SplitDirection,
    SplitMode,
    SplitResult,
    SplitTotals,
    SplitType,
    Transaction,
    TransactionFilter,
    TransactionType,
    User,
    UserAccount,
    UserSettings,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Counterparty",
    "ImportResult",
    "LedgerSummary",
    "RecurrenceResult",
    "RecurringRule",
    "SessionReport",
    "Split",
    "SplitDirection",
    "SplitMode",
    "SplitResult",
    "SplitTotals",
    "SplitType",
    "Transaction",
    "TransactionFilter",
    "TransactionType",
    "User",
    "UserAccount",
    "UserSettings",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
