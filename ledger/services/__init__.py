"""
Services Package

The ledger services, each parameterized by the acting user's id:
identity, transactions, recurrence, splits, settings and the legacy import.
"""

from ledger.services.identity import IdentityManager, generate_user_id, hash_password
from ledger.services.ledger_store import LedgerStore, apply_filter
from ledger.services.migration import LegacyImporter
from ledger.services.recurrence import RecurrenceEngine, is_due
from ledger.services.splits import SplitLedger, compute_even_split
from ledger.services.user_settings import UserSettingsStore

__all__ = [
    "IdentityManager",
    "LedgerStore",
    "LegacyImporter",
    "RecurrenceEngine",
    "SplitLedger",
    "UserSettingsStore",
    "apply_filter",
    "compute_even_split",
    "generate_user_id",
    "hash_password",
    "is_due",
]
