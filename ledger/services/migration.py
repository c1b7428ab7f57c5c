"""
Legacy Importer

One-shot import of the prior flat data blob (a JSON file holding the
last logged-in user and their transactions) into the keyed store.

Transactions in the blob that carry no owner are stamped with the
current user's id and saved through the LedgerStore. Entries that
already name an owner were written by a newer version and are left
alone. Once an import has finished, a flag under the reserved settings
key keeps it from running again.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError as ModelValidationError

from ledger.audit import AuditLogger
from ledger.errors import LedgerError, ValidationError
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import ImportResult, Transaction
from ledger.services.ledger_store import LedgerStore
from ledger.services.user_settings import UserSettingsStore


logger = structlog.get_logger(__name__)

# Field names used by the flat format
LEGACY_FIELD_NAMES = {
    "userId": "user_id",
    "isRecurring": "is_recurring",
    "createdAt": "created_at",
    "splitId": "split_id",
}


def normalize_legacy_transaction(raw: dict[str, Any]) -> dict[str, Any]:
    """Snake-case the known flat-format keys and coerce numeric ids to str."""
    record = {LEGACY_FIELD_NAMES.get(key, key): value for key, value in raw.items()}
    for field in ("id", "user_id", "split_id"):
        if record.get(field) is not None:
            record[field] = str(record[field])
    return record


def read_legacy_transactions(path: Path) -> list[dict[str, Any]]:
    """
    Transactions from the flat blob, or [] if there is no blob.

    The blob is either a bare list of transactions or an object with a
    "transactions" list.
    """
    if not path.exists():
        return []
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict):
        data = data.get("transactions", [])
    if not isinstance(data, list):
        raise ValueError("Legacy data has no transaction list")
    return [entry for entry in data if isinstance(entry, dict)]


class LegacyImporter:
    """Moves unowned flat-format transactions into the current user's ledger."""

    def __init__(
        self,
        ledger: LedgerStore,
        user_settings: UserSettingsStore,
        legacy_path: Union[str, Path],
        migration_key: str = "migration",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._user_settings = user_settings
        self._legacy_path = Path(legacy_path)
        self._migration_key = migration_key
        self._audit_logger = audit_logger

    async def is_migrated(self) -> bool:
        flag = await self._user_settings.get(self._migration_key)
        return bool(flag.migrated)

    async def run(self, user_id: str) -> ImportResult:
        """
        Import once for `user_id`.

        An unreadable blob is reported in the result and leaves the flag
        unset, so the next session tries again. Individual malformed
        transactions are skipped.
        """
        if not user_id:
            raise ValidationError("A user id is required")
        if await self.is_migrated():
            return ImportResult(migrated=True, message="Already migrated")

        try:
            entries = read_legacy_transactions(self._legacy_path)
        except (OSError, ValueError) as e:
            logger.error("legacy_import_failed", path=str(self._legacy_path), error=str(e))
            return ImportResult(migrated=False, message=str(e))

        imported = 0
        for entry in entries:
            record = normalize_legacy_transaction(entry)
            if record.get("user_id"):
                continue
            try:
                transaction = Transaction.model_validate(record)
                await self._ledger.save(user_id, transaction)
            except (ModelValidationError, LedgerError) as e:
                logger.warning(
                    "legacy_transaction_skipped",
                    transaction_id=record.get("id"),
                    error=str(e),
                )
                continue
            imported += 1

        await self._user_settings.save(self._migration_key, migrated=True)

        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.legacy_import_completed(user_id, imported)
            )
        logger.info("legacy_import_completed", user_id=user_id, imported=imported)
        return ImportResult(migrated=True, imported=imported, message="Migration completed")
