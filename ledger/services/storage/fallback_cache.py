"""
Fallback Cache

A flat JSON snapshot of each user's transactions and splits, refreshed
after successful primary writes. It is read only when the primary store
is unavailable, so a dashboard is not empty during an outage.

The snapshot is never the authority: nothing read from it is merged back
into the primary store, and a failure to refresh it is logged, never
raised.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Union

import structlog
from pydantic import ValidationError as ModelValidationError

from ledger.models.ledger import Split, Transaction


logger = structlog.get_logger(__name__)

SECTIONS = ("transactions", "splits")


class FallbackCache:
    """Best-effort write-through mirror kept in one JSON file."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        empty = {section: {} for section in SECTIONS}
        if not self._path.exists():
            return empty
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except ValueError as e:
            logger.warning("fallback_snapshot_unreadable", path=str(self._path), error=str(e))
            return empty
        if not isinstance(data, dict):
            return empty
        for section in SECTIONS:
            if not isinstance(data.get(section), dict):
                data[section] = {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        """Replace the snapshot file atomically."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=self._path.parent, encoding="utf-8", suffix=".tmp"
        ) as tmp:
            try:
                json.dump(data, tmp, indent=2, sort_keys=True)
                tmp.flush()
            except Exception:
                tmp.close()
                os.unlink(tmp.name)
                raise
        os.replace(tmp.name, self._path)

    async def _mirror(self, section: str, user_id: str, records: list[dict]) -> bool:
        try:
            data = self._read()
            data[section][user_id] = records
            self._write(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(
                "fallback_mirror_failed",
                section=section,
                user_id=user_id,
                error=str(e),
            )
            return False
        return True

    async def _load(self, section: str, user_id: str) -> list[dict]:
        try:
            data = self._read()
        except OSError as e:
            logger.warning("fallback_read_failed", section=section, error=str(e))
            return []
        records = data[section].get(user_id, [])
        return records if isinstance(records, list) else []

    async def mirror_transactions(self, user_id: str, transactions: Iterable[Transaction]) -> bool:
        records = [t.model_dump(mode="json") for t in transactions]
        return await self._mirror("transactions", user_id, records)

    async def mirror_splits(self, user_id: str, splits: Iterable[Split]) -> bool:
        records = [s.model_dump(mode="json") for s in splits]
        return await self._mirror("splits", user_id, records)

    async def load_transactions(self, user_id: str) -> list[Transaction]:
        transactions = []
        for record in await self._load("transactions", user_id):
            try:
                transactions.append(Transaction.model_validate(record))
            except ModelValidationError:
                continue  # Skip malformed entries
        return transactions

    async def load_splits(self, user_id: str) -> list[Split]:
        splits = []
        for record in await self._load("splits", user_id):
            try:
                splits.append(Split.model_validate(record))
            except ModelValidationError:
                continue
        return splits
