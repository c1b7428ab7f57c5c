"""Tests for the one-shot legacy import."""

import json

import pytest

from ledger.errors import ValidationError
from ledger.services.migration import normalize_legacy_transaction


def legacy_entry(entry_id, title="Old rent", **extra) -> dict:
    return {
        "id": entry_id,
        "type": "expense",
        "title": title,
        "amount": 400,
        "category": "housing",
        "date": "2023-11-01",
        "isRecurring": False,
        **extra,
    }


class TestNormalize:
    def test_camel_case_keys_and_numeric_ids(self):
        record = normalize_legacy_transaction(legacy_entry(1700000000000, userId="USR-1"))
        assert record["id"] == "1700000000000"
        assert record["user_id"] == "USR-1"
        assert record["is_recurring"] is False

    def test_numeric_split_id_becomes_a_string(self):
        record = normalize_legacy_transaction(legacy_entry(1, splitId=1700000000000))
        assert record["split_id"] == "1700000000000"


class TestLegacyImporter:
    """Tests for LegacyImporter.run."""

    async def test_imports_unowned_transactions_once(self, importer, ledger, legacy_path, alice):
        """Test stamping, skipping owned entries and the one-time flag."""
        legacy_path.write_text(
            json.dumps({
                "user": {"username": "alice"},
                "transactions": [
                    legacy_entry(1),
                    legacy_entry(2, "Old salary", type="income", category="salary"),
                    legacy_entry(3, "Already owned", userId="USR-OTHER"),
                ],
            }),
            encoding="utf-8",
        )

        result = await importer.run(alice.user_id)

        assert result.migrated is True
        assert result.imported == 2
        transactions = await ledger.query(alice.user_id)
        assert sorted(t.id for t in transactions) == ["1", "2"]
        assert {t.user_id for t in transactions} == {alice.user_id}

        again = await importer.run(alice.user_id)
        assert again.imported == 0
        assert again.message == "Already migrated"
        assert len(await ledger.query(alice.user_id)) == 2

    async def test_bare_list_format(self, importer, ledger, legacy_path, alice):
        legacy_path.write_text(json.dumps([legacy_entry("a")]), encoding="utf-8")

        result = await importer.run(alice.user_id)

        assert result.imported == 1
        assert [t.title for t in await ledger.query(alice.user_id)] == ["Old rent"]

    async def test_missing_blob_still_sets_the_flag(self, importer, alice):
        result = await importer.run(alice.user_id)

        assert result.migrated is True
        assert result.imported == 0
        assert await importer.is_migrated() is True

    async def test_split_linked_expense_is_imported(self, importer, ledger, legacy_path, alice):
        """Test that the numeric group id of an old split survives the import."""
        legacy_path.write_text(
            json.dumps([legacy_entry(1700000000000.123, "Dinner share", splitId=1700000000000)]),
            encoding="utf-8",
        )

        result = await importer.run(alice.user_id)

        assert result.imported == 1
        [transaction] = await ledger.query(alice.user_id)
        assert transaction.id == "1700000000000.123"
        assert transaction.split_id == "1700000000000"

    async def test_malformed_entries_are_skipped(self, importer, ledger, legacy_path, alice):
        broken = legacy_entry("broken")
        del broken["amount"]
        legacy_path.write_text(json.dumps([broken, legacy_entry("ok")]), encoding="utf-8")

        result = await importer.run(alice.user_id)

        assert result.imported == 1
        assert [t.id for t in await ledger.query(alice.user_id)] == ["ok"]

    async def test_unreadable_blob_leaves_flag_unset(self, importer, legacy_path, alice):
        """Test that a corrupt blob is reported and retried next session."""
        legacy_path.write_text("[{broken", encoding="utf-8")

        result = await importer.run(alice.user_id)

        assert result.migrated is False
        assert result.message
        assert await importer.is_migrated() is False

    async def test_flag_does_not_touch_real_settings(self, importer, user_settings, alice):
        """Test that the import flag lives under its reserved key only."""
        await importer.run(alice.user_id)

        assert (await user_settings.get(alice.user_id)).migrated is None
        assert (await user_settings.get("migration")).migrated is True

    async def test_requires_user(self, importer):
        with pytest.raises(ValidationError):
            await importer.run("")
