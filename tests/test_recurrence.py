"""Tests for recurring rules and monthly materialization."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger.errors import NotFoundOrForbidden
from ledger.models.ledger import RecurringRule, TransactionType
from ledger.services.recurrence import is_due, recurring_description, resolve_category
from ledger.services.storage import Collection, StoreUnavailable

from tests.conftest import make_transaction


MARCH = datetime(2024, 3, 15, 10, 0, 0)


def rule(
    title: str = "Rent",
    type: TransactionType = TransactionType.EXPENSE,
    amount: str = "400.00",
    **extra,
) -> RecurringRule:
    return RecurringRule(type=type, title=title, amount=amount, **extra)


class TestDueCheck:
    """Tests for is_due and the category/description helpers."""

    def test_never_added_is_due(self):
        assert is_due(rule(), MARCH)

    def test_added_this_month_is_not_due(self):
        assert not is_due(rule(last_added=datetime(2024, 3, 1, 0, 0)), MARCH)

    def test_added_last_month_is_due(self):
        assert is_due(rule(last_added=datetime(2024, 2, 28, 23, 59)), MARCH)

    def test_same_month_other_year_is_due(self):
        """Test that the year is part of the month comparison."""
        assert is_due(rule(last_added=datetime(2023, 3, 20)), MARCH)

    def test_income_category_prefers_income_type(self):
        income = rule("Salary", TransactionType.INCOME, income_type="salary", category="misc")
        assert resolve_category(income) == "salary"

    def test_income_category_falls_back_to_type(self):
        assert resolve_category(rule("Salary", TransactionType.INCOME)) == "income"

    def test_expense_category(self):
        assert resolve_category(rule(category="housing")) == "housing"
        assert resolve_category(rule()) == "other"

    def test_description(self):
        assert recurring_description(rule(description="monthly flat")) == "Recurring: monthly flat"
        assert recurring_description(rule()) == "Recurring entry"


class TestRules:
    """Tests for rule persistence."""

    async def test_save_and_list_rules(self, recurrence, alice):
        """Test that rules are partitioned by owner and filterable by type."""
        await recurrence.save_rule(alice.user_id, rule(category="housing"))
        await recurrence.save_rule(alice.user_id, rule("Salary", TransactionType.INCOME, "1000.00"))

        assert len(await recurrence.list_rules(alice.user_id)) == 2
        incomes = await recurrence.list_rules(alice.user_id, TransactionType.INCOME)
        assert [r.title for r in incomes] == ["Salary"]

    async def test_cannot_overwrite_other_users_rule(self, recurrence, alice, bob):
        """Test ownership check on rule writes."""
        saved = await recurrence.save_rule(alice.user_id, rule())
        with pytest.raises(NotFoundOrForbidden):
            await recurrence.save_rule(bob.user_id, saved)

    async def test_rule_from_recurring_transaction(self, recurrence, clock, alice):
        """Test that a rule made from a transaction is not due again this month."""
        created = await recurrence.register_rule_from_transaction(
            alice.user_id,
            make_transaction("Salary", "1000.00", TransactionType.INCOME, category="salary"),
        )

        assert created.income_type == "salary"
        assert created.category is None
        assert created.last_added == clock.now()
        assert not is_due(created, clock.now())


class TestRun:
    """Tests for RecurrenceEngine.run."""

    async def test_due_rule_is_materialized(self, recurrence, ledger, clock, alice):
        """Test the generated transaction and the stamped rule."""
        saved_rule = await recurrence.save_rule(
            alice.user_id, rule(category="housing", description="flat 4B")
        )

        result = await recurrence.run(alice.user_id)

        assert len(result.materialized) == 1
        transaction = result.materialized[0]
        assert transaction.title == "Rent"
        assert transaction.amount == Decimal("400.00")
        assert transaction.category == "housing"
        assert transaction.date == clock.today()
        assert transaction.description == "Recurring: flat 4B"
        assert transaction.is_recurring is True
        assert [t.id for t in await ledger.query(alice.user_id)] == [transaction.id]

        stored_rule = (await recurrence.list_rules(alice.user_id))[0]
        assert stored_rule.id == saved_rule.id
        assert stored_rule.last_added == clock.now()

    async def test_second_run_in_same_month_adds_nothing(self, recurrence, ledger, alice):
        """Test that materialization is idempotent within a month."""
        await recurrence.save_rule(alice.user_id, rule())

        await recurrence.run(alice.user_id)
        second = await recurrence.run(alice.user_id)

        assert second.materialized == []
        assert len(await ledger.query(alice.user_id)) == 1

    async def test_next_month_adds_once_more(self, recurrence, ledger, clock, alice):
        """Test one entry per month, with no backfill of skipped months."""
        await recurrence.save_rule(alice.user_id, rule())
        await recurrence.run(alice.user_id)

        clock.current = datetime(2024, 6, 2, 9, 0, 0)
        result = await recurrence.run(alice.user_id)

        assert len(result.materialized) == 1
        assert len(await ledger.query(alice.user_id)) == 2

    async def test_income_rules_run_first(self, recurrence, alice):
        """Test that income rules are materialized before expense rules."""
        await recurrence.save_rule(alice.user_id, rule("Rent"))
        await recurrence.save_rule(
            alice.user_id, rule("Salary", TransactionType.INCOME, "1000.00", income_type="salary")
        )

        result = await recurrence.run(alice.user_id)

        assert [t.type for t in result.materialized] == [TransactionType.INCOME, TransactionType.EXPENSE]
        assert result.materialized[0].category == "salary"

    async def test_rules_of_other_users_are_untouched(self, recurrence, ledger, alice, bob):
        """Test that a run only materializes the acting user's rules."""
        await recurrence.save_rule(bob.user_id, rule())

        result = await recurrence.run(alice.user_id)

        assert result.materialized == []
        assert await ledger.query(bob.user_id) == []

    async def test_failing_rule_does_not_stop_the_others(self, recurrence, ledger, store, alice, monkeypatch):
        """Test per-rule failure isolation."""
        broken = await recurrence.save_rule(alice.user_id, rule("Broken"))
        await recurrence.save_rule(alice.user_id, rule("Internet", amount="50.00"))

        original_save = ledger.save

        async def flaky_save(user_id, transaction):
            if transaction.title == "Broken":
                raise StoreUnavailable("disk full")
            return await original_save(user_id, transaction)

        monkeypatch.setattr(ledger, "save", flaky_save)

        result = await recurrence.run(alice.user_id)

        assert [t.title for t in result.materialized] == ["Internet"]
        assert result.failed_rule_ids == [broken.id]
        stored = RecurringRule.model_validate(await store.get(Collection.RECURRING, broken.id))
        assert stored.last_added is None

    async def test_callback_only_runs_when_something_changed(self, recurrence, alice):
        """Test on_materialized is awaited once with the new transactions."""
        calls = []

        async def on_materialized(transactions):
            calls.append([t.title for t in transactions])

        await recurrence.save_rule(alice.user_id, rule())

        await recurrence.run(alice.user_id, on_materialized)
        await recurrence.run(alice.user_id, on_materialized)

        assert calls == [["Rent"]]

    async def test_no_rules(self, recurrence, alice):
        """Test an empty run."""
        result = await recurrence.run(alice.user_id)
        assert not result.has_changes
        assert result.failed_rule_ids == []
