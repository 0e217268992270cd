"""Tests for the monthly balance reduction."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from budget_ledger.models.submissions import AccountSubmission
from budget_ledger.operations import mutations
from budget_ledger.operations.reduction import (
    apply_monthly_reduction,
    reduce_balance,
    reduction_factor,
)


def march(day: int) -> datetime:
    return datetime(2024, 3, day, 7, 0, tzinfo=timezone.utc)


class TestReductionMath:
    """Tests for the reduction formula."""

    @pytest.mark.parametrize("day,length,expected", [
        (1, 31, Decimal("1")),
        (31, 31, Decimal("0")),
        (16, 31, Decimal("0.5")),
        (15, 29, Decimal("0.5")),
    ])
    def test_factor(self, day, length, expected):
        """Test the factor runs from 1 on the 1st to 0 on the last day."""
        assert reduction_factor(day, length) == expected

    def test_rounds_half_up(self):
        """Test results round half up to the penny."""
        assert reduce_balance(Decimal("0.05"), Decimal("0.5")) == Decimal("0.03")

    def test_tiny_results_snap_to_zero(self):
        """Test sub-half-penny results become exactly zero."""
        assert reduce_balance(Decimal("0.01"), Decimal("0.1")) == Decimal("0.00")
        assert reduce_balance(Decimal("-0.004"), Decimal("1")) == Decimal("0.00")


class TestApplyMonthlyReduction:
    """Tests for applying the reduction to the ledger."""

    @pytest.fixture
    def accounts(self, state):
        spending = mutations.add_account(state, AccountSubmission(name="Spending", balance=Decimal("1000")))
        card = mutations.add_account(state, AccountSubmission(name="Card", type="credit", balance=Decimal("-200")))
        pension = mutations.add_account(state, AccountSubmission(
            name="Pension", balance=Decimal("5000"), exclude_from_reset=True,
        ))
        return spending, card, pension

    def test_first_application_captures_baseline(self, state, accounts):
        """Test the first run of a month records the baseline."""
        spending, _, _ = accounts
        logs = apply_monthly_reduction(state, march(1))
        assert spending.monthly_baseline_balance == Decimal("1000")
        assert spending.monthly_baseline_month == "2024-03"
        assert spending.balance == Decimal("1000.00")
        assert [log.account_id for log in logs] == [spending.id]

    def test_mid_month(self, state, accounts):
        """Test half the month gone leaves half the baseline."""
        spending, _, _ = accounts
        apply_monthly_reduction(state, march(1))
        logs = apply_monthly_reduction(state, march(16))
        assert spending.balance == Decimal("500.00")
        assert logs[0].baseline_balance == Decimal("1000")
        assert logs[0].reduction_amount == Decimal("500.00")
        assert logs[0].day_of_month == 16

    def test_same_day_is_idempotent(self, state, accounts):
        """Test applying twice on one day gives the same balance."""
        spending, _, _ = accounts
        apply_monthly_reduction(state, march(16))
        apply_monthly_reduction(state, march(16))
        assert spending.balance == Decimal("500.00")

    def test_last_day_is_zero(self, state, accounts):
        """Test the balance reaches zero on the last day."""
        spending, _, _ = accounts
        apply_monthly_reduction(state, march(31))
        assert spending.balance == Decimal("0.00")

    def test_new_month_new_baseline(self, state, accounts):
        """Test a new month starts from the then-current balance."""
        spending, _, _ = accounts
        apply_monthly_reduction(state, march(16))
        spending.balance += Decimal("100")
        apply_monthly_reduction(state, datetime(2024, 4, 1, tzinfo=timezone.utc))
        assert spending.monthly_baseline_balance == Decimal("600.00")
        assert spending.balance == Decimal("600.00")

    def test_credit_and_excluded_untouched(self, state, accounts):
        """Test credit and excluded accounts are left alone."""
        _, card, pension = accounts
        apply_monthly_reduction(state, march(20))
        assert card.balance == Decimal("-200")
        assert pension.balance == Decimal("5000")
        assert card.monthly_baseline_month is None

    def test_log_retention(self, state, accounts):
        """Test only the most recent logs are kept."""
        for day in range(1, 6):
            apply_monthly_reduction(state, march(day), retention=3)
        assert [log.day_of_month for log in state.balance_reduction_logs] == [3, 4, 5]
        assert state.balance_reduction_logs[-1].id == 5
