"""Tests for transfer schedules and their execution."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from budget_ledger.errors import InvalidOperationError, NotFoundError
from budget_ledger.models.ledger import TransactionKind
from budget_ledger.models.submissions import (
    AccountSubmission,
    ScheduledPaymentSubmission,
    TransferScheduleSubmission,
)
from budget_ledger.operations import mutations, transfers


MARCH = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
APRIL = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


def _to_bills(account_id: int, amount: str = "700") -> TransferScheduleSubmission:
    return TransferScheduleSubmission(
        from_account_id=account_id,
        to_account_id=account_id,
        to_pot_name="Bills",
        amount=Decimal(amount),
        description="Fund bills",
    )


@pytest.fixture
def card(state):
    return mutations.add_account(state, AccountSubmission(
        name="Card", type="credit", credit_limit=Decimal("2000"), balance=Decimal("-300"),
    ))


class TestTransferScheduleMutations:
    """Tests for creating, updating and deleting transfer schedules."""

    def test_add_transfer_schedule(self, state, current_account):
        """Test a plain schedule starts active and pending."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        assert schedule.id == 1
        assert schedule.is_pending
        assert schedule.linked_transaction_id is None

    def test_missing_pot_rejected(self, state, current_account):
        """Test an unknown destination pot is rejected."""
        with pytest.raises(NotFoundError):
            transfers.add_transfer_schedule(state, TransferScheduleSubmission(
                from_account_id=current_account.id, to_account_id=current_account.id,
                to_pot_name="Holiday", amount=Decimal("5"),
            ))

    def test_duplicate_pending_destination_rejected(self, state, current_account):
        """Test only one pending schedule may fund a destination."""
        transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        with pytest.raises(InvalidOperationError):
            transfers.add_transfer_schedule(state, _to_bills(current_account.id, "50"))

    def test_update_keeps_execution_state(self, state, current_account):
        """Test updating a schedule keeps completion and last execution."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        updated = transfers.update_transfer_schedule(
            state, schedule.id, _to_bills(current_account.id, "650")
        )
        assert updated.amount == Decimal("650")
        assert updated.is_completed
        assert updated.last_executed == MARCH

    def test_delete_transfer_schedule(self, state, current_account):
        """Test deleting a schedule."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        transfers.delete_transfer_schedule(state, schedule.id)
        assert state.transfer_schedules == []
        with pytest.raises(NotFoundError):
            transfers.delete_transfer_schedule(state, schedule.id)


class TestTransferExecution:
    """Tests for executing transfer schedules."""

    def test_execute_moves_money(self, state, current_account):
        """Test the amount moves from source to destination."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)

        assert current_account.balance == Decimal("300.00")
        assert current_account.find_pot("Bills").balance == Decimal("700")
        assert schedule.is_completed
        assert state.last_transfer_execution_at == MARCH
        assert state.has_transfer_execution(MARCH)

    def test_completed_schedule_cannot_rerun(self, state, current_account):
        """Test a completed plain schedule is blocked until reset."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id, "100"))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        with pytest.raises(InvalidOperationError):
            transfers.execute_transfer_schedule(state, schedule.id, MARCH)

        mutations.reset_balances(state, APRIL)
        current_account.balance = Decimal("100")
        transfers.execute_transfer_schedule(state, schedule.id, APRIL)
        assert current_account.find_pot("Bills").balance == Decimal("100")

    def test_insufficient_funds_changes_nothing(self, state, current_account):
        """Test a short source leaves every balance as it was."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id, "1500"))
        with pytest.raises(InvalidOperationError):
            transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        assert current_account.balance == Decimal("1000.00")
        assert current_account.find_pot("Bills").balance == Decimal("0")
        assert not schedule.is_completed
        assert state.last_transfer_execution_at is None

    def test_inactive_schedule(self, state, current_account):
        """Test inactive schedules cannot run."""
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        schedule.is_active = False
        with pytest.raises(InvalidOperationError):
            transfers.execute_transfer_schedule(state, schedule.id, MARCH)

    def test_execution_clears_payment_completion(self, state, current_account):
        """Test funding a cycle re-arms completed scheduled payments."""
        payment = mutations.add_scheduled_payment(state, current_account.id, ScheduledPaymentSubmission(
            name="Water", amount=Decimal("30"), date="10",
        ), pot_name="Bills")
        payment.is_completed = True
        schedule = transfers.add_transfer_schedule(state, _to_bills(current_account.id))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        assert payment.is_completed is False

    def test_conservation(self, state, current_account):
        """Test a transfer between accounts conserves the total."""
        joint = mutations.add_account(state, AccountSubmission(name="Joint", balance=Decimal("10")))
        total_before = current_account.balance + joint.balance + sum(
            p.balance for p in current_account.pots
        )
        schedule = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=current_account.id, from_pot_name="Savings",
            to_account_id=joint.id, amount=Decimal("50"),
        ))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        total_after = current_account.balance + joint.balance + sum(
            p.balance for p in current_account.pots
        )
        assert total_after == total_before
        assert current_account.find_pot("Savings").balance == Decimal("0")


class TestCreditLinkedTransfers:
    """Tests for schedules paying off a credit account."""

    def test_add_creates_payment_record(self, state, current_account, card):
        """Test a credit-linked schedule gets a card payment record."""
        schedule = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=current_account.id, to_account_id=card.id,
            amount=Decimal("100"), linked_credit_account_id=card.id,
        ))
        record = state.find_transaction(schedule.linked_transaction_id)
        assert record.kind is TransactionKind.CREDIT_CARD_PAYMENT
        assert record.amount == Decimal("100")

    def test_repeat_execution_accumulates_events(self, state, current_account, card):
        """Test a credit-linked schedule never completes and logs each run."""
        schedule = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=current_account.id, to_account_id=card.id,
            amount=Decimal("100"), linked_credit_account_id=card.id,
        ))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        transfers.execute_transfer_schedule(state, schedule.id, APRIL)

        record = state.find_transaction(schedule.linked_transaction_id)
        assert not schedule.is_completed
        assert [e.executed_at for e in record.events] == [MARCH, APRIL]
        assert card.balance == Decimal("-100")
        assert current_account.balance == Decimal("800.00")

    def test_missing_payment_record_is_recreated(self, state, current_account, card):
        """Test execution recreates a deleted payment record."""
        schedule = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=current_account.id, to_account_id=card.id,
            amount=Decimal("100"), linked_credit_account_id=card.id,
        ))
        mutations.delete_transaction(state, schedule.linked_transaction_id)
        assert schedule.linked_transaction_id is None

        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        record = state.find_transaction(schedule.linked_transaction_id)
        assert record is not None
        assert len(record.events) == 1

    def test_deleting_payment_record_reverses_transfers(self, state, current_account, card):
        """Test removing the payment record undoes the payments it recorded."""
        schedule = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=current_account.id, to_account_id=card.id,
            amount=Decimal("100"), linked_credit_account_id=card.id,
        ))
        transfers.execute_transfer_schedule(state, schedule.id, MARCH)
        mutations.delete_transaction(state, schedule.linked_transaction_id)
        assert card.balance == Decimal("-300")
        assert current_account.balance == Decimal("1000.00")


class TestExecuteAll:
    """Tests for executing every pending transfer schedule."""

    def test_execute_all_shares_timestamp_and_skips_failures(self, state, current_account):
        """Test one run timestamp and per-schedule failures."""
        joint = mutations.add_account(state, AccountSubmission(name="Joint"))
        funded = transfers.add_transfer_schedule(state, _to_bills(current_account.id, "400"))
        short = transfers.add_transfer_schedule(state, TransferScheduleSubmission(
            from_account_id=joint.id, to_account_id=current_account.id,
            to_pot_name="Savings", amount=Decimal("10"),
        ))

        result = transfers.execute_all_transfer_schedules(state, MARCH)

        assert result.executed_ids == [funded.id]
        assert short.id in result.failures
        assert "Insufficient funds" in result.failures[short.id]
        assert funded.last_executed == MARCH
        assert short.last_executed is None
