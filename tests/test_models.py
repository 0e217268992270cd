"""
Tests for Budget Ledger models

Test strategy:
1. Unit tests for entity and submission models
2. Legacy key handling on decode
3. Audit event construction
"""

import json
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budget_ledger.models.dates import DayOfMonth, YearlyDate
from budget_ledger.models.ledger import (
    Account,
    ExecutionPurgeSummary,
    Pot,
    ProcessTransactionsResult,
    ScheduledPayment,
    TransactionKind,
    TransactionRecord,
    TransferSchedule,
)
from budget_ledger.models.submissions import (
    AccountSubmission,
    PotSubmission,
    TransactionSubmission,
    TransferScheduleSubmission,
)


class TestLedgerModels:
    """Tests for persisted entity models."""

    def test_money_from_float_keeps_short_form(self):
        """Test float amounts become exact decimals."""
        pot = Pot(id=1, name="Bills", balance=24.2)
        assert pot.balance == Decimal("24.2")

    def test_money_serializes_as_number(self):
        """Test amounts are written as JSON numbers."""
        pot = Pot(id=1, name="Bills", balance=Decimal("12.50"))
        document = json.loads(pot.model_dump_json(by_alias=True))
        assert document["balance"] == 12.5

    def test_account_strips_whitespace(self):
        """Test that whitespace is stripped from names."""
        account = Account(id=1, name="  Joint  ")
        assert account.name == "Joint"

    def test_account_reads_legacy_keys(self):
        """Test camelCase and snake_case keys both decode."""
        account = Account.model_validate({
            "id": 3,
            "name": "Card",
            "type": "credit",
            "creditLimit": 1500,
            "excludeFromReset": True,
            "scheduledPayments": [{"id": 1, "name": "Gym", "amount": 30, "date": "5"}],
            "pots": None,
        })
        assert account.credit_limit == Decimal("1500")
        assert account.exclude_from_reset is True
        assert account.pots == []
        assert account.scheduled_payments[0].schedule == DayOfMonth(day=5)

    def test_account_writes_current_keys(self):
        """Test entity fields are written under their current keys."""
        account = Account(id=1, name="Current", exclude_from_reset=True, credit_limit=100)
        document = account.model_dump(mode="json", by_alias=True)
        assert document["excludeFromReset"] is True
        assert document["credit_limit"] == 100.0
        assert "scheduled_payments" in document

    def test_parsed_schedule_is_not_persisted(self):
        """Test the parsed schedule never reaches the document."""
        payment = ScheduledPayment(id=1, name="Gym", amount=Decimal("30"), date="5th")
        assert payment.schedule == DayOfMonth(day=5)
        assert "schedule" not in payment.model_dump(mode="json", by_alias=True)

    def test_available_credit(self):
        """Test available credit on a credit account."""
        card = Account(id=1, name="Card", type="credit", credit_limit=Decimal("1000"), balance=Decimal("-250"))
        assert card.available_credit == Decimal("750")
        assert Account(id=2, name="Current").available_credit is None

    def test_find_pot_is_case_insensitive(self):
        """Test pot lookup ignores case."""
        account = Account(id=1, name="Current", pots=[Pot(id=1, name="Bills")])
        assert account.find_pot("bills").id == 1
        assert account.find_pot("Rent") is None
        assert account.find_pot(None) is None

    def test_null_flags_decode_as_defaults(self):
        """Test null flags take their defaults."""
        schedule = TransferSchedule.model_validate({
            "id": 1,
            "fromAccountId": 1,
            "toAccountId": 2,
            "amount": 10,
            "isActive": None,
            "isCompleted": None,
        })
        assert schedule.is_active is True
        assert schedule.is_completed is False

    def test_unreadable_last_executed_is_none(self):
        """Test a garbled optional timestamp decodes as None."""
        payment = ScheduledPayment.model_validate({
            "id": 1, "name": "Gym", "amount": 30, "date": "5", "lastExecuted": "yesterday",
        })
        assert payment.last_executed is None

    def test_transaction_kind_legacy_spelling(self):
        """Test camelCase kind values decode."""
        record = TransactionRecord.model_validate({
            "id": 1, "name": "Card", "amount": 10, "toAccountId": 1, "kind": "creditCardCharge",
        })
        assert record.kind is TransactionKind.CREDIT_CARD_CHARGE
        assert record.kind.is_monthly

    def test_yearly_record_schedule(self):
        """Test a yearly record parses its yearly date."""
        record = TransactionRecord(
            id=1, name="Insurance", amount=Decimal("300"), to_account_id=1,
            kind=TransactionKind.YEARLY, yearly_date="25-12-2024",
        )
        assert record.schedule == YearlyDate(month=12, day=25)
        assert record.kind.is_processable
        assert not record.kind.is_monthly

    def test_credit_card_payment_is_not_processable(self):
        """Test card payments never fire through scheduled processing."""
        assert not TransactionKind.CREDIT_CARD_PAYMENT.is_processable


class TestSubmissionModels:
    """Tests for input validation at the edge."""

    def test_account_submission_requires_name(self):
        """Test that an empty name is rejected."""
        with pytest.raises(ValidationError):
            AccountSubmission(name="   ")

    def test_submission_rejects_unknown_fields(self):
        """Test unknown fields are rejected."""
        with pytest.raises(ValidationError):
            PotSubmission(name="Bills", colour="red")

    def test_yearly_submission_needs_date(self):
        """Test a yearly transaction without a usable date is rejected."""
        with pytest.raises(ValidationError):
            TransactionSubmission(
                name="Insurance", amount=Decimal("300"), to_account_id=1,
                kind=TransactionKind.YEARLY, date="15",
            )

    def test_yearly_submission_accepts_yearly_date(self):
        """Test a DD-MM-YYYY yearly date is accepted."""
        submission = TransactionSubmission(
            name="Insurance", amount=Decimal("300"), to_account_id=1,
            kind=TransactionKind.YEARLY, yearly_date="25-12-2024",
        )
        assert submission.yearly_date == "25-12-2024"

    def test_transfer_submission_rejects_same_endpoint(self):
        """Test a transfer onto its own source is rejected."""
        with pytest.raises(ValidationError):
            TransferScheduleSubmission(
                from_account_id=1, from_pot_name="Bills",
                to_account_id=1, to_pot_name="bills",
                amount=Decimal("10"),
            )

    def test_transfer_submission_allows_pot_on_same_account(self):
        """Test moving from an account balance into its own pot is allowed."""
        submission = TransferScheduleSubmission(
            from_account_id=1, to_account_id=1, to_pot_name="Bills", amount=Decimal("10"),
        )
        assert submission.to_pot_name == "Bills"

    def test_transfer_submission_rejects_non_positive_amount(self):
        """Test transfer amounts must be positive."""
        with pytest.raises(ValidationError):
            TransferScheduleSubmission(from_account_id=1, to_account_id=2, amount=Decimal("0"))


class TestResultModels:
    """Tests for operation result models."""

    def test_blocked_result(self):
        """Test a blocked processing result reports it."""
        result = ProcessTransactionsResult(effective_day=3, blocked_reason="no transfer")
        assert result.is_blocked
        assert not ProcessTransactionsResult(effective_day=3).is_blocked

    def test_effective_day_range(self):
        """Test effective day is bounded to a calendar day."""
        with pytest.raises(ValidationError):
            ProcessTransactionsResult(effective_day=32)

    def test_purge_summary_totals(self):
        """Test purge summary totals."""
        summary = ExecutionPurgeSummary(transaction_events_removed=2, income_events_removed=1)
        assert summary.total_executions_removed == 3
        assert summary.total_runs_affected == 0


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.ENTITY_CREATED,
            description="Created account #1",
        )
        assert event.event_type == AuditEventType.ENTITY_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_entity_created_builder(self):
        """Test AuditEventBuilder.entity_created."""
        correlation_id = uuid4()
        event = AuditEventBuilder.entity_created("account", 1, "Current", correlation_id)
        assert event.entity_id == 1
        assert event.correlation_id == correlation_id
        assert "Current" in event.description

    def test_transfer_failed_builder(self):
        """Test AuditEventBuilder.transfer_failed is a warning."""
        event = AuditEventBuilder.transfer_failed(4, "Insufficient funds", uuid4())
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "Insufficient funds"

    def test_save_failed_builder(self):
        """Test AuditEventBuilder.save_failed."""
        event = AuditEventBuilder.save_failed("add_account", "disk full", uuid4())
        assert event.event_type == AuditEventType.SAVE_FAILED
        assert event.severity == AuditSeverity.ERROR
        assert event.details["operation"] == "add_account"

    def test_audit_event_to_log_dict(self):
        """Test AuditEvent.to_log_dict conversion."""
        event = AuditEventBuilder.entity_deleted("pot", 7, uuid4())
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "entity_deleted"
        assert log_dict["entity_id"] == 7
        assert "timestamp" in log_dict
