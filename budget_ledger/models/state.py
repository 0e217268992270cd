"""
Ledger State Document

The whole ledger lives in one LedgerState, persisted as a single JSON
document.

DESIGN DECISION: Top-level keys are written in snake_case. Documents
written with the older camelCase keys ("incomeSchedules", "nextAccountId")
still load, through alias fallback. Missing collections decode as empty
and missing counters as 1.

After every load or import the id counters are re-derived, so a
hand-edited document can never cause an id to be handed out twice.
"""

import json
from collections.abc import Iterator
from datetime import datetime
from typing import Annotated, Any, Optional, Union

from pydantic import AliasChoices, BeforeValidator, Field

from budget_ledger.models.dates import same_period
from budget_ledger.models.ledger import (
    Account,
    BalanceReductionLog,
    IncomeSchedule,
    LedgerModel,
    OptionalTimestamp,
    Pot,
    ProcessedTransactionLog,
    ScheduledPayment,
    TargetRecord,
    TransactionRecord,
    TransferSchedule,
    _none_as_empty,
)


def _none_as_one(value: Any) -> Any:
    return 1 if value is None else value


Counter = Annotated[int, BeforeValidator(_none_as_one)]


def _collection(*names: str) -> Any:
    return Field(default_factory=list, validation_alias=AliasChoices(*names))


def _counter(*names: str) -> Any:
    return Field(default=1, validation_alias=AliasChoices(*names))


def _max_id(ids: Iterator[int]) -> int:
    return max(ids, default=0)


class LedgerState(LedgerModel):
    """The entire persisted ledger."""

    accounts: Annotated[list[Account], BeforeValidator(_none_as_empty)] = _collection(
        "accounts"
    )
    transactions: Annotated[
        list[TransactionRecord], BeforeValidator(_none_as_empty)
    ] = _collection("transactions")
    targets: Annotated[list[TargetRecord], BeforeValidator(_none_as_empty)] = _collection(
        "targets"
    )
    income_schedules: Annotated[
        list[IncomeSchedule], BeforeValidator(_none_as_empty)
    ] = _collection("income_schedules", "incomeSchedules")
    transfer_schedules: Annotated[
        list[TransferSchedule], BeforeValidator(_none_as_empty)
    ] = _collection("transfer_schedules", "transferSchedules")
    processed_transactions: Annotated[
        list[ProcessedTransactionLog], BeforeValidator(_none_as_empty)
    ] = _collection("processed_transactions", "processedTransactions")
    balance_reduction_logs: Annotated[
        list[BalanceReductionLog], BeforeValidator(_none_as_empty)
    ] = _collection("balance_reduction_logs", "balanceReductionLogs")

    last_reset_at: OptionalTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("last_reset_at", "lastResetAt"),
    )
    last_transfer_execution_at: OptionalTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("last_transfer_execution_at", "lastTransferExecutionAt"),
    )

    # Next-id counters
    next_account_id: Counter = _counter("next_account_id", "nextAccountId")
    next_pot_id: Counter = _counter("next_pot_id", "nextPotId")
    next_income_id: Counter = _counter("next_income_id", "nextIncomeId")
    next_expense_id: Counter = _counter("next_expense_id", "nextExpenseId")
    next_transaction_id: Counter = _counter("next_transaction_id", "nextTransactionId")
    next_target_id: Counter = _counter("next_target_id", "nextTargetId")
    next_scheduled_payment_id: Counter = _counter(
        "next_scheduled_payment_id", "nextScheduledPaymentId"
    )
    next_income_schedule_id: Counter = _counter(
        "next_income_schedule_id", "nextIncomeScheduleId"
    )
    next_transfer_schedule_id: Counter = _counter(
        "next_transfer_schedule_id", "nextTransferScheduleId"
    )
    next_processed_log_id: Counter = _counter(
        "next_processed_log_id", "nextProcessedTransactionId"
    )
    next_reduction_log_id: Counter = _counter(
        "next_reduction_log_id", "nextBalanceReductionLogId"
    )

    # =========================================================================
    # CONSTRUCTION AND ENCODING
    # =========================================================================

    @classmethod
    def empty(cls) -> "LedgerState":
        return cls()

    @classmethod
    def from_document_bytes(cls, data: Union[bytes, str]) -> "LedgerState":
        """
        Decode and normalize a state document.

        Raises:
            ValueError: If the bytes are not a valid state document
                (pydantic's ValidationError is a ValueError)
        """
        return cls.model_validate_json(data).normalized()

    def to_document_bytes(self) -> bytes:
        """Encode as UTF-8 JSON with sorted keys and a 2-space indent."""
        document = self.model_dump(mode="json", by_alias=True)
        return json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False).encode("utf-8")

    def normalized(self) -> "LedgerState":
        """Raise every counter above the largest id present. Returns self."""
        pots = [pot for account in self.accounts for pot in account.pots]
        present = {
            "next_account_id": _max_id(a.id for a in self.accounts),
            "next_pot_id": _max_id(p.id for p in pots),
            "next_income_id": _max_id(i.id for a in self.accounts for i in a.incomes),
            "next_expense_id": _max_id(e.id for a in self.accounts for e in a.expenses),
            "next_transaction_id": _max_id(t.id for t in self.transactions),
            "next_target_id": _max_id(t.id for t in self.targets),
            "next_scheduled_payment_id": _max_id(
                payment.id for _, _, payment in self.iter_scheduled_payments()
            ),
            "next_income_schedule_id": _max_id(s.id for s in self.income_schedules),
            "next_transfer_schedule_id": _max_id(s.id for s in self.transfer_schedules),
            "next_processed_log_id": _max_id(log.id for log in self.processed_transactions),
            "next_reduction_log_id": _max_id(log.id for log in self.balance_reduction_logs),
        }
        for counter, highest in present.items():
            setattr(self, counter, max(getattr(self, counter), highest + 1, 1))
        return self

    def allocate_id(self, counter: str) -> int:
        """Hand out the next id from `next_<counter>_id` and advance it."""
        attribute = f"next_{counter}_id"
        value = getattr(self, attribute)
        setattr(self, attribute, value + 1)
        return value

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def find_account(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def find_transaction(self, transaction_id: Optional[int]) -> Optional[TransactionRecord]:
        if transaction_id is None:
            return None
        for record in self.transactions:
            if record.id == transaction_id:
                return record
        return None

    def find_transfer_schedule(self, schedule_id: int) -> Optional[TransferSchedule]:
        for schedule in self.transfer_schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def find_income_schedule(self, schedule_id: int) -> Optional[IncomeSchedule]:
        for schedule in self.income_schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def iter_scheduled_payments(
        self,
    ) -> Iterator[tuple[Account, Optional[Pot], ScheduledPayment]]:
        """Every scheduled payment with its owning account and pot (None for account-level)."""
        for account in self.accounts:
            for payment in account.scheduled_payments:
                yield account, None, payment
            for pot in account.pots:
                for payment in pot.scheduled_payments:
                    yield account, pot, payment

    def latest_transfer_execution(self) -> Optional[datetime]:
        """
        When transfers last ran.

        Older documents lack last_transfer_execution_at; the latest
        last_executed among transfer schedules stands in for it.
        """
        if self.last_transfer_execution_at is not None:
            return self.last_transfer_execution_at
        executed = [s.last_executed for s in self.transfer_schedules if s.last_executed is not None]
        return max(executed, default=None)

    def has_transfer_execution(self, for_month_containing: datetime) -> bool:
        """True when a transfer ran in the calendar month of the given moment."""
        latest = self.latest_transfer_execution()
        if latest is None:
            return False
        return same_period(latest, for_month_containing)
