"""
Core Data Models for Budget Ledger

These models define the entity graph persisted in the ledger state document:
accounts, their pots, recurring commitments and the execution history that
makes scheduled processing idempotent.

DESIGN DECISION: The document tolerates two key-naming conventions.
Each field is written under its current key and, on read, falls back to the
legacy spelling (see `keyed`). Schema migration happens by field-name
fallback, not by a version number.

Money is Decimal in memory and a JSON number on disk.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)

from budget_ledger.models.dates import (
    ScheduleDate,
    ensure_aware,
    format_timestamp,
    parse_schedule_date,
    parse_timestamp,
    parse_yearly_date,
)


CREDIT_ACCOUNT_TYPE = "credit"
SAVINGS_ACCOUNT_TYPES = frozenset({"savings", "investment"})


# =============================================================================
# FIELD TYPES
# =============================================================================

def _coerce_money(value: Any) -> Any:
    # repr() keeps the shortest round-tripping form, so 24.2 stays 24.2
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


def _money_to_json(value: Decimal) -> float:
    return float(value)


def _coerce_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Unrecognised timestamp: {value!r}")
        return parsed
    if isinstance(value, datetime):
        return ensure_aware(value)
    return value


def _lenient_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime):
        return ensure_aware(value)
    return value


def _timestamp_to_json(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


def _none_as_false(value: Any) -> Any:
    return False if value is None else value


def _none_as_true(value: Any) -> Any:
    return True if value is None else value


Money = Annotated[
    Decimal,
    BeforeValidator(_coerce_money),
    PlainSerializer(_money_to_json, return_type=float, when_used="json"),
]

Timestamp = Annotated[
    datetime,
    BeforeValidator(_coerce_timestamp),
    PlainSerializer(_timestamp_to_json, return_type=str, when_used="json"),
]

# Unreadable optional timestamps in old documents decode as None
OptionalTimestamp = Annotated[
    Optional[datetime],
    BeforeValidator(_lenient_timestamp),
    PlainSerializer(_timestamp_to_json, return_type=Optional[str], when_used="json"),
]

Flag = Annotated[bool, BeforeValidator(_none_as_false)]
ActiveFlag = Annotated[bool, BeforeValidator(_none_as_true)]


def keyed(current: str, *fallbacks: str, **kwargs: Any) -> Any:
    """Field written as `current`, read from `current` or any fallback key."""
    return Field(
        alias=current,
        validation_alias=AliasChoices(current, *fallbacks),
        **kwargs,
    )


class LedgerModel(BaseModel):
    """Base for every persisted ledger entity."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """
    How a TransactionRecord's date is interpreted.

    Legacy documents spell these in camelCase ("creditCardCharge").
    """
    SCHEDULED = "scheduled"                        # Day-of-month recurring
    YEARLY = "yearly"                              # Fixed day and month
    CREDIT_CARD_CHARGE = "credit_card_charge"      # Recurring, also debits a card
    CREDIT_CARD_PAYMENT = "credit_card_payment"    # Accumulates card payment transfers

    @classmethod
    def _missing_(cls, value: object) -> Optional["TransactionKind"]:
        if isinstance(value, str):
            normalized = re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_monthly(self) -> bool:
        return self in (TransactionKind.SCHEDULED, TransactionKind.CREDIT_CARD_CHARGE)

    @property
    def is_processable(self) -> bool:
        return self.is_monthly or self is TransactionKind.YEARLY


class ProcessedItemSource(str, Enum):
    """Which collection a processed item id refers to."""
    TRANSACTION = "transaction"
    SCHEDULED_PAYMENT = "scheduled_payment"


# =============================================================================
# ACCOUNTS AND POTS
# =============================================================================

class TransactionEvent(LedgerModel):
    """One execution occurrence of a record or schedule."""

    id: UUID = Field(default_factory=uuid4)
    executed_at: Timestamp = keyed("executedAt", "executed_at")
    amount: Money


class ScheduledPayment(LedgerModel):
    """A recurring bill attached to an account or one of its pots."""

    id: int
    name: str
    amount: Money
    date: str = Field(
        ...,
        description="Day of month or date-like string"
    )
    company: str = ""
    type: Optional[str] = None
    is_completed: Flag = keyed("isCompleted", "is_completed", default=False)
    last_executed: OptionalTimestamp = keyed("lastExecuted", "last_executed", default=None)

    # Parsed form of `date`, never persisted
    schedule: Optional[ScheduleDate] = Field(default=None, exclude=True)

    @model_validator(mode='after')
    def parse_schedule(self) -> 'ScheduledPayment':
        self.schedule = parse_schedule_date(self.date)
        return self


class Pot(LedgerModel):
    """Named sub-balance owned by exactly one account."""

    id: int
    name: str = Field(..., min_length=1)
    balance: Money = Decimal("0")
    exclude_from_reset: Flag = keyed("excludeFromReset", "exclude_from_reset", default=False)
    scheduled_payments: Annotated[
        list[ScheduledPayment], BeforeValidator(_none_as_empty)
    ] = keyed("scheduled_payments", "scheduledPayments", default_factory=list)


class Income(LedgerModel):
    id: int
    amount: Money
    description: str = ""
    company: str = ""
    date: str = ""
    pot_name: Optional[str] = keyed("potName", "pot_name", default=None)


class Expense(LedgerModel):
    """Money that left the owning account, optionally into another account/pot."""

    id: int
    amount: Money
    description: str = ""
    date: str = ""
    to_account_id: Optional[int] = keyed("toAccountId", "to_account_id", default=None)
    to_pot_name: Optional[str] = keyed("toPotName", "to_pot_name", default=None)


class Account(LedgerModel):
    """
    A bank, savings or credit account.

    `balance` is the main balance only; pot balances are held separately.
    """

    id: int
    name: str = Field(..., min_length=1)
    balance: Money = Decimal("0")
    type: str = Field(
        default="current",
        description="current, savings, credit, investment, ..."
    )
    account_type: Optional[str] = keyed(
        "accountType", "account_type",
        default=None,
        description="Free-form category, e.g. personal or joint",
    )
    credit_limit: Optional[Money] = keyed("credit_limit", "creditLimit", default=None)
    exclude_from_reset: Flag = keyed("excludeFromReset", "exclude_from_reset", default=False)
    pots: Annotated[list[Pot], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    scheduled_payments: Annotated[
        list[ScheduledPayment], BeforeValidator(_none_as_empty)
    ] = keyed("scheduled_payments", "scheduledPayments", default_factory=list)
    incomes: Annotated[list[Income], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    expenses: Annotated[list[Expense], BeforeValidator(_none_as_empty)] = Field(default_factory=list)

    # Monthly reduction anchor
    monthly_baseline_balance: Optional[Money] = keyed(
        "monthlyBaselineBalance", "monthly_baseline_balance", default=None
    )
    monthly_baseline_month: Optional[str] = keyed(
        "monthlyBaselineMonth", "monthly_baseline_month", default=None
    )

    @property
    def is_credit(self) -> bool:
        return self.type.lower() == CREDIT_ACCOUNT_TYPE

    @property
    def available_credit(self) -> Optional[Decimal]:
        """Remaining credit on a credit account, None for other accounts."""
        if not self.is_credit or self.credit_limit is None:
            return None
        if self.balance >= 0:
            return max(Decimal("0"), self.credit_limit - self.balance)
        return max(Decimal("0"), self.credit_limit + self.balance)

    def find_pot(self, name: Optional[str]) -> Optional[Pot]:
        """Pot lookup by name, case-insensitive like the uniqueness rule."""
        if not name:
            return None
        wanted = name.casefold()
        for pot in self.pots:
            if pot.name.casefold() == wanted:
                return pot
        return None


# =============================================================================
# TRANSACTIONS AND SCHEDULES
# =============================================================================

class TransactionRecord(LedgerModel):
    """
    The canonical ledger entry driving scheduled processing.

    Each firing appends a TransactionEvent; the event history is part of
    the at-most-once-per-period guarantee.
    """

    id: int
    name: str
    vendor: str = ""
    amount: Money
    date: str = ""
    kind: TransactionKind = TransactionKind.SCHEDULED
    from_account_id: Optional[int] = keyed("fromAccountId", "from_account_id", default=None)
    from_pot_name: Optional[str] = keyed("fromPotName", "from_pot_name", default=None)
    to_account_id: int = keyed("toAccountId", "to_account_id")
    to_pot_name: Optional[str] = keyed("toPotName", "to_pot_name", default=None)
    payment_type: Optional[str] = keyed("paymentType", "payment_type", default=None)
    linked_credit_account_id: Optional[int] = keyed(
        "linkedCreditAccountId", "linked_credit_account_id", default=None
    )
    yearly_date: Optional[str] = keyed("yearlyDate", "yearly_date", default=None)
    is_completed: Flag = keyed("isCompleted", "is_completed", default=False)
    events: Annotated[list[TransactionEvent], BeforeValidator(_none_as_empty)] = Field(
        default_factory=list
    )

    schedule: Optional[ScheduleDate] = Field(default=None, exclude=True)

    @model_validator(mode='after')
    def parse_schedule(self) -> 'TransactionRecord':
        if self.kind is TransactionKind.YEARLY:
            self.schedule = parse_yearly_date(self.yearly_date) or parse_yearly_date(self.date)
        else:
            self.schedule = parse_schedule_date(self.date)
        return self

    def references_account(self, account_id: int) -> bool:
        return account_id in (
            self.to_account_id,
            self.from_account_id,
            self.linked_credit_account_id,
        )


class TransferSchedule(LedgerModel):
    """Standing instruction to move a fixed amount between accounts/pots."""

    id: int
    from_account_id: int = keyed("fromAccountId", "from_account_id")
    from_pot_name: Optional[str] = keyed("fromPotName", "from_pot_name", default=None)
    to_account_id: int = keyed("toAccountId", "to_account_id")
    to_pot_name: Optional[str] = keyed("toPotName", "to_pot_name", default=None)
    amount: Money
    description: str = ""
    is_active: ActiveFlag = keyed("isActive", "is_active", default=True)
    is_completed: Flag = keyed("isCompleted", "is_completed", default=False)
    last_executed: OptionalTimestamp = keyed("lastExecuted", "last_executed", default=None)
    linked_credit_account_id: Optional[int] = keyed(
        "linkedCreditAccountId", "linked_credit_account_id", default=None
    )
    linked_transaction_id: Optional[int] = keyed(
        "linkedTransactionId", "linked_transaction_id", default=None
    )

    @property
    def is_credit_linked(self) -> bool:
        return self.linked_credit_account_id is not None

    @property
    def is_pending(self) -> bool:
        return self.is_active and not self.is_completed

    def targets(self, account_id: int, pot_name: Optional[str]) -> bool:
        """True when this schedule pays into the given account/pot pair."""
        return (
            self.to_account_id == account_id
            and (self.to_pot_name or "").casefold() == (pot_name or "").casefold()
        )

    def references_account(self, account_id: int) -> bool:
        return account_id in (
            self.from_account_id,
            self.to_account_id,
            self.linked_credit_account_id,
        )


class IncomeSchedule(LedgerModel):
    """Recurring income paid into an account."""

    id: int
    account_id: int = keyed("accountId", "account_id")
    income_id: int = keyed("incomeId", "income_id", default=0)
    amount: Money
    description: str = ""
    company: str = ""
    is_active: ActiveFlag = keyed("isActive", "is_active", default=True)
    is_completed: Flag = keyed("isCompleted", "is_completed", default=False)
    last_executed: OptionalTimestamp = keyed("lastExecuted", "last_executed", default=None)
    events: Annotated[list[TransactionEvent], BeforeValidator(_none_as_empty)] = Field(
        default_factory=list
    )


class TargetRecord(LedgerModel):
    """Savings goal. Never affects balances."""

    id: int
    name: str
    amount: Money
    date: str = ""
    account_id: int = keyed("accountId", "account_id")


# =============================================================================
# AUDIT ROWS
# =============================================================================

class ProcessedTransactionLog(LedgerModel):
    """
    Immutable row written each time a scheduled item fires.

    (source, payment_id, period) identifies at most one firing.
    """

    id: int
    payment_id: int = keyed("paymentId", "payment_id")
    source: ProcessedItemSource = ProcessedItemSource.TRANSACTION
    account_id: int = keyed("accountId", "account_id")
    pot_name: Optional[str] = keyed("potName", "pot_name", default=None)
    amount: Money
    day: int
    name: str = ""
    company: str = ""
    payment_type: Optional[str] = keyed("paymentType", "payment_type", default=None)
    processed_at: Timestamp = keyed("processedAt", "processed_at")
    period: str
    was_manual: Flag = keyed("wasManual", "was_manual", default=False)


class BalanceReductionLog(LedgerModel):
    """One account's outcome in a monthly reduction pass."""

    id: int
    timestamp: Timestamp
    month_key: str = keyed("monthKey", "month_key")
    day_of_month: int = keyed("dayOfMonth", "day_of_month")
    account_id: int = keyed("accountId", "account_id")
    account_name: str = keyed("accountName", "account_name", default="")
    baseline_balance: Money = keyed("baselineBalance", "baseline_balance")
    resulting_balance: Money = keyed("resultingBalance", "resulting_balance")
    reduction_amount: Money = keyed("reductionAmount", "reduction_amount")


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class ProcessedTransactionSkip(BaseModel):
    """A due item that could not be applied, and why."""

    payment_id: int
    source: ProcessedItemSource = ProcessedItemSource.TRANSACTION
    account_id: int
    pot_name: Optional[str] = None
    reason: str


class ProcessTransactionsResult(BaseModel):
    """Outcome of one scheduled processing invocation."""

    processed: list[ProcessedTransactionLog] = Field(default_factory=list)
    skipped: list[ProcessedTransactionSkip] = Field(default_factory=list)
    effective_day: int = Field(
        ...,
        ge=1,
        le=31,
        description="Day of month used for due-date comparisons"
    )
    transfer_executed_at: Optional[datetime] = None
    blocked_reason: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.blocked_reason is not None


class BatchExecutionResult(BaseModel):
    """Outcome of an execute-all pass over income or transfer schedules."""

    executed_count: int = Field(default=0, ge=0)
    executed_ids: list[int] = Field(default_factory=list)
    failures: dict[int, str] = Field(
        default_factory=dict,
        description="Schedule id -> reason, for schedules that were skipped"
    )


class ExecutionPurgeSummary(BaseModel):
    """What a purge removed."""

    run_timestamps: list[datetime] = Field(default_factory=list)
    transaction_events_removed: int = 0
    income_events_removed: int = 0
    processed_logs_removed: int = 0

    @property
    def total_executions_removed(self) -> int:
        return self.transaction_events_removed + self.income_events_removed

    @property
    def total_runs_affected(self) -> int:
        return len(self.run_timestamps)
