"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data persisted or returned by the engine conforms to these schemas.
"""

from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budget_ledger.models.dates import (
    CalendarDate,
    DayOfMonth,
    ScheduleDate,
    YearlyDate,
    parse_schedule_date,
    parse_yearly_date,
)
from budget_ledger.models.ledger import (
    Account,
    BalanceReductionLog,
    BatchExecutionResult,
    ExecutionPurgeSummary,
    Expense,
    Income,
    IncomeSchedule,
    Pot,
    ProcessedItemSource,
    ProcessedTransactionLog,
    ProcessedTransactionSkip,
    ProcessTransactionsResult,
    ScheduledPayment,
    TargetRecord,
    TransactionEvent,
    TransactionKind,
    TransactionRecord,
    TransferSchedule,
)
from budget_ledger.models.state import LedgerState
from budget_ledger.models.submissions import (
    AccountSubmission,
    ExpenseSubmission,
    IncomeScheduleSubmission,
    IncomeSubmission,
    PotSubmission,
    ScheduledPaymentSubmission,
    TargetSubmission,
    TransactionSubmission,
    TransferScheduleSubmission,
)

__all__ = [
    # Schedule dates
    "CalendarDate",
    "DayOfMonth",
    "ScheduleDate",
    "YearlyDate",
    "parse_schedule_date",
    "parse_yearly_date",
    # Ledger entities
    "Account",
    "BalanceReductionLog",
    "BatchExecutionResult",
    "ExecutionPurgeSummary",
    "Expense",
    "Income",
    "IncomeSchedule",
    "LedgerState",
    "Pot",
    "ProcessedItemSource",
    "ProcessedTransactionLog",
    "ProcessedTransactionSkip",
    "ProcessTransactionsResult",
    "ScheduledPayment",
    "TargetRecord",
    "TransactionEvent",
    "TransactionKind",
    "TransactionRecord",
    "TransferSchedule",
    # Submissions
    "AccountSubmission",
    "ExpenseSubmission",
    "IncomeScheduleSubmission",
    "IncomeSubmission",
    "PotSubmission",
    "ScheduledPaymentSubmission",
    "TargetSubmission",
    "TransactionSubmission",
    "TransferScheduleSubmission",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
