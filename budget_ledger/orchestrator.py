"""
Ledger Engine

This module ties together state, operations, storage and audit logging.
Every public ledger operation enters here.

DESIGN DECISION: The engine is the single serialization point.
- One asyncio.Lock guards the state; reads take it too, so a read never
  sees a half-applied write
- Each operation mutates the in-memory state, then saves the whole
  document before the lock is released
- Callers only ever receive deep copies

If the save fails the in-memory change stands and PersistenceError is
raised. The caller may retry a later write or reload from storage.

The engine is constructed explicitly with its storage, settings, audit
logger and clock. There is no module-level instance.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel

from budget_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from budget_ledger.config import LedgerSettings, Settings, get_settings, validate_all_settings
from budget_ledger.errors import ConfigurationError, InvalidOperationError, PersistenceError
from budget_ledger.models.audit import AuditEventBuilder, AuditEventType
from budget_ledger.models.dates import ensure_aware, period_key, utc_now
from budget_ledger.models.ledger import (
    Account,
    BalanceReductionLog,
    BatchExecutionResult,
    ExecutionPurgeSummary,
    Expense,
    Income,
    IncomeSchedule,
    Pot,
    ProcessedTransactionLog,
    ProcessTransactionsResult,
    ScheduledPayment,
    TargetRecord,
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
from budget_ledger.operations import mutations, purge, reduction, scheduler, transfers
from budget_ledger.services.storage import (
    InMemoryLedgerStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _snapshot(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_copy(deep=True)
    if isinstance(value, list):
        return [_snapshot(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_snapshot(item) for item in value)
    return value


class LedgerEngine:
    """
    The ledger's public API.

    Usage:
        engine = await create_ledger_engine()
        account = await engine.add_account(AccountSubmission(name="Current"))
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        state: Optional[LedgerState] = None,
    ):
        """
        Initialize the engine. Call load() to read the stored state.

        Args:
            storage: Where the state document is kept
            settings: Ledger settings. Defaults to the application settings.
            audit_logger: Audit sink. Defaults to a structlog AuditLogger.
            clock: Source of "now". Defaults to the UTC wall clock.
            state: Initial in-memory state. Defaults to an empty ledger.
        """
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._clock = clock or utc_now
        self._state = state or LedgerState.empty()
        self._lock = asyncio.Lock()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _moment(self, value: Optional[datetime] = None) -> datetime:
        """An aware timestamp at the millisecond precision the document keeps."""
        moment = ensure_aware(value if value is not None else self._clock())
        return moment.replace(microsecond=moment.microsecond // 1000 * 1000)

    async def _persist(self, operation: str, correlation_id: UUID) -> None:
        try:
            await self._storage.save_document(self._state.to_document_bytes())
        except StorageError as e:
            self._audit.log_save_failed(operation, str(e), correlation_id)
            raise PersistenceError(f"Ledger state not saved after {operation}: {e}") from e

    async def _commit(
        self,
        operation: str,
        change: Callable[[], T],
        persist_if: Optional[Callable[[T], bool]] = None,
    ) -> tuple[T, UUID]:
        """
        Run `change` under the lock, save, and return a deep copy of its result.

        Domain errors raised by `change` propagate before anything is saved.
        """
        correlation_id = create_correlation_id()
        async with self._lock:
            result = change()
            if persist_if is None or persist_if(result):
                await self._persist(operation, correlation_id)
            return _snapshot(result), correlation_id

    async def _read(self, read: Callable[[], T]) -> T:
        async with self._lock:
            return _snapshot(read())

    async def load(self) -> None:
        """
        Replace the in-memory state with the stored document.

        A missing document gives an empty ledger. So does a malformed one,
        with a warning logged.

        Raises:
            PersistenceError: If the document exists but cannot be read
        """
        async with self._lock:
            try:
                data = await self._storage.load_document()
            except StorageError as e:
                self._audit.log_error("StorageReadError", str(e))
                raise PersistenceError(f"Ledger state could not be read: {e}") from e

            if data is None:
                self._state = LedgerState.empty()
                return
            try:
                self._state = LedgerState.from_document_bytes(data)
            except ValueError as e:
                logger.warning("state_document_malformed", error=str(e)[:500])
                self._audit.log(AuditEventBuilder.ledger_event(
                    AuditEventType.STATE_LOAD_FAILED,
                    "Stored ledger state was malformed; starting empty",
                ))
                self._state = LedgerState.empty()

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def add_account(self, submission: AccountSubmission) -> Account:
        account, cid = await self._commit(
            "add_account", lambda: mutations.add_account(self._state, submission)
        )
        self._audit.log_created("account", account.id, account.name, cid)
        return account

    async def update_account(self, account_id: int, submission: AccountSubmission) -> Account:
        account, cid = await self._commit(
            "update_account",
            lambda: mutations.update_account(self._state, account_id, submission),
        )
        self._audit.log_updated("account", account_id, cid, {"balance": str(account.balance)})
        return account

    async def delete_account(self, account_id: int) -> None:
        _, cid = await self._commit(
            "delete_account", lambda: mutations.delete_account(self._state, account_id)
        )
        self._audit.log_deleted("account", account_id, cid)

    async def reorder_accounts(self, account_ids: list[int]) -> list[Account]:
        accounts, _ = await self._commit(
            "reorder_accounts", lambda: mutations.reorder_accounts(self._state, account_ids)
        )
        return accounts

    async def toggle_account_exclusion(self, account_id: int) -> bool:
        excluded, cid = await self._commit(
            "toggle_account_exclusion",
            lambda: mutations.toggle_account_exclusion(self._state, account_id),
        )
        self._audit.log_updated("account", account_id, cid, {"exclude_from_reset": excluded})
        return excluded

    # =========================================================================
    # POTS
    # =========================================================================

    async def add_pot(self, account_id: int, submission: PotSubmission) -> Pot:
        pot, cid = await self._commit(
            "add_pot", lambda: mutations.add_pot(self._state, account_id, submission)
        )
        self._audit.log_created("pot", pot.id, pot.name, cid)
        return pot

    async def update_pot(self, account_id: int, pot_id: int, submission: PotSubmission) -> Pot:
        pot, cid = await self._commit(
            "update_pot",
            lambda: mutations.update_pot(self._state, account_id, pot_id, submission),
        )
        self._audit.log_updated("pot", pot_id, cid, {"account_id": account_id})
        return pot

    async def delete_pot(self, account_id: int, pot_id: int) -> None:
        _, cid = await self._commit(
            "delete_pot", lambda: mutations.delete_pot(self._state, account_id, pot_id)
        )
        self._audit.log_deleted("pot", pot_id, cid, {"account_id": account_id})

    async def toggle_pot_exclusion(self, account_id: int, pot_name: str) -> bool:
        excluded, _ = await self._commit(
            "toggle_pot_exclusion",
            lambda: mutations.toggle_pot_exclusion(self._state, account_id, pot_name),
        )
        return excluded

    # =========================================================================
    # INCOMES AND EXPENSES
    # =========================================================================

    async def add_income(self, account_id: int, submission: IncomeSubmission) -> Income:
        income, cid = await self._commit(
            "add_income", lambda: mutations.add_income(self._state, account_id, submission)
        )
        self._audit.log_created("income", income.id, income.description, cid)
        return income

    async def update_income(
        self, account_id: int, income_id: int, submission: IncomeSubmission
    ) -> Income:
        income, cid = await self._commit(
            "update_income",
            lambda: mutations.update_income(self._state, account_id, income_id, submission),
        )
        self._audit.log_updated("income", income_id, cid)
        return income

    async def delete_income(self, account_id: int, income_id: int) -> None:
        _, cid = await self._commit(
            "delete_income",
            lambda: mutations.delete_income(self._state, account_id, income_id),
        )
        self._audit.log_deleted("income", income_id, cid)

    async def add_expense(self, account_id: int, submission: ExpenseSubmission) -> Expense:
        expense, cid = await self._commit(
            "add_expense", lambda: mutations.add_expense(self._state, account_id, submission)
        )
        self._audit.log_created("expense", expense.id, expense.description, cid)
        return expense

    async def update_expense(
        self, account_id: int, expense_id: int, submission: ExpenseSubmission
    ) -> Expense:
        expense, cid = await self._commit(
            "update_expense",
            lambda: mutations.update_expense(self._state, account_id, expense_id, submission),
        )
        self._audit.log_updated("expense", expense_id, cid)
        return expense

    async def delete_expense(self, account_id: int, expense_id: int) -> None:
        _, cid = await self._commit(
            "delete_expense",
            lambda: mutations.delete_expense(self._state, account_id, expense_id),
        )
        self._audit.log_deleted("expense", expense_id, cid)

    # =========================================================================
    # TRANSACTIONS AND TARGETS
    # =========================================================================

    async def add_transaction(self, submission: TransactionSubmission) -> TransactionRecord:
        record, cid = await self._commit(
            "add_transaction", lambda: mutations.add_transaction(self._state, submission)
        )
        self._audit.log_created("transaction", record.id, record.name, cid)
        return record

    async def update_transaction(
        self, transaction_id: int, submission: TransactionSubmission
    ) -> TransactionRecord:
        record, cid = await self._commit(
            "update_transaction",
            lambda: mutations.update_transaction(self._state, transaction_id, submission),
        )
        self._audit.log_updated("transaction", transaction_id, cid)
        return record

    async def delete_transaction(self, transaction_id: int) -> None:
        record, cid = await self._commit(
            "delete_transaction",
            lambda: mutations.delete_transaction(self._state, transaction_id),
        )
        self._audit.log_deleted(
            "transaction", transaction_id, cid, {"events_reversed": len(record.events)}
        )

    async def mark_yearly_transaction_ready(self, transaction_id: int) -> TransactionRecord:
        record, cid = await self._commit(
            "mark_yearly_transaction_ready",
            lambda: mutations.mark_yearly_transaction_ready(self._state, transaction_id),
        )
        self._audit.log_updated("transaction", transaction_id, cid, {"is_completed": False})
        return record

    async def add_target(self, submission: TargetSubmission) -> TargetRecord:
        target, cid = await self._commit(
            "add_target", lambda: mutations.add_target(self._state, submission)
        )
        self._audit.log_created("target", target.id, target.name, cid)
        return target

    async def update_target(self, target_id: int, submission: TargetSubmission) -> TargetRecord:
        target, cid = await self._commit(
            "update_target", lambda: mutations.update_target(self._state, target_id, submission)
        )
        self._audit.log_updated("target", target_id, cid)
        return target

    async def delete_target(self, target_id: int) -> None:
        _, cid = await self._commit(
            "delete_target", lambda: mutations.delete_target(self._state, target_id)
        )
        self._audit.log_deleted("target", target_id, cid)

    # =========================================================================
    # SCHEDULED PAYMENTS
    # =========================================================================

    async def add_scheduled_payment(
        self,
        account_id: int,
        submission: ScheduledPaymentSubmission,
        pot_name: Optional[str] = None,
    ) -> ScheduledPayment:
        payment, cid = await self._commit(
            "add_scheduled_payment",
            lambda: mutations.add_scheduled_payment(self._state, account_id, submission, pot_name),
        )
        self._audit.log_created("scheduled_payment", payment.id, payment.name, cid)
        return payment

    async def update_scheduled_payment(
        self,
        account_id: int,
        payment_id: int,
        submission: ScheduledPaymentSubmission,
        pot_name: Optional[str] = None,
    ) -> ScheduledPayment:
        payment, cid = await self._commit(
            "update_scheduled_payment",
            lambda: mutations.update_scheduled_payment(
                self._state, account_id, payment_id, submission, pot_name
            ),
        )
        self._audit.log_updated("scheduled_payment", payment_id, cid, {"pot_name": pot_name})
        return payment

    async def delete_scheduled_payment(self, account_id: int, payment_id: int) -> None:
        _, cid = await self._commit(
            "delete_scheduled_payment",
            lambda: mutations.delete_scheduled_payment(self._state, account_id, payment_id),
        )
        self._audit.log_deleted("scheduled_payment", payment_id, cid)

    # =========================================================================
    # INCOME SCHEDULES
    # =========================================================================

    async def add_income_schedule(self, submission: IncomeScheduleSubmission) -> IncomeSchedule:
        schedule, cid = await self._commit(
            "add_income_schedule", lambda: mutations.add_income_schedule(self._state, submission)
        )
        self._audit.log_created("income_schedule", schedule.id, schedule.description, cid)
        return schedule

    async def delete_income_schedule(self, schedule_id: int) -> None:
        _, cid = await self._commit(
            "delete_income_schedule",
            lambda: mutations.delete_income_schedule(self._state, schedule_id),
        )
        self._audit.log_deleted("income_schedule", schedule_id, cid)

    async def execute_income_schedule(self, schedule_id: int) -> IncomeSchedule:
        executed_at = self._moment()
        schedule, cid = await self._commit(
            "execute_income_schedule",
            lambda: mutations.execute_income_schedule(self._state, schedule_id, executed_at),
        )
        self._audit.log(AuditEventBuilder.income_executed(
            schedule.id, str(schedule.amount), schedule.account_id, cid
        ))
        return schedule

    async def execute_all_income_schedules(self) -> BatchExecutionResult:
        executed_at = self._moment()
        result, cid = await self._commit(
            "execute_all_income_schedules",
            lambda: mutations.execute_all_income_schedules(self._state, executed_at),
        )
        for schedule_id in result.executed_ids:
            schedule = self._state.find_income_schedule(schedule_id)
            if schedule is not None:
                self._audit.log(AuditEventBuilder.income_executed(
                    schedule_id, str(schedule.amount), schedule.account_id, cid
                ))
        for schedule_id, reason in result.failures.items():
            self._audit.log_error("IncomeScheduleSkipped", reason, {"schedule_id": schedule_id}, cid)
        return result

    # =========================================================================
    # TRANSFERS
    # =========================================================================

    async def add_transfer_schedule(self, submission: TransferScheduleSubmission) -> TransferSchedule:
        schedule, cid = await self._commit(
            "add_transfer_schedule",
            lambda: transfers.add_transfer_schedule(self._state, submission),
        )
        self._audit.log_created(
            "transfer_schedule", schedule.id, schedule.description or "transfer", cid
        )
        return schedule

    async def update_transfer_schedule(
        self, schedule_id: int, submission: TransferScheduleSubmission
    ) -> TransferSchedule:
        schedule, cid = await self._commit(
            "update_transfer_schedule",
            lambda: transfers.update_transfer_schedule(self._state, schedule_id, submission),
        )
        self._audit.log_updated("transfer_schedule", schedule_id, cid)
        return schedule

    async def delete_transfer_schedule(self, schedule_id: int) -> None:
        _, cid = await self._commit(
            "delete_transfer_schedule",
            lambda: transfers.delete_transfer_schedule(self._state, schedule_id),
        )
        self._audit.log_deleted("transfer_schedule", schedule_id, cid)

    async def execute_transfer_schedule(self, schedule_id: int) -> TransferSchedule:
        executed_at = self._moment()
        schedule, cid = await self._commit(
            "execute_transfer_schedule",
            lambda: transfers.execute_transfer_schedule(self._state, schedule_id, executed_at),
        )
        self._audit.log(AuditEventBuilder.transfer_executed(
            schedule.id,
            str(schedule.amount),
            schedule.from_account_id,
            schedule.to_account_id,
            cid,
        ))
        return schedule

    async def execute_all_transfer_schedules(self) -> BatchExecutionResult:
        executed_at = self._moment()
        result, cid = await self._commit(
            "execute_all_transfer_schedules",
            lambda: transfers.execute_all_transfer_schedules(self._state, executed_at),
        )
        for schedule_id in result.executed_ids:
            schedule = self._state.find_transfer_schedule(schedule_id)
            if schedule is not None:
                self._audit.log(AuditEventBuilder.transfer_executed(
                    schedule_id,
                    str(schedule.amount),
                    schedule.from_account_id,
                    schedule.to_account_id,
                    cid,
                ))
        for schedule_id, reason in result.failures.items():
            self._audit.log(AuditEventBuilder.transfer_failed(schedule_id, reason, cid))
        return result

    async def has_transfer_execution(self, for_month_containing: Optional[datetime] = None) -> bool:
        moment = self._moment(for_month_containing)
        return await self._read(lambda: self._state.has_transfer_execution(moment))

    # =========================================================================
    # PERIODIC PASSES
    # =========================================================================

    async def process_scheduled_transactions(
        self,
        as_of: Optional[datetime] = None,
        manual: bool = False,
        require_transfer_execution: Optional[bool] = None,
    ) -> ProcessTransactionsResult:
        """
        Apply every due scheduled item for the month of `as_of` (default now).

        Safe to call repeatedly: an item fires at most once per period.
        The state is saved only when something changed.

        Args:
            as_of: Moment to process for
            manual: Recorded on the processed log rows
            require_transfer_execution: Override the transfer gate setting
        """
        moment = self._moment(as_of)
        gate = (
            self._settings.require_transfer_before_processing
            if require_transfer_execution is None
            else require_transfer_execution
        )
        (result, _), cid = await self._commit(
            "process_scheduled_transactions",
            lambda: scheduler.process_scheduled_transactions(self._state, moment, manual, gate),
            persist_if=lambda outcome: outcome[1],
        )

        if result.blocked_reason is not None:
            self._audit.log(AuditEventBuilder.scheduled_processing_blocked(
                period_key(moment), result.blocked_reason, cid
            ))
        else:
            self._audit.log(AuditEventBuilder.scheduled_processing_completed(
                period_key(moment),
                result.effective_day,
                len(result.processed),
                len(result.skipped),
                cid,
            ))
        return result

    async def apply_monthly_reduction(
        self, as_of: Optional[datetime] = None
    ) -> list[BalanceReductionLog]:
        moment = self._moment(as_of)
        logs, cid = await self._commit(
            "apply_monthly_reduction",
            lambda: reduction.apply_monthly_reduction(
                self._state, moment, self._settings.reduction_log_retention
            ),
        )
        self._audit.log(AuditEventBuilder.reduction_applied(
            period_key(moment), moment.day, len(logs), cid
        ))
        return logs

    async def purge_executions(self, start: datetime, end: datetime) -> ExecutionPurgeSummary:
        if ensure_aware(start) > ensure_aware(end):
            raise InvalidOperationError("Purge window start must not be after its end")
        summary, cid = await self._commit(
            "purge_executions", lambda: purge.purge_executions(self._state, start, end)
        )
        self._audit.log(AuditEventBuilder.executions_purged(
            summary.total_runs_affected,
            summary.total_executions_removed,
            summary.processed_logs_removed,
            cid,
        ))
        return summary

    async def purge_execution_run(self, run_timestamp: datetime) -> ExecutionPurgeSummary:
        summary, cid = await self._commit(
            "purge_execution_run",
            lambda: purge.purge_execution_run(self._state, run_timestamp),
        )
        self._audit.log(AuditEventBuilder.executions_purged(
            summary.total_runs_affected,
            summary.total_executions_removed,
            summary.processed_logs_removed,
            cid,
        ))
        return summary

    async def reset_balances(self) -> list[Account]:
        """Zero non-excluded balances and make every schedule executable again."""
        reset_at = self._moment()

        def change() -> list[Account]:
            mutations.reset_balances(self._state, reset_at)
            return self._state.accounts

        accounts, cid = await self._commit("reset_balances", change)
        self._audit.log(AuditEventBuilder.ledger_event(
            AuditEventType.BALANCES_RESET, "Balances reset", cid
        ))
        return accounts

    # =========================================================================
    # WHOLE-LEDGER OPERATIONS
    # =========================================================================

    async def export_state(self) -> bytes:
        return await self._read(self._state.to_document_bytes)

    async def import_state(self, data: bytes) -> None:
        """
        Replace the whole ledger with an exported document.

        Raises:
            InvalidOperationError: If the bytes are not a ledger document
        """
        try:
            imported = LedgerState.from_document_bytes(data)
        except ValueError as e:
            raise InvalidOperationError(f"Not a valid ledger state document: {e}") from e

        def change() -> LedgerState:
            self._state = imported
            return imported

        _, cid = await self._commit("import_state", change)
        self._audit.log(AuditEventBuilder.ledger_event(
            AuditEventType.STATE_IMPORTED,
            "Ledger state replaced by import",
            cid,
            {"accounts": len(imported.accounts), "transactions": len(imported.transactions)},
        ))

    async def clear_all(self) -> None:
        def change() -> LedgerState:
            self._state = LedgerState.empty()
            return self._state

        _, cid = await self._commit("clear_all", change)
        self._audit.log(AuditEventBuilder.ledger_event(
            AuditEventType.STATE_CLEARED, "Ledger cleared", cid
        ))

    # =========================================================================
    # READ ACCESSORS
    # =========================================================================

    async def current_accounts(self) -> list[Account]:
        return await self._read(lambda: self._state.accounts)

    async def current_transactions(self) -> list[TransactionRecord]:
        return await self._read(lambda: self._state.transactions)

    async def current_transfer_schedules(self) -> list[TransferSchedule]:
        return await self._read(lambda: self._state.transfer_schedules)

    async def current_income_schedules(self) -> list[IncomeSchedule]:
        return await self._read(lambda: self._state.income_schedules)

    async def current_processed_transactions(self) -> list[ProcessedTransactionLog]:
        return await self._read(lambda: self._state.processed_transactions)

    async def current_targets(self) -> list[TargetRecord]:
        return await self._read(lambda: self._state.targets)

    async def current_balance_reduction_logs(self) -> list[BalanceReductionLog]:
        return await self._read(lambda: self._state.balance_reduction_logs)

    async def last_reset_timestamp(self) -> Optional[datetime]:
        return await self._read(lambda: self._state.last_reset_at)

    async def savings_and_investments(self) -> list[Account]:
        return await self._read(lambda: mutations.savings_and_investments(self._state))


async def create_ledger_engine(
    settings: Optional[Settings] = None,
    in_memory: bool = False,
    clock: Optional[Callable[[], datetime]] = None,
) -> LedgerEngine:
    """
    Factory function to create a loaded engine.

    Args:
        settings: Application settings. Defaults to get_settings().
        in_memory: Keep the state in memory only (tests, throwaway ledgers).
        clock: Source of "now". Defaults to the UTC wall clock.

    Returns:
        An engine with the stored state loaded

    Raises:
        ConfigurationError: If any settings section fails validation
    """
    settings = settings or get_settings()
    checks = validate_all_settings(settings)
    problems = [
        f"{name[:-len('_error')]}: {message}"
        for name, message in checks.items()
        if name.endswith("_error")
    ]
    if problems:
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems))

    ledger_settings = settings.ledger
    configure_logging(ledger_settings.effective_log_level)
    logger.info(
        "ledger_engine_starting",
        environment=ledger_settings.environment,
        debug_mode=ledger_settings.debug_mode,
        in_memory=in_memory,
    )

    storage: LedgerStorageInterface
    if in_memory:
        storage = InMemoryLedgerStorage()
    else:
        storage = JsonFileLedgerStorage(settings.storage)

    engine = LedgerEngine(
        storage=storage,
        settings=ledger_settings,
        audit_logger=AuditLogger(),
        clock=clock,
    )
    await engine.load()
    return engine
