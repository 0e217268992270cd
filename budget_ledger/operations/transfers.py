"""
Transfer Execution

Moves a TransferSchedule's amount from its source endpoint to its
destination endpoint. An endpoint is an account's main balance or one of
its named pots.

DESIGN DECISION: Two completion policies.
- A plain schedule completes after one successful execution and stays
  blocked until the next balance reset.
- A credit-linked schedule never completes. Each execution appends a
  TransactionEvent to the schedule's credit_card_payment record, so the
  card payment history accumulates on one record.
"""

from datetime import datetime
from typing import Optional

import structlog

from budget_ledger.errors import InvalidOperationError, LedgerError, NotFoundError
from budget_ledger.models.ledger import (
    BatchExecutionResult,
    TransactionEvent,
    TransactionKind,
    TransactionRecord,
    TransferSchedule,
)
from budget_ledger.models.state import LedgerState
from budget_ledger.models.submissions import TransferScheduleSubmission
from budget_ledger.operations.balances import move, require_account, resolve_endpoint


logger = structlog.get_logger(__name__)


def require_transfer_schedule(state: LedgerState, schedule_id: int) -> TransferSchedule:
    schedule = state.find_transfer_schedule(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Transfer schedule #{schedule_id} not found")
    return schedule


def _validate_submission(
    state: LedgerState,
    submission: TransferScheduleSubmission,
    ignore_schedule_id: Optional[int] = None,
) -> None:
    resolve_endpoint(state, submission.from_account_id, submission.from_pot_name)
    resolve_endpoint(state, submission.to_account_id, submission.to_pot_name)
    if submission.linked_credit_account_id is not None:
        require_account(state, submission.linked_credit_account_id)

    for existing in state.transfer_schedules:
        if existing.id == ignore_schedule_id:
            continue
        if existing.is_pending and existing.targets(submission.to_account_id, submission.to_pot_name):
            raise InvalidOperationError(
                f"Transfer schedule #{existing.id} is already pending for this destination"
            )


def _create_payment_record(state: LedgerState, schedule: TransferSchedule) -> TransactionRecord:
    """The credit_card_payment record a credit-linked schedule accumulates events on."""
    record = TransactionRecord(
        id=state.allocate_id("transaction"),
        name=schedule.description or f"Credit card payment (transfer #{schedule.id})",
        amount=schedule.amount,
        kind=TransactionKind.CREDIT_CARD_PAYMENT,
        from_account_id=schedule.from_account_id,
        from_pot_name=schedule.from_pot_name,
        to_account_id=schedule.to_account_id,
        to_pot_name=schedule.to_pot_name,
        payment_type="transfer",
        linked_credit_account_id=schedule.linked_credit_account_id,
    )
    state.transactions.append(record)
    schedule.linked_transaction_id = record.id
    return record


def _payment_record(state: LedgerState, schedule: TransferSchedule) -> TransactionRecord:
    record = state.find_transaction(schedule.linked_transaction_id)
    if record is None or record.kind is not TransactionKind.CREDIT_CARD_PAYMENT:
        logger.info("payment_record_recreated", schedule_id=schedule.id)
        return _create_payment_record(state, schedule)
    return record


def add_transfer_schedule(
    state: LedgerState,
    submission: TransferScheduleSubmission,
) -> TransferSchedule:
    """
    Raises:
        NotFoundError: If an account or named pot does not exist
        InvalidOperationError: If the destination already has a pending schedule
    """
    _validate_submission(state, submission)
    schedule = TransferSchedule(
        id=state.allocate_id("transfer_schedule"),
        **submission.model_dump(),
    )
    if schedule.is_credit_linked:
        _create_payment_record(state, schedule)
    state.transfer_schedules.append(schedule)
    return schedule


def update_transfer_schedule(
    state: LedgerState,
    schedule_id: int,
    submission: TransferScheduleSubmission,
) -> TransferSchedule:
    """Replace a schedule's endpoints and amount, keeping its execution state."""
    existing = require_transfer_schedule(state, schedule_id)
    _validate_submission(state, submission, ignore_schedule_id=schedule_id)

    updated = TransferSchedule(
        id=schedule_id,
        is_active=existing.is_active,
        is_completed=existing.is_completed,
        last_executed=existing.last_executed,
        linked_transaction_id=existing.linked_transaction_id if submission.linked_credit_account_id else None,
        **submission.model_dump(),
    )
    record = state.find_transaction(updated.linked_transaction_id)
    if updated.is_credit_linked and record is None:
        _create_payment_record(state, updated)
    elif record is not None:
        record.amount = updated.amount
        record.from_account_id = updated.from_account_id
        record.from_pot_name = updated.from_pot_name
        record.to_account_id = updated.to_account_id
        record.to_pot_name = updated.to_pot_name
        record.linked_credit_account_id = updated.linked_credit_account_id

    state.transfer_schedules = [
        updated if s.id == schedule_id else s for s in state.transfer_schedules
    ]
    return updated


def delete_transfer_schedule(state: LedgerState, schedule_id: int) -> TransferSchedule:
    schedule = require_transfer_schedule(state, schedule_id)
    state.transfer_schedules = [s for s in state.transfer_schedules if s.id != schedule_id]
    return schedule


def record_transfer_execution(state: LedgerState, executed_at: datetime) -> None:
    """
    Stamp the ledger-wide transfer time. Funding a new cycle also clears the
    completion flag of every scheduled payment.
    """
    latest = state.last_transfer_execution_at
    if latest is None or executed_at >= latest:
        state.last_transfer_execution_at = executed_at
    for _, _, payment in state.iter_scheduled_payments():
        payment.is_completed = False


def execute_transfer_schedule(
    state: LedgerState,
    schedule_id: int,
    executed_at: datetime,
) -> TransferSchedule:
    """
    Execute one transfer schedule.

    Both endpoints are resolved before any balance changes. The source is
    debited first and must hold at least the amount.

    Raises:
        NotFoundError: If the schedule, an account or a named pot does not exist
        InvalidOperationError: If the schedule is inactive, already completed,
            or the source has insufficient funds
    """
    schedule = require_transfer_schedule(state, schedule_id)
    if not schedule.is_active:
        raise InvalidOperationError(f"Transfer schedule #{schedule_id} is inactive")
    if schedule.is_completed and not schedule.is_credit_linked:
        raise InvalidOperationError(
            f"Transfer schedule #{schedule_id} has already been executed; "
            "reset balances to run it again"
        )

    source = resolve_endpoint(state, schedule.from_account_id, schedule.from_pot_name)
    destination = resolve_endpoint(state, schedule.to_account_id, schedule.to_pot_name)
    move(source, destination, schedule.amount)

    if schedule.is_credit_linked:
        record = _payment_record(state, schedule)
        record.events.append(TransactionEvent(executed_at=executed_at, amount=schedule.amount))
    else:
        schedule.is_completed = True

    schedule.last_executed = executed_at
    record_transfer_execution(state, executed_at)

    logger.debug(
        "transfer_executed",
        schedule_id=schedule_id,
        source=source.describe(),
        destination=destination.describe(),
        amount=str(schedule.amount),
    )
    return schedule


def execute_all_transfer_schedules(state: LedgerState, executed_at: datetime) -> BatchExecutionResult:
    """
    Execute every active, not-completed schedule with one shared run
    timestamp. A schedule that fails (e.g. insufficient funds) is skipped.
    """
    result = BatchExecutionResult()
    for schedule in list(state.transfer_schedules):
        if not schedule.is_pending:
            continue
        try:
            execute_transfer_schedule(state, schedule.id, executed_at)
        except LedgerError as e:
            logger.warning("transfer_schedule_skipped", schedule_id=schedule.id, reason=str(e))
            result.failures[schedule.id] = str(e)
            continue
        result.executed_ids.append(schedule.id)
        result.executed_count += 1
    return result
