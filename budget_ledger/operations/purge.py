"""
Execution Purge

Removes past execution occurrences, by time window or by exact run
timestamp. It covers TransactionEvents, IncomeSchedule events and processed
log rows.

DESIGN DECISION: Purge undoes bookkeeping, not money. Balances are never
touched. What changes is completion state, wherever removing events leaves
an item with no history:
- a yearly TransactionRecord becomes ready to fire again
- transfer schedules linked to an emptied record are detached
- an IncomeSchedule loses is_completed and last_executed
- a ScheduledPayment with no remaining processed logs loses both too
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from budget_ledger.models.dates import ensure_aware
from budget_ledger.models.ledger import (
    ExecutionPurgeSummary,
    ProcessedItemSource,
    TransactionEvent,
    TransactionKind,
)
from budget_ledger.models.state import LedgerState


logger = structlog.get_logger(__name__)


def _split(
    events: list[TransactionEvent],
    matches: Callable[[datetime], bool],
) -> tuple[list[TransactionEvent], list[TransactionEvent]]:
    kept, removed = [], []
    for event in events:
        (removed if matches(event.executed_at) else kept).append(event)
    return kept, removed


def _purge(state: LedgerState, matches: Callable[[datetime], bool]) -> ExecutionPurgeSummary:
    summary = ExecutionPurgeSummary()
    runs: set[datetime] = set()

    emptied_records: set[int] = set()
    for record in state.transactions:
        kept, removed = _split(record.events, matches)
        if not removed:
            continue
        record.events = kept
        summary.transaction_events_removed += len(removed)
        runs.update(event.executed_at for event in removed)
        if not kept:
            emptied_records.add(record.id)
            if record.kind is TransactionKind.YEARLY:
                record.is_completed = False

    for schedule in state.transfer_schedules:
        if schedule.linked_transaction_id in emptied_records:
            schedule.linked_transaction_id = None

    for schedule in state.income_schedules:
        kept, removed = _split(schedule.events, matches)
        if not removed:
            continue
        schedule.events = kept
        summary.income_events_removed += len(removed)
        runs.update(event.executed_at for event in removed)
        if not kept:
            schedule.is_completed = False
            schedule.last_executed = None

    kept_logs, touched_payments = [], set()
    for log in state.processed_transactions:
        if matches(log.processed_at):
            summary.processed_logs_removed += 1
            runs.add(log.processed_at)
            if log.source is ProcessedItemSource.SCHEDULED_PAYMENT:
                touched_payments.add(log.payment_id)
        else:
            kept_logs.append(log)
    state.processed_transactions = kept_logs

    still_logged = {
        log.payment_id for log in kept_logs
        if log.source is ProcessedItemSource.SCHEDULED_PAYMENT
    }
    for _, _, payment in state.iter_scheduled_payments():
        if payment.id in touched_payments and payment.id not in still_logged:
            payment.is_completed = False
            payment.last_executed = None

    summary.run_timestamps = sorted(runs)
    logger.info(
        "executions_purged",
        runs=summary.total_runs_affected,
        executions=summary.total_executions_removed,
        processed_logs=summary.processed_logs_removed,
    )
    return summary


def purge_executions(state: LedgerState, start: datetime, end: datetime) -> ExecutionPurgeSummary:
    """Purge every execution with start <= timestamp <= end."""
    start, end = ensure_aware(start), ensure_aware(end)
    return _purge(state, lambda moment: start <= moment <= end)


def purge_execution_run(state: LedgerState, run_timestamp: datetime) -> ExecutionPurgeSummary:
    """Purge the executions of one run, matched on the exact timestamp."""
    run_timestamp = ensure_aware(run_timestamp)
    return _purge(state, lambda moment: moment == run_timestamp)
