"""
Scheduled Transaction Processor

Applies every recurring item whose due date has arrived, exactly once per
calendar period.

Items come from two places:
- TransactionRecords of kind scheduled, credit_card_charge and yearly
- ScheduledPayments attached to accounts and pots

DESIGN DECISION: Processing is gated on funding. While any transfer
schedule is active, nothing is processed in a month until a transfer has
run in that month, and the effective day is never earlier than the day the
transfers ran. A bill is never paid out of a pot before the pot is funded.

Idempotency is layered. A (source, id, period) row in the processed log
blocks a second firing. So does an event in the period on the record, or a
last_executed in the period on the scheduled payment. Yearly records rely on
their is_completed flag instead, which mark-ready resets.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import structlog

from budget_ledger.models.dates import (
    ScheduleDate,
    YearlyDate,
    clamp_to_month,
    in_reference_zone,
    period_key,
    same_period,
)
from budget_ledger.models.ledger import (
    ProcessedItemSource,
    ProcessedTransactionLog,
    ProcessedTransactionSkip,
    ProcessTransactionsResult,
    ScheduledPayment,
    TransactionEvent,
    TransactionKind,
    TransactionRecord,
)
from budget_ledger.models.state import LedgerState
from budget_ledger.operations.balances import Endpoint


logger = structlog.get_logger(__name__)

TRANSFER_GATE_REASON = (
    "Transfers have not been executed this month; "
    "execute transfer schedules before processing scheduled transactions"
)


@dataclass
class ScheduledItem:
    """A record or scheduled payment, viewed uniformly for processing."""
    source: ProcessedItemSource
    item_id: int
    name: str
    company: str
    payment_type: Optional[str]
    amount: Decimal
    raw_date: str
    schedule: Optional[ScheduleDate]
    account_id: int
    pot_name: Optional[str]
    linked_credit_account_id: Optional[int] = None
    yearly: bool = False
    record: Optional[TransactionRecord] = None
    payment: Optional[ScheduledPayment] = None

    @property
    def key(self) -> tuple[ProcessedItemSource, int]:
        return self.source, self.item_id

    def skip(self, reason: str) -> ProcessedTransactionSkip:
        return ProcessedTransactionSkip(
            payment_id=self.item_id,
            source=self.source,
            account_id=self.account_id,
            pot_name=self.pot_name,
            reason=reason,
        )


def collect_items(state: LedgerState) -> list[ScheduledItem]:
    items: list[ScheduledItem] = []
    for record in state.transactions:
        if not record.kind.is_processable:
            continue
        items.append(ScheduledItem(
            source=ProcessedItemSource.TRANSACTION,
            item_id=record.id,
            name=record.name,
            company=record.vendor,
            payment_type=record.payment_type,
            amount=record.amount,
            raw_date=(record.yearly_date or record.date) if record.kind is TransactionKind.YEARLY else record.date,
            schedule=record.schedule,
            account_id=record.to_account_id,
            pot_name=record.to_pot_name or None,
            linked_credit_account_id=record.linked_credit_account_id,
            yearly=record.kind is TransactionKind.YEARLY,
            record=record,
        ))
    for account, pot, payment in state.iter_scheduled_payments():
        items.append(ScheduledItem(
            source=ProcessedItemSource.SCHEDULED_PAYMENT,
            item_id=payment.id,
            name=payment.name,
            company=payment.company,
            payment_type=payment.type,
            amount=payment.amount,
            raw_date=payment.date,
            schedule=payment.schedule,
            account_id=account.id,
            pot_name=pot.name if pot is not None else None,
            payment=payment,
        ))
    return items


def effective_day(state: LedgerState, as_of: datetime) -> tuple[int, Optional[datetime]]:
    """
    The day of month used for due-date comparisons, and the transfer time
    that pushed it (None when transfers did not run this month).
    """
    transfer_at = state.latest_transfer_execution()
    if transfer_at is None or not same_period(transfer_at, as_of):
        return as_of.day, None
    return max(as_of.day, in_reference_zone(transfer_at, as_of).day), transfer_at


def _fired_this_period(item: ScheduledItem, as_of: datetime, processed_keys: set) -> bool:
    if item.key in processed_keys:
        return True
    if item.record is not None:
        return any(same_period(event.executed_at, as_of) for event in item.record.events)
    if item.payment is not None and item.payment.last_executed is not None:
        return same_period(item.payment.last_executed, as_of)
    return False


def _due_date(item: ScheduledItem, as_of: datetime) -> date:
    return clamp_to_month(as_of.year, as_of.month, item.schedule.day_of_month)


def _resolve(state: LedgerState, item: ScheduledItem) -> tuple[Optional[Endpoint], Optional[Endpoint], Optional[str]]:
    """Target and linked credit endpoints, or a skip reason."""
    account = state.find_account(item.account_id)
    if account is None:
        return None, None, f"Account #{item.account_id} not found"
    pot = None
    if item.pot_name:
        pot = account.find_pot(item.pot_name)
        if pot is None:
            return None, None, f"Pot '{item.pot_name}' not found on account #{account.id}"
    linked = None
    if item.linked_credit_account_id is not None:
        credit_account = state.find_account(item.linked_credit_account_id)
        if credit_account is None:
            return None, None, f"Linked credit account #{item.linked_credit_account_id} not found"
        linked = Endpoint(credit_account, None)
    return Endpoint(account, pot), linked, None


def _apply(
    state: LedgerState,
    item: ScheduledItem,
    target: Endpoint,
    linked: Optional[Endpoint],
    due: date,
    as_of: datetime,
    period: str,
    manual: bool,
) -> ProcessedTransactionLog:
    target.adjust(-item.amount)
    if linked is not None:
        linked.adjust(-item.amount)

    if item.record is not None:
        item.record.events.append(TransactionEvent(executed_at=as_of, amount=item.amount))
        if item.yearly:
            item.record.is_completed = True
    if item.payment is not None:
        item.payment.last_executed = as_of
        item.payment.is_completed = True

    log = ProcessedTransactionLog(
        id=state.allocate_id("processed_log"),
        payment_id=item.item_id,
        source=item.source,
        account_id=item.account_id,
        pot_name=item.pot_name,
        amount=item.amount,
        day=due.day,
        name=item.name,
        company=item.company,
        payment_type=item.payment_type,
        processed_at=as_of,
        period=period,
        was_manual=manual,
    )
    state.processed_transactions.append(log)
    return log


def _yearly_still_to_come(item: ScheduledItem, as_of: datetime, processed_keys: set) -> bool:
    """A yearly record in its own month whose day is still ahead."""
    if item.record.is_completed or item.key in processed_keys:
        return False
    return item.schedule.day > as_of.day


def reconcile_pots(
    state: LedgerState,
    items: list[ScheduledItem],
    as_of: datetime,
    effective_date: date,
    processed_keys: set,
) -> bool:
    """
    Set every pot that scheduled items draw from to the total of its items
    still to come this month. Pots without such items are untouched.

    A yearly record only counts towards its pot in its own month. It fires
    on its exact day, so it is reserved until that day.

    Returns True when any pot balance changed.
    """
    reserved: dict[tuple[int, str], Decimal] = {}
    for item in items:
        if not item.pot_name:
            continue
        if item.yearly and not (
            isinstance(item.schedule, YearlyDate) and item.schedule.month == as_of.month
        ):
            continue
        key = (item.account_id, item.pot_name.casefold())
        reserved.setdefault(key, Decimal("0"))
        if item.schedule is None or item.amount <= 0:
            continue
        if item.yearly:
            if _yearly_still_to_come(item, as_of, processed_keys):
                reserved[key] += item.amount
            continue
        if _due_date(item, as_of) <= effective_date:
            continue
        if _fired_this_period(item, as_of, processed_keys):
            continue
        reserved[key] += item.amount

    changed = False
    for (account_id, pot_key), amount in reserved.items():
        account = state.find_account(account_id)
        pot = account.find_pot(pot_key) if account is not None else None
        if pot is None or pot.balance == amount:
            continue
        logger.info(
            "pot_reconciled",
            account_id=account_id,
            pot_name=pot.name,
            previous_balance=str(pot.balance),
            reserved=str(amount),
        )
        pot.balance = amount
        changed = True
    return changed


def process_scheduled_transactions(
    state: LedgerState,
    as_of: datetime,
    manual: bool = False,
    require_transfer_execution: bool = True,
) -> tuple[ProcessTransactionsResult, bool]:
    """
    Apply every due, unprocessed item for the period containing `as_of`.

    Returns the result and whether the state changed (and needs saving).
    Nothing changes when the transfer gate blocks the run.
    """
    period = period_key(as_of)

    gate_applies = require_transfer_execution and any(s.is_active for s in state.transfer_schedules)
    if gate_applies and not state.has_transfer_execution(as_of):
        logger.info("scheduled_processing_blocked", period=period)
        return ProcessTransactionsResult(
            effective_day=as_of.day,
            blocked_reason=TRANSFER_GATE_REASON,
        ), False

    day, transfer_at = effective_day(state, as_of)
    effective_date = date(as_of.year, as_of.month, day)
    result = ProcessTransactionsResult(effective_day=day, transfer_executed_at=transfer_at)

    processed_keys = {
        (log.source, log.payment_id)
        for log in state.processed_transactions
        if log.period == period
    }
    items = collect_items(state)

    due: list[tuple[date, ScheduledItem]] = []
    for item in items:
        if item.schedule is None:
            result.skipped.append(item.skip(f"Unrecognised date '{item.raw_date}'"))
            continue
        if item.yearly:
            if item.record.is_completed or not isinstance(item.schedule, YearlyDate):
                continue
            if not item.schedule.matches(as_of.date()) or item.key in processed_keys:
                continue
            due.append((as_of.date(), item))
            continue
        due_date = _due_date(item, as_of)
        if due_date > effective_date or _fired_this_period(item, as_of, processed_keys):
            continue
        due.append((due_date, item))

    due.sort(key=lambda entry: (entry[0], entry[1].source != ProcessedItemSource.TRANSACTION, entry[1].item_id))

    for due_date, item in due:
        if item.amount <= 0:
            result.skipped.append(item.skip(f"Non-positive amount {item.amount}"))
            continue
        target, linked, reason = _resolve(state, item)
        if reason is not None:
            result.skipped.append(item.skip(reason))
            continue
        log = _apply(state, item, target, linked, due_date, as_of, period, manual)
        processed_keys.add(item.key)
        result.processed.append(log)

    reconciled = reconcile_pots(state, items, as_of, effective_date, processed_keys)

    logger.info(
        "scheduled_processing_finished",
        period=period,
        effective_day=day,
        processed=len(result.processed),
        skipped=len(result.skipped),
    )
    return result, bool(result.processed) or reconciled
