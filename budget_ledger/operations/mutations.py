"""
Mutation Engine

Invariant-preserving create/update/delete over the ledger's entities, with
balance side effects applied in the same call as the entity write.

Every function here takes the LedgerState it mutates and returns the
affected entity. Locking, persistence and audit logging belong to the
engine that calls them.

DESIGN DECISION: Ad hoc incomes post to the balance immediately, the same
way expenses do. Updating an income or expense reverses the old effect
before applying the new one, and deleting one reverses its effect.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from budget_ledger.errors import InvalidOperationError, LedgerError, NotFoundError
from budget_ledger.models.ledger import (
    SAVINGS_ACCOUNT_TYPES,
    Account,
    BatchExecutionResult,
    Expense,
    Income,
    IncomeSchedule,
    Pot,
    ScheduledPayment,
    TargetRecord,
    TransactionEvent,
    TransactionKind,
    TransactionRecord,
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
)
from budget_ledger.operations.balances import (
    credit,
    effect_legs,
    find_endpoint,
    require_account,
    require_pot,
    resolve_endpoint,
    reverse_record_effects,
)


logger = structlog.get_logger(__name__)


def _same_name(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "").casefold() == (right or "").casefold()


# =============================================================================
# ACCOUNTS
# =============================================================================

def add_account(state: LedgerState, submission: AccountSubmission) -> Account:
    account = Account(
        id=state.allocate_id("account"),
        name=submission.name,
        balance=submission.balance,
        type=submission.type,
        account_type=submission.account_type,
        credit_limit=submission.credit_limit,
        exclude_from_reset=bool(submission.exclude_from_reset),
    )
    state.accounts.append(account)
    return account


def update_account(
    state: LedgerState,
    account_id: int,
    submission: AccountSubmission,
) -> Account:
    """
    Replace an account's descriptive fields and balance.

    Pots, scheduled payments, incomes and expenses are kept. Omitted
    credit_limit and exclude_from_reset keep their current values.
    """
    account = require_account(state, account_id)
    account.name = submission.name
    account.balance = submission.balance
    account.type = submission.type
    account.account_type = submission.account_type
    if submission.credit_limit is not None:
        account.credit_limit = submission.credit_limit
    if submission.exclude_from_reset is not None:
        account.exclude_from_reset = submission.exclude_from_reset
    return account


def delete_account(state: LedgerState, account_id: int) -> Account:
    """
    Delete an account and everything that depends on it.

    Every TransactionRecord referencing the account (as source, destination
    or linked credit account) has its event effects reversed and is removed.
    Income schedules, transfer schedules and targets for the account go too.
    """
    account = require_account(state, account_id)

    related = [record for record in state.transactions if record.references_account(account_id)]
    for record in related:
        reverse_record_effects(state, record)
    removed_ids = {record.id for record in related}

    state.transactions = [r for r in state.transactions if r.id not in removed_ids]
    state.accounts = [a for a in state.accounts if a.id != account_id]
    state.income_schedules = [s for s in state.income_schedules if s.account_id != account_id]
    state.transfer_schedules = [
        s for s in state.transfer_schedules if not s.references_account(account_id)
    ]
    state.targets = [t for t in state.targets if t.account_id != account_id]

    for schedule in state.transfer_schedules:
        if schedule.linked_transaction_id in removed_ids:
            schedule.linked_transaction_id = None

    logger.info(
        "account_deleted",
        account_id=account_id,
        transactions_reversed=len(removed_ids),
    )
    return account


def reorder_accounts(state: LedgerState, account_ids: list[int]) -> list[Account]:
    """Listed accounts first, in the given order; the rest keep their order."""
    by_id = {account.id: account for account in state.accounts}
    ordered: list[Account] = []
    for account_id in account_ids:
        account = by_id.pop(account_id, None)
        if account is not None:
            ordered.append(account)
    state.accounts = ordered + [a for a in state.accounts if a.id in by_id]
    return state.accounts


def toggle_account_exclusion(state: LedgerState, account_id: int) -> bool:
    account = require_account(state, account_id)
    account.exclude_from_reset = not account.exclude_from_reset
    return account.exclude_from_reset


def savings_and_investments(state: LedgerState) -> list[Account]:
    return [
        account for account in state.accounts
        if account.type.lower() in SAVINGS_ACCOUNT_TYPES
        or (account.account_type or "").lower() == "investment"
    ]


# =============================================================================
# POTS
# =============================================================================

def _ensure_unique_pot_name(account: Account, name: str, ignore_pot_id: Optional[int] = None) -> None:
    for pot in account.pots:
        if pot.id != ignore_pot_id and _same_name(pot.name, name):
            raise InvalidOperationError(
                f"A pot named '{pot.name}' already exists on account #{account.id}"
            )


def _find_pot_by_id(account: Account, pot_id: int) -> Pot:
    for pot in account.pots:
        if pot.id == pot_id:
            return pot
    raise NotFoundError(f"Pot #{pot_id} not found on account #{account.id}")


def _rename_pot_references(state: LedgerState, account_id: int, old: str, new: str) -> None:
    """Point records, schedules and attributions at a renamed pot."""
    for record in state.transactions:
        if record.to_account_id == account_id and _same_name(record.to_pot_name, old):
            record.to_pot_name = new
        if record.from_account_id == account_id and _same_name(record.from_pot_name, old):
            record.from_pot_name = new
    for schedule in state.transfer_schedules:
        if schedule.to_account_id == account_id and _same_name(schedule.to_pot_name, old):
            schedule.to_pot_name = new
        if schedule.from_account_id == account_id and _same_name(schedule.from_pot_name, old):
            schedule.from_pot_name = new
    for account in state.accounts:
        for expense in account.expenses:
            if expense.to_account_id == account_id and _same_name(expense.to_pot_name, old):
                expense.to_pot_name = new
        if account.id == account_id:
            for income in account.incomes:
                if _same_name(income.pot_name, old):
                    income.pot_name = new


def add_pot(state: LedgerState, account_id: int, submission: PotSubmission) -> Pot:
    """
    Raises:
        NotFoundError: If the account does not exist
        InvalidOperationError: If the account already has a pot of that name,
            compared case-insensitively
    """
    account = require_account(state, account_id)
    _ensure_unique_pot_name(account, submission.name)
    pot = Pot(
        id=state.allocate_id("pot"),
        name=submission.name,
        balance=submission.balance,
        exclude_from_reset=bool(submission.exclude_from_reset),
    )
    account.pots.append(pot)
    return pot


def update_pot(
    state: LedgerState,
    account_id: int,
    pot_id: int,
    submission: PotSubmission,
) -> Pot:
    account = require_account(state, account_id)
    pot = _find_pot_by_id(account, pot_id)
    _ensure_unique_pot_name(account, submission.name, ignore_pot_id=pot_id)

    if pot.name != submission.name:
        _rename_pot_references(state, account_id, pot.name, submission.name)
    pot.name = submission.name
    pot.balance = submission.balance
    if submission.exclude_from_reset is not None:
        pot.exclude_from_reset = submission.exclude_from_reset
    return pot


def delete_pot(state: LedgerState, account_id: int, pot_id: int) -> Pot:
    account = require_account(state, account_id)
    pot = _find_pot_by_id(account, pot_id)
    account.pots = [p for p in account.pots if p.id != pot_id]
    return pot


def toggle_pot_exclusion(state: LedgerState, account_id: int, pot_name: str) -> bool:
    pot = require_pot(require_account(state, account_id), pot_name)
    pot.exclude_from_reset = not pot.exclude_from_reset
    return pot.exclude_from_reset


# =============================================================================
# INCOMES AND EXPENSES
# =============================================================================

def _find_income(account: Account, income_id: int) -> Income:
    for income in account.incomes:
        if income.id == income_id:
            return income
    raise NotFoundError(f"Income #{income_id} not found on account #{account.id}")


def _find_expense(account: Account, expense_id: int) -> Expense:
    for expense in account.expenses:
        if expense.id == expense_id:
            return expense
    raise NotFoundError(f"Expense #{expense_id} not found on account #{account.id}")


def _reverse_income(state: LedgerState, account_id: int, income: Income) -> None:
    endpoint = find_endpoint(state, account_id, income.pot_name)
    if endpoint is None:
        logger.warning("income_pot_missing", income_id=income.id, pot_name=income.pot_name)
        return
    endpoint.adjust(-income.amount)


def add_income(state: LedgerState, account_id: int, submission: IncomeSubmission) -> Income:
    """Record an income and credit the named pot, or the account balance."""
    account = require_account(state, account_id)
    endpoint = resolve_endpoint(state, account_id, submission.pot_name)
    income = Income(id=state.allocate_id("income"), **submission.model_dump())
    credit(endpoint, income.amount)
    account.incomes.append(income)
    return income


def update_income(
    state: LedgerState,
    account_id: int,
    income_id: int,
    submission: IncomeSubmission,
) -> Income:
    account = require_account(state, account_id)
    old = _find_income(account, income_id)
    endpoint = resolve_endpoint(state, account_id, submission.pot_name)

    _reverse_income(state, account_id, old)
    updated = Income(id=income_id, **submission.model_dump())
    credit(endpoint, updated.amount)
    account.incomes = [updated if i.id == income_id else i for i in account.incomes]
    return updated


def delete_income(state: LedgerState, account_id: int, income_id: int) -> Income:
    account = require_account(state, account_id)
    income = _find_income(account, income_id)
    _reverse_income(state, account_id, income)
    account.incomes = [i for i in account.incomes if i.id != income_id]
    return income


def add_expense(state: LedgerState, account_id: int, submission: ExpenseSubmission) -> Expense:
    """Record an expense and take it off the owning account's main balance."""
    account = require_account(state, account_id)
    expense = Expense(id=state.allocate_id("expense"), **submission.model_dump())
    account.balance -= expense.amount
    account.expenses.append(expense)
    return expense


def update_expense(
    state: LedgerState,
    account_id: int,
    expense_id: int,
    submission: ExpenseSubmission,
) -> Expense:
    account = require_account(state, account_id)
    old = _find_expense(account, expense_id)
    updated = Expense(id=expense_id, **submission.model_dump())
    account.balance += old.amount - updated.amount
    account.expenses = [updated if e.id == expense_id else e for e in account.expenses]
    return updated


def delete_expense(state: LedgerState, account_id: int, expense_id: int) -> Expense:
    account = require_account(state, account_id)
    expense = _find_expense(account, expense_id)
    account.balance += expense.amount
    account.expenses = [e for e in account.expenses if e.id != expense_id]
    return expense


# =============================================================================
# TRANSACTIONS
# =============================================================================

def require_transaction(state: LedgerState, transaction_id: int) -> TransactionRecord:
    record = state.find_transaction(transaction_id)
    if record is None:
        raise NotFoundError(f"Transaction #{transaction_id} not found")
    return record


def _validate_transaction_references(state: LedgerState, submission: TransactionSubmission) -> None:
    resolve_endpoint(state, submission.to_account_id, submission.to_pot_name)
    if submission.from_account_id is not None:
        resolve_endpoint(state, submission.from_account_id, submission.from_pot_name)
    if submission.linked_credit_account_id is not None:
        require_account(state, submission.linked_credit_account_id)


def add_transaction(state: LedgerState, submission: TransactionSubmission) -> TransactionRecord:
    """
    Add a TransactionRecord. Nothing is debited here: recurring kinds fire
    through scheduled processing.

    Raises:
        NotFoundError: If a referenced account or pot does not exist
    """
    _validate_transaction_references(state, submission)
    record = TransactionRecord(id=state.allocate_id("transaction"), **submission.model_dump())
    state.transactions.append(record)
    return record


def _leg_keys(record: TransactionRecord) -> list[tuple]:
    return [
        (leg.account_id, (leg.pot_name or "").casefold(), leg.sign)
        for leg in effect_legs(record)
    ]


def update_transaction(
    state: LedgerState,
    transaction_id: int,
    submission: TransactionSubmission,
) -> TransactionRecord:
    """
    Replace a record's descriptive fields, keeping its id and event history.

    Raises:
        InvalidOperationError: If the record has events and the update would
            change which balances those events moved
    """
    existing = require_transaction(state, transaction_id)
    _validate_transaction_references(state, submission)
    updated = TransactionRecord(
        id=existing.id,
        events=existing.events,
        is_completed=existing.is_completed,
        **submission.model_dump(),
    )
    if existing.events and _leg_keys(updated) != _leg_keys(existing):
        raise InvalidOperationError(
            f"Transaction #{transaction_id} has executed events; its accounts, pots "
            "and kind cannot change until those executions are purged"
        )
    state.transactions = [
        updated if record.id == transaction_id else record for record in state.transactions
    ]
    return updated


def delete_transaction(state: LedgerState, transaction_id: int) -> TransactionRecord:
    """Reverse the record's event effects, remove it and detach schedules linked to it."""
    record = require_transaction(state, transaction_id)
    reverse_record_effects(state, record)
    state.transactions = [r for r in state.transactions if r.id != transaction_id]
    for schedule in state.transfer_schedules:
        if schedule.linked_transaction_id == transaction_id:
            schedule.linked_transaction_id = None
    return record


def mark_yearly_transaction_ready(state: LedgerState, transaction_id: int) -> TransactionRecord:
    """Let a fired yearly record fire again on its next anniversary."""
    record = require_transaction(state, transaction_id)
    if record.kind is not TransactionKind.YEARLY:
        raise InvalidOperationError(
            f"Transaction #{transaction_id} is not a yearly transaction"
        )
    record.is_completed = False
    return record


# =============================================================================
# TARGETS
# =============================================================================

def _require_target(state: LedgerState, target_id: int) -> TargetRecord:
    for target in state.targets:
        if target.id == target_id:
            return target
    raise NotFoundError(f"Target #{target_id} not found")


def add_target(state: LedgerState, submission: TargetSubmission) -> TargetRecord:
    require_account(state, submission.account_id)
    target = TargetRecord(id=state.allocate_id("target"), **submission.model_dump())
    state.targets.append(target)
    return target


def update_target(state: LedgerState, target_id: int, submission: TargetSubmission) -> TargetRecord:
    _require_target(state, target_id)
    require_account(state, submission.account_id)
    updated = TargetRecord(id=target_id, **submission.model_dump())
    state.targets = [updated if t.id == target_id else t for t in state.targets]
    return updated


def delete_target(state: LedgerState, target_id: int) -> TargetRecord:
    target = _require_target(state, target_id)
    state.targets = [t for t in state.targets if t.id != target_id]
    return target


# =============================================================================
# SCHEDULED PAYMENTS
# =============================================================================

def _payment_container(account: Account, pot_name: Optional[str]) -> list[ScheduledPayment]:
    if pot_name:
        return require_pot(account, pot_name).scheduled_payments
    return account.scheduled_payments


def _locate_scheduled_payment(
    account: Account,
    payment_id: int,
) -> tuple[list[ScheduledPayment], ScheduledPayment]:
    containers = [account.scheduled_payments] + [pot.scheduled_payments for pot in account.pots]
    for container in containers:
        for payment in container:
            if payment.id == payment_id:
                return container, payment
    raise NotFoundError(f"Scheduled payment #{payment_id} not found on account #{account.id}")


def add_scheduled_payment(
    state: LedgerState,
    account_id: int,
    submission: ScheduledPaymentSubmission,
    pot_name: Optional[str] = None,
) -> ScheduledPayment:
    """Attach a scheduled payment to an account, or to one of its pots."""
    container = _payment_container(require_account(state, account_id), pot_name)
    payment = ScheduledPayment(
        id=state.allocate_id("scheduled_payment"),
        **submission.model_dump(),
    )
    container.append(payment)
    return payment


def update_scheduled_payment(
    state: LedgerState,
    account_id: int,
    payment_id: int,
    submission: ScheduledPaymentSubmission,
    pot_name: Optional[str] = None,
) -> ScheduledPayment:
    """
    Replace a scheduled payment's fields.

    `pot_name` says where the payment should live afterwards; passing a
    different pot (or None for the account itself) moves it.
    """
    account = require_account(state, account_id)
    source, existing = _locate_scheduled_payment(account, payment_id)
    target = _payment_container(account, pot_name)

    updated = ScheduledPayment(
        id=payment_id,
        is_completed=existing.is_completed,
        last_executed=existing.last_executed,
        **submission.model_dump(),
    )
    if source is target:
        source[source.index(existing)] = updated
    else:
        source.remove(existing)
        target.append(updated)
    return updated


def delete_scheduled_payment(
    state: LedgerState,
    account_id: int,
    payment_id: int,
) -> ScheduledPayment:
    container, payment = _locate_scheduled_payment(require_account(state, account_id), payment_id)
    container.remove(payment)
    return payment


# =============================================================================
# INCOME SCHEDULES
# =============================================================================

def require_income_schedule(state: LedgerState, schedule_id: int) -> IncomeSchedule:
    schedule = state.find_income_schedule(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Income schedule #{schedule_id} not found")
    return schedule


def add_income_schedule(state: LedgerState, submission: IncomeScheduleSubmission) -> IncomeSchedule:
    require_account(state, submission.account_id)
    schedule = IncomeSchedule(
        id=state.allocate_id("income_schedule"),
        **submission.model_dump(),
    )
    state.income_schedules.append(schedule)
    return schedule


def delete_income_schedule(state: LedgerState, schedule_id: int) -> IncomeSchedule:
    schedule = require_income_schedule(state, schedule_id)
    state.income_schedules = [s for s in state.income_schedules if s.id != schedule_id]
    return schedule


def execute_income_schedule(
    state: LedgerState,
    schedule_id: int,
    executed_at: datetime,
) -> IncomeSchedule:
    """
    Pay an income schedule into its account.

    Raises:
        NotFoundError: If the schedule or its account does not exist
        InvalidOperationError: If the schedule is inactive
    """
    schedule = require_income_schedule(state, schedule_id)
    if not schedule.is_active:
        raise InvalidOperationError(f"Income schedule #{schedule_id} is inactive")

    account = require_account(state, schedule.account_id)
    account.balance += schedule.amount
    schedule.events.append(TransactionEvent(executed_at=executed_at, amount=schedule.amount))
    schedule.is_completed = True
    schedule.last_executed = executed_at
    return schedule


def execute_all_income_schedules(state: LedgerState, executed_at: datetime) -> BatchExecutionResult:
    """Execute every active, not-completed income schedule; failures are skipped."""
    result = BatchExecutionResult()
    for schedule in list(state.income_schedules):
        if not schedule.is_active or schedule.is_completed:
            continue
        try:
            execute_income_schedule(state, schedule.id, executed_at)
        except LedgerError as e:
            logger.warning("income_schedule_skipped", schedule_id=schedule.id, reason=str(e))
            result.failures[schedule.id] = str(e)
            continue
        result.executed_ids.append(schedule.id)
        result.executed_count += 1
    return result


# =============================================================================
# BALANCE RESET
# =============================================================================

def reset_balances(state: LedgerState, reset_at: datetime) -> None:
    """
    Zero every account and pot balance not flagged exclude_from_reset, and
    make every income and transfer schedule executable again.
    """
    zero = Decimal("0")
    for account in state.accounts:
        if not account.exclude_from_reset:
            account.balance = zero
        for pot in account.pots:
            if not pot.exclude_from_reset:
                pot.balance = zero

    for income_schedule in state.income_schedules:
        income_schedule.is_completed = False
        income_schedule.last_executed = None
    for transfer_schedule in state.transfer_schedules:
        transfer_schedule.is_completed = False
        transfer_schedule.last_executed = None

    state.last_reset_at = reset_at
