"""
Monthly Balance Reduction

Models spending accounts as depleting linearly to zero across the month.

The first application in a month captures each account's balance as that
month's baseline. Every application then sets

    balance = round_half_up(baseline * (days_in_month - day) / (days_in_month - 1), 2)

so the balance equals the baseline on the 1st and zero on the last day.
Results under half a penny snap to exactly zero.

DESIGN DECISION: The balance is always recomputed from the baseline, never
from the current balance, so applying twice on the same day gives the same
result. Credit accounts and accounts excluded from reset are left alone.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog

from budget_ledger.models.dates import days_in_month, period_key
from budget_ledger.models.ledger import BalanceReductionLog
from budget_ledger.models.state import LedgerState


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
SNAP_THRESHOLD = Decimal("0.005")


def reduction_factor(day: int, month_length: int) -> Decimal:
    """Fraction of the baseline left on `day` of a month with `month_length` days."""
    if month_length <= 1:
        return Decimal("0")
    remaining_days = month_length - day
    return Decimal(remaining_days) / Decimal(month_length - 1)


def reduce_balance(baseline: Decimal, factor: Decimal) -> Decimal:
    adjusted = (baseline * factor).quantize(CENT, rounding=ROUND_HALF_UP)
    if abs(adjusted) < SNAP_THRESHOLD:
        return Decimal("0.00")
    return adjusted


def apply_monthly_reduction(
    state: LedgerState,
    as_of: datetime,
    retention: int = 500,
) -> list[BalanceReductionLog]:
    """
    Reduce every eligible account for the day of `as_of`.

    Only the most recent `retention` logs are kept.
    """
    month_key = period_key(as_of)
    factor = reduction_factor(as_of.day, days_in_month(as_of.year, as_of.month))

    logs: list[BalanceReductionLog] = []
    for account in state.accounts:
        if account.is_credit or account.exclude_from_reset:
            continue

        if account.monthly_baseline_month != month_key or account.monthly_baseline_balance is None:
            account.monthly_baseline_balance = account.balance
            account.monthly_baseline_month = month_key
            logger.debug("reduction_baseline_captured", account_id=account.id, month=month_key)

        baseline = account.monthly_baseline_balance
        adjusted = reduce_balance(baseline, factor)
        account.balance = adjusted

        logs.append(BalanceReductionLog(
            id=state.allocate_id("reduction_log"),
            timestamp=as_of,
            month_key=month_key,
            day_of_month=as_of.day,
            account_id=account.id,
            account_name=account.name,
            baseline_balance=baseline,
            resulting_balance=adjusted,
            reduction_amount=baseline - adjusted,
        ))

    state.balance_reduction_logs.extend(logs)
    if len(state.balance_reduction_logs) > retention:
        state.balance_reduction_logs = state.balance_reduction_logs[-retention:]
    return logs
