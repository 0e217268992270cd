"""
Shared fixtures.

Engines run against in-memory storage with a clock the test controls.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from budget_ledger.config import LedgerSettings
from budget_ledger.models.state import LedgerState
from budget_ledger.models.submissions import AccountSubmission, PotSubmission
from budget_ledger.operations import mutations
from budget_ledger.orchestrator import LedgerEngine
from budget_ledger.services.storage import InMemoryLedgerStorage


class FixedClock:
    """Callable clock; tests move it by assigning `now`."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def at(year: int, month: int, day: int, hour: int = 9, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(at(2024, 3, 1))


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        reduction_log_retention=500,
        require_transfer_before_processing=True,
    )


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest_asyncio.fixture
async def engine(storage, ledger_settings, clock) -> LedgerEngine:
    ledger = LedgerEngine(storage=storage, settings=ledger_settings, clock=clock)
    await ledger.load()
    return ledger


@pytest.fixture
def state() -> LedgerState:
    return LedgerState.empty()


@pytest.fixture
def current_account(state):
    """Account #1 'Current' with 1000.00 and pots 'Bills' and 'Savings'."""
    account = mutations.add_account(
        state, AccountSubmission(name="Current", balance=Decimal("1000.00"))
    )
    mutations.add_pot(state, account.id, PotSubmission(name="Bills"))
    mutations.add_pot(state, account.id, PotSubmission(name="Savings", balance=Decimal("50")))
    return account
