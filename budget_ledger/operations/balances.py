"""
Balance Primitives

Every balance change in the ledger goes through this module. An endpoint is
an account's main balance or one named pot of that account; pot balances
are separate sub-balances and never roll up into the account balance.

DESIGN DECISION: Endpoints are resolved before anything is changed, so an
operation that fails on a missing account or pot leaves every balance as
it was.
"""

from decimal import Decimal
from typing import NamedTuple, Optional

import structlog

from budget_ledger.errors import InvalidOperationError, NotFoundError
from budget_ledger.models.ledger import Account, Pot, TransactionKind, TransactionRecord
from budget_ledger.models.state import LedgerState


logger = structlog.get_logger(__name__)


class Endpoint(NamedTuple):
    """A resolved balance holder: the account, plus the pot when one is named."""
    account: Account
    pot: Optional[Pot]

    @property
    def balance(self) -> Decimal:
        return self.pot.balance if self.pot is not None else self.account.balance

    def adjust(self, delta: Decimal) -> None:
        if self.pot is not None:
            self.pot.balance += delta
        else:
            self.account.balance += delta

    def describe(self) -> str:
        if self.pot is not None:
            return f"pot '{self.pot.name}' of account #{self.account.id}"
        return f"account #{self.account.id}"


class EffectLeg(NamedTuple):
    """One signed balance movement of a transaction event, per unit of amount."""
    account_id: Optional[int]
    pot_name: Optional[str]
    sign: int


# =============================================================================
# LOOKUPS
# =============================================================================

def require_account(state: LedgerState, account_id: int) -> Account:
    account = state.find_account(account_id)
    if account is None:
        raise NotFoundError(f"Account #{account_id} not found")
    return account


def require_pot(account: Account, pot_name: str) -> Pot:
    pot = account.find_pot(pot_name)
    if pot is None:
        raise NotFoundError(f"Pot '{pot_name}' not found on account #{account.id}")
    return pot


def resolve_endpoint(
    state: LedgerState,
    account_id: int,
    pot_name: Optional[str] = None,
) -> Endpoint:
    """
    Resolve an account/pot pair.

    Raises:
        NotFoundError: If the account, or the named pot, does not exist
    """
    account = require_account(state, account_id)
    if pot_name:
        return Endpoint(account, require_pot(account, pot_name))
    return Endpoint(account, None)


def find_endpoint(
    state: LedgerState,
    account_id: Optional[int],
    pot_name: Optional[str] = None,
) -> Optional[Endpoint]:
    """Like resolve_endpoint, but None instead of raising."""
    account = state.find_account(account_id)
    if account is None:
        return None
    if pot_name:
        pot = account.find_pot(pot_name)
        return Endpoint(account, pot) if pot is not None else None
    return Endpoint(account, None)


# =============================================================================
# MOVEMENTS
# =============================================================================

def debit(endpoint: Endpoint, amount: Decimal, check_funds: bool = True) -> None:
    """
    Take `amount` from an endpoint.

    Raises:
        InvalidOperationError: If check_funds is set and the balance is short
    """
    if check_funds and endpoint.balance < amount:
        raise InvalidOperationError(
            f"Insufficient funds in {endpoint.describe()}: "
            f"balance {endpoint.balance}, needed {amount}"
        )
    endpoint.adjust(-amount)


def credit(endpoint: Endpoint, amount: Decimal) -> None:
    endpoint.adjust(amount)


def move(source: Endpoint, destination: Endpoint, amount: Decimal) -> None:
    """
    Debit then credit. Both endpoints must already be resolved.

    When both endpoints share an account they hold the same Account object,
    so both legs land on one record.
    """
    debit(source, amount)
    credit(destination, amount)


# =============================================================================
# TRANSACTION EFFECTS
# =============================================================================

def effect_legs(record: TransactionRecord) -> list[EffectLeg]:
    """
    How one event of `record` moved balances.

    Recurring kinds debit the target (pot or account) and any linked credit
    account. A credit card payment moves money from its source endpoint to
    its destination endpoint.
    """
    if record.kind is TransactionKind.CREDIT_CARD_PAYMENT:
        legs = [EffectLeg(record.to_account_id, record.to_pot_name, +1)]
        if record.from_account_id is not None:
            legs.insert(0, EffectLeg(record.from_account_id, record.from_pot_name, -1))
        return legs

    legs = [EffectLeg(record.to_account_id, record.to_pot_name, -1)]
    if record.linked_credit_account_id is not None:
        legs.append(EffectLeg(record.linked_credit_account_id, None, -1))
    return legs


def reverse_record_effects(state: LedgerState, record: TransactionRecord) -> Decimal:
    """
    Undo the balance effect of every event on `record`.

    Endpoints that no longer exist are skipped. Returns the total event
    amount reversed.
    """
    legs = effect_legs(record)
    total = Decimal("0")
    for event in record.events:
        for leg in legs:
            endpoint = find_endpoint(state, leg.account_id, leg.pot_name)
            if endpoint is None:
                logger.warning(
                    "reversal_endpoint_missing",
                    transaction_id=record.id,
                    account_id=leg.account_id,
                    pot_name=leg.pot_name,
                )
                continue
            endpoint.adjust(-leg.sign * event.amount)
        total += event.amount
    return total
