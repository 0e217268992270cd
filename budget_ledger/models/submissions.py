"""
Submission Models for Budget Ledger

Inputs to the engine's add/update operations. The engine assigns ids and
owns all derived state, so submissions carry only caller-chosen fields.

DESIGN DECISION: Shape checks (non-empty names, positive transfer amounts,
a parseable yearly date) live here, at the edge. Rules that need the rest
of the ledger (duplicate pots, missing accounts) are checked by the engine.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from budget_ledger.models.dates import parse_yearly_date
from budget_ledger.models.ledger import Money, TransactionKind


class Submission(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class AccountSubmission(Submission):
    name: str = Field(..., min_length=1, max_length=200)
    balance: Money = Decimal("0")
    type: str = "current"
    account_type: Optional[str] = None
    credit_limit: Optional[Money] = None
    exclude_from_reset: Optional[bool] = Field(
        default=None,
        description="None keeps the existing flag on update"
    )


class PotSubmission(Submission):
    name: str = Field(..., min_length=1, max_length=200)
    balance: Money = Decimal("0")
    exclude_from_reset: Optional[bool] = None


class IncomeSubmission(Submission):
    amount: Money
    description: str = ""
    company: str = ""
    date: str = ""
    pot_name: Optional[str] = None


class ExpenseSubmission(Submission):
    """Expense against the owning account. Destination fields are attribution only."""

    amount: Money
    description: str = ""
    date: str = ""
    to_account_id: Optional[int] = None
    to_pot_name: Optional[str] = None


class TransactionSubmission(Submission):
    name: str = Field(..., min_length=1)
    vendor: str = ""
    amount: Money
    date: str = ""
    kind: TransactionKind = TransactionKind.SCHEDULED
    from_account_id: Optional[int] = None
    from_pot_name: Optional[str] = None
    to_account_id: int
    to_pot_name: Optional[str] = None
    payment_type: Optional[str] = None
    linked_credit_account_id: Optional[int] = None
    yearly_date: Optional[str] = None

    @model_validator(mode='after')
    def validate_yearly_date(self) -> 'TransactionSubmission':
        """A yearly record needs a day and month it can fire on."""
        if self.kind is TransactionKind.YEARLY:
            if parse_yearly_date(self.yearly_date) is None and parse_yearly_date(self.date) is None:
                raise ValueError(
                    "Yearly transactions need a DD-MM-YYYY yearly_date or date"
                )
        return self


class TargetSubmission(Submission):
    name: str = Field(..., min_length=1)
    amount: Money
    date: str = ""
    account_id: int


class ScheduledPaymentSubmission(Submission):
    name: str = Field(..., min_length=1)
    amount: Money
    date: str = Field(..., min_length=1)
    company: str = ""
    type: Optional[str] = None


class IncomeScheduleSubmission(Submission):
    account_id: int
    income_id: int = 0
    amount: Money = Field(..., gt=0)
    description: str = ""
    company: str = ""


class TransferScheduleSubmission(Submission):
    from_account_id: int
    from_pot_name: Optional[str] = None
    to_account_id: int
    to_pot_name: Optional[str] = None
    amount: Money = Field(..., gt=0)
    description: str = ""
    linked_credit_account_id: Optional[int] = None

    @model_validator(mode='after')
    def validate_endpoints_differ(self) -> 'TransferScheduleSubmission':
        same_account = self.from_account_id == self.to_account_id
        same_pot = (self.from_pot_name or "").casefold() == (self.to_pot_name or "").casefold()
        if same_account and same_pot:
            raise ValueError("Transfer source and destination must differ")
        return self
