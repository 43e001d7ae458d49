"""
Secondary ledgers: credit-card transactions and the piggy bank.

A card transaction is either entered directly on a card or created as a
side effect of paying a payable with the card payment type. In the second
case ``source_obligation_id`` points back at the payable so the
transaction can be removed when the payment is reversed or deleted.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from family_finance.recurrence.months import YearMonth


class CardTransaction(BaseModel):
    """One row of ``credit_card_transactions``."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    card_id: str = Field(..., min_length=1)
    category_id: Optional[str] = None
    purchase_date: date
    installments: int = Field(default=1, ge=1)
    current_installment: int = Field(default=1, ge=1)
    is_fixed: bool = False
    original_fixed_transaction_id: Optional[UUID] = None
    source_obligation_id: Optional[UUID] = Field(
        default=None,
        description="Payable whose card payment produced this transaction"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_installments(self) -> 'CardTransaction':
        if self.current_installment > self.installments:
            raise ValueError(
                "Current installment cannot be greater than installments"
            )
        return self


class PiggyBankEntryType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class PiggyBankEntry(BaseModel):
    """One movement in the family savings ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    entry_date: date
    entry_type: PiggyBankEntryType = PiggyBankEntryType.DEPOSIT
    bank_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def signed_amount(self) -> Decimal:
        if self.entry_type == PiggyBankEntryType.WITHDRAWAL:
            return -self.amount
        return self.amount


class CardStatement(BaseModel):
    """Card transactions purchased in one month."""

    card_id: str
    month: YearMonth
    transactions: list[CardTransaction] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((t.amount for t in self.transactions), Decimal("0"))
