"""
Core Data Models for Family Finance

An obligation is one row of accounts payable or accounts receivable.
The same shape covers three recurrence situations:

1. A standalone entry (one bill, one salary payment)
2. An installment series (a purchase split over N months, one row per month)
3. A fixed template (a bill that repeats every month on the same day)

DESIGN DECISION: Real rows and virtual occurrences are different types.
``Obligation`` is a persisted row and always has a store-issued UUID.
``VirtualOccurrence`` is the display-only projection of a fixed template
into a later month; its id is the synthetic ``temp-<template>-<YYYY-MM>``
and it cannot be saved, edited, reversed or deleted.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from family_finance.models.ledger import CardTransaction
from family_finance.recurrence.months import YearMonth


VIRTUAL_ID_PREFIX = "temp-"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ObligationKind(str, Enum):
    """Which ledger an obligation belongs to."""
    PAYABLE = "payable"
    RECEIVABLE = "receivable"


class ExpenseType(str, Enum):
    """Expense classification stored on payables."""
    FIXED = "fixa"
    VARIABLE = "variavel"


class ObligationRole(str, Enum):
    """
    Recurrence role of a persisted obligation.

    The storage column ``original_fixed_account_id`` is used for two
    different links; the role tells them apart.
    """
    STANDALONE = "standalone"
    INSTALLMENT_CHILD = "installment_child"        # points at the series head
    FIXED_TEMPLATE = "fixed_template"
    FIXED_MATERIALIZATION = "fixed_materialization"  # points at the template


def virtual_occurrence_id(template_id: UUID, month: YearMonth) -> str:
    """Synthetic id of a template's occurrence in a given month."""
    return f"{VIRTUAL_ID_PREFIX}{template_id}-{month}"


# =============================================================================
# OBLIGATIONS
# =============================================================================

class ObligationFields(BaseModel):
    """
    Fields shared by real obligations and virtual occurrences.

    ``anchor_date`` is the due date of a payable or the receive date
    of a receivable. ``settled``/``settled_date`` are paid/paid_date
    or received/received_date respectively.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: ObligationKind
    owner_id: str = Field(
        ...,
        min_length=1,
        description="User who created the row (family filtering key)"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount of ONE installment, never the aggregate"
    )
    anchor_date: date = Field(
        ...,
        description="Due date (payable) or receive date (receivable)"
    )

    # Recurrence
    is_fixed: bool = False
    installments: int = Field(default=1, ge=1)
    current_installment: int = Field(default=1, ge=1)
    template_id: Optional[UUID] = Field(
        default=None,
        description="Fixed template this row materializes"
    )
    series_head_id: Optional[UUID] = Field(
        default=None,
        description="First row of the installment series this row belongs to"
    )

    # Settlement
    settled: bool = False
    settled_date: Optional[date] = None

    # Lookups (payables)
    category_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    card_id: Optional[str] = None
    purchase_date: Optional[date] = None
    expense_type: ExpenseType = ExpenseType.VARIABLE

    # Lookups (receivables)
    income_type_id: Optional[str] = None
    source_id: Optional[str] = None
    payer_id: Optional[str] = None

    responsible_person_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_recurrence_fields(self) -> 'ObligationFields':
        if self.current_installment > self.installments:
            raise ValueError(
                "Current installment cannot be greater than installments"
            )
        if self.template_id and self.series_head_id:
            raise ValueError(
                "A row cannot belong to a fixed template and an installment series"
            )
        if self.settled_date and not self.settled:
            raise ValueError("Settlement date set on an unsettled obligation")
        return self

    @property
    def total_value(self) -> Decimal:
        """Amount times installments; fixed templates count once."""
        if self.is_fixed:
            return self.amount
        return self.amount * self.installments


class Obligation(ObligationFields):
    """
    A persisted accounts payable / receivable row.
    """
    is_generated_fixed_instance: ClassVar[bool] = False

    id: UUID = Field(
        default_factory=uuid4,
        description="Store-issued id"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_template(self) -> 'Obligation':
        """A fixed template is a single unsettled row."""
        if self.is_fixed:
            if self.installments != 1:
                raise ValueError("Fixed templates are stored with installments = 1")
            if self.template_id or self.series_head_id:
                raise ValueError("Fixed templates cannot link to another row")
            if self.settled:
                raise ValueError("Fixed templates are never settled in place")
        return self

    @property
    def role(self) -> ObligationRole:
        if self.is_fixed:
            return ObligationRole.FIXED_TEMPLATE
        if self.template_id:
            return ObligationRole.FIXED_MATERIALIZATION
        if self.series_head_id:
            return ObligationRole.INSTALLMENT_CHILD
        return ObligationRole.STANDALONE


class VirtualOccurrence(ObligationFields):
    """
    A fixed template projected into a month it has no real row for.

    Never persisted. Confirming it creates a real row.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    is_generated_fixed_instance: ClassVar[bool] = True

    id: str = Field(
        ...,
        pattern=r"^temp-",
        description="Synthetic id: temp-<template_id>-<YYYY-MM>"
    )
    template_id: UUID


ProjectedObligation = Union[Obligation, VirtualOccurrence]


# =============================================================================
# INPUT / OUTPUT MODELS
# =============================================================================

class ObligationDraft(BaseModel):
    """
    What the user typed into the "new account" form.

    Everything is optional here; the validator reports what is missing
    instead of failing on construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: ObligationKind
    owner_id: str
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    anchor_date: Optional[date] = None
    is_fixed: bool = False
    installments: Optional[int] = 1

    category_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    card_id: Optional[str] = None
    purchase_date: Optional[date] = None
    expense_type: ExpenseType = ExpenseType.VARIABLE

    income_type_id: Optional[str] = None
    source_id: Optional[str] = None
    payer_id: Optional[str] = None

    responsible_person_id: Optional[str] = None


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required fields, ranges)
    Stage 2: Semantic validation (logic checks)
    """

    validated_at: datetime = Field(default_factory=datetime.utcnow)
    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]


class MonthSummary(BaseModel):
    """Totals for one ledger in one month, as shown above the list."""

    kind: ObligationKind
    month: YearMonth
    obligation_count: int = Field(ge=0)
    forecast_total: Decimal = Decimal("0")
    settled_total: Decimal = Decimal("0")
    outstanding_total: Decimal = Decimal("0")
    settled_by_responsible: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Settled totals keyed by responsible person id"
    )


# =============================================================================
# FLOW RESULTS
# =============================================================================

class ConfirmationResult(BaseModel):
    """
    Outcome of confirming a settlement.

    ``obligation`` is the persisted row: the new materialization when a
    generated occurrence (or a template) was confirmed, otherwise the
    updated row. ``warnings`` carries linked-transaction failures that
    were reported instead of rolled back.
    """

    obligation: Obligation
    materialized: bool = False
    linked_transaction: Optional[CardTransaction] = None
    warnings: list[str] = Field(default_factory=list)
