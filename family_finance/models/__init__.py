"""
Data Models Package

This package contains all Pydantic models used in the Family Finance system.
All data flowing through the system must conform to these schemas.
"""

from family_finance.models.obligation import (
    VIRTUAL_ID_PREFIX,
    ConfirmationResult,
    ExpenseType,
    MonthSummary,
    Obligation,
    ObligationDraft,
    ObligationKind,
    ObligationRole,
    ProjectedObligation,
    ValidationIssue,
    ValidationResult,
    VirtualOccurrence,
    virtual_occurrence_id,
)
from family_finance.models.ledger import (
    CardStatement,
    CardTransaction,
    PiggyBankEntry,
    PiggyBankEntryType,
)
from family_finance.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Obligation models
    "VIRTUAL_ID_PREFIX",
    "ConfirmationResult",
    "ExpenseType",
    "MonthSummary",
    "Obligation",
    "ObligationDraft",
    "ObligationKind",
    "ObligationRole",
    "ProjectedObligation",
    "ValidationIssue",
    "ValidationResult",
    "VirtualOccurrence",
    "virtual_occurrence_id",
    # Ledger models
    "CardStatement",
    "CardTransaction",
    "PiggyBankEntry",
    "PiggyBankEntryType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
