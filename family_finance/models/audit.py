"""
Audit Models for Family Finance

Every mutation of the ledgers is logged for audit purposes:
creation, settlement, reversal, deletion and the linked card
transactions that follow a card payment.

Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Obligations
    OBLIGATION_CREATED = "obligation_created"
    INSTALLMENT_SERIES_CREATED = "installment_series_created"
    OBLIGATION_UPDATED = "obligation_updated"
    OBLIGATION_DELETED = "obligation_deleted"

    # Settlement
    OCCURRENCE_MATERIALIZED = "occurrence_materialized"
    SETTLEMENT_CONFIRMED = "settlement_confirmed"
    SETTLEMENT_REVERSED = "settlement_reversed"

    # Linked card transactions
    LINKED_TRANSACTION_CREATED = "linked_transaction_created"
    LINKED_TRANSACTION_FAILED = "linked_transaction_failed"
    LINKED_TRANSACTION_DELETED = "linked_transaction_deleted"
    SETTLEMENT_ROLLED_BACK = "settlement_rolled_back"

    # Piggy bank
    PIGGY_BANK_ENTRY_RECORDED = "piggy_bank_entry_recorded"

    # Rejections
    VALIDATION_FAILED = "validation_failed"
    VIRTUAL_MUTATION_REJECTED = "virtual_mutation_rejected"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'payable', 'receivable', 'card_transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity; virtual occurrences use their temp- id"
    )

    # Correlation - all steps of one user action share it
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.obligation_created("payable", obligation_id, ...)
        event = AuditEventBuilder.settlement_confirmed("payable", obligation_id, ...)
    """

    @staticmethod
    def obligation_created(
        entity_type: str,
        obligation_id: UUID,
        description: str,
        amount: str,
        is_fixed: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        kind = "fixed template" if is_fixed else "obligation"
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_CREATED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description=f"Created {kind}: {description} - R$ {amount}",
            details={
                "amount": amount,
                "is_fixed": is_fixed,
            },
            is_user_action=True,
        )

    @staticmethod
    def installment_series_created(
        entity_type: str,
        head_id: UUID,
        installments: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_SERIES_CREATED,
            entity_type=entity_type,
            entity_id=str(head_id),
            correlation_id=correlation_id,
            description=f"Created installment series with {installments} rows",
            details={"installments": installments},
            is_user_action=True,
        )

    @staticmethod
    def obligation_updated(
        entity_type: str,
        obligation_id: UUID,
        changed_fields: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_UPDATED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description=f"Updated {len(changed_fields)} field(s)",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def obligation_deleted(
        entity_type: str,
        obligation_id: UUID,
        linked_transactions_deleted: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_DELETED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description="Obligation deleted",
            details={"linked_transactions_deleted": linked_transactions_deleted},
            is_user_action=True,
        )

    @staticmethod
    def occurrence_materialized(
        entity_type: str,
        obligation_id: UUID,
        template_id: UUID,
        virtual_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_MATERIALIZED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description="Generated occurrence persisted as a real row",
            details={
                "template_id": str(template_id),
                "virtual_id": virtual_id,
            },
        )

    @staticmethod
    def settlement_confirmed(
        entity_type: str,
        obligation_id: UUID,
        settled_date: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CONFIRMED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description=f"Settlement confirmed on {settled_date}",
            details={"settled_date": settled_date},
            is_user_action=True,
        )

    @staticmethod
    def settlement_reversed(
        entity_type: str,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_REVERSED,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description="Settlement reversed",
            is_user_action=True,
        )

    @staticmethod
    def linked_transaction_created(
        transaction_id: UUID,
        obligation_id: UUID,
        card_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINKED_TRANSACTION_CREATED,
            entity_type="card_transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description="Card transaction recorded for card payment",
            details={
                "obligation_id": str(obligation_id),
                "card_id": card_id,
            },
        )

    @staticmethod
    def linked_transaction_failed(
        obligation_id: UUID,
        error_message: str,
        rolled_back: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINKED_TRANSACTION_FAILED,
            severity=AuditSeverity.ERROR if rolled_back else AuditSeverity.WARNING,
            entity_type="payable",
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description="Could not record card transaction for card payment",
            error_message=error_message,
            details={"rolled_back": rolled_back},
        )

    @staticmethod
    def linked_transaction_deleted(
        transaction_id: UUID,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINKED_TRANSACTION_DELETED,
            entity_type="card_transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description="Linked card transaction removed",
            details={"obligation_id": str(obligation_id)},
        )

    @staticmethod
    def settlement_rolled_back(
        entity_type: str,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=str(obligation_id),
            correlation_id=correlation_id,
            description="Settlement undone after linked transaction failure",
        )

    @staticmethod
    def piggy_bank_entry_recorded(
        entry_id: UUID,
        entry_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIGGY_BANK_ENTRY_RECORDED,
            entity_type="piggy_bank_entry",
            entity_id=str(entry_id),
            correlation_id=correlation_id,
            description=f"Piggy bank {entry_type}: R$ {amount}",
            details={
                "entry_type": entry_type,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def virtual_mutation_rejected(
        virtual_id: str,
        action: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VIRTUAL_MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="virtual_occurrence",
            entity_id=virtual_id,
            correlation_id=correlation_id,
            description=f"Rejected {action} on a generated occurrence",
            details={"action": action},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
