"""
Audit Logger

DESIGN DECISION: Every mutation of the ledgers is logged.
This provides:
1. Complete traceability of settlements and reversals
2. A record of linked card transactions and their failures
3. Visibility into rejected mutations of generated occurrences

The audit logger:
- Is async to match the storage interfaces
- Gracefully handles failures (a failed audit write never breaks a flow)
- Supports correlation IDs to trace the steps of one user action
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from family_finance.models.audit import AuditEvent, AuditEventBuilder
from family_finance.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_obligation_created(
        self,
        entity_type: str,
        obligation_id: UUID,
        description: str,
        amount: str,
        is_fixed: bool,
        correlation_id: UUID,
    ) -> None:
        """Log creation of a standalone obligation or fixed template."""
        event = AuditEventBuilder.obligation_created(
            entity_type=entity_type,
            obligation_id=obligation_id,
            description=description,
            amount=amount,
            is_fixed=is_fixed,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_installment_series_created(
        self,
        entity_type: str,
        head_id: UUID,
        installments: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.installment_series_created(
            entity_type=entity_type,
            head_id=head_id,
            installments=installments,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_obligation_updated(
        self,
        entity_type: str,
        obligation_id: UUID,
        changed_fields: list[str],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.obligation_updated(
            entity_type=entity_type,
            obligation_id=obligation_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_obligation_deleted(
        self,
        entity_type: str,
        obligation_id: UUID,
        linked_transactions_deleted: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.obligation_deleted(
            entity_type=entity_type,
            obligation_id=obligation_id,
            linked_transactions_deleted=linked_transactions_deleted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_occurrence_materialized(
        self,
        entity_type: str,
        obligation_id: UUID,
        template_id: UUID,
        virtual_id: str,
        correlation_id: UUID,
    ) -> None:
        """Log that a generated occurrence became a persisted row."""
        event = AuditEventBuilder.occurrence_materialized(
            entity_type=entity_type,
            obligation_id=obligation_id,
            template_id=template_id,
            virtual_id=virtual_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_confirmed(
        self,
        entity_type: str,
        obligation_id: UUID,
        settled_date: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.settlement_confirmed(
            entity_type=entity_type,
            obligation_id=obligation_id,
            settled_date=settled_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_reversed(
        self,
        entity_type: str,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.settlement_reversed(
            entity_type=entity_type,
            obligation_id=obligation_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_linked_transaction_created(
        self,
        transaction_id: UUID,
        obligation_id: UUID,
        card_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.linked_transaction_created(
            transaction_id=transaction_id,
            obligation_id=obligation_id,
            card_id=card_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_linked_transaction_failed(
        self,
        obligation_id: UUID,
        error_message: str,
        rolled_back: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a card transaction that could not be recorded."""
        event = AuditEventBuilder.linked_transaction_failed(
            obligation_id=obligation_id,
            error_message=error_message,
            rolled_back=rolled_back,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_linked_transaction_deleted(
        self,
        transaction_id: UUID,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.linked_transaction_deleted(
            transaction_id=transaction_id,
            obligation_id=obligation_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_rolled_back(
        self,
        entity_type: str,
        obligation_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.settlement_rolled_back(
            entity_type=entity_type,
            obligation_id=obligation_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_piggy_bank_entry(
        self,
        entry_id: UUID,
        entry_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.piggy_bank_entry_recorded(
            entry_id=entry_id,
            entry_type=entry_type,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        entity_type: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_virtual_mutation_rejected(
        self,
        virtual_id: str,
        action: str,
        correlation_id: UUID,
    ) -> None:
        """Log an edit/delete/reverse attempted on a generated occurrence."""
        event = AuditEventBuilder.virtual_mutation_rejected(
            virtual_id=virtual_id,
            action=action,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., confirming a payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
