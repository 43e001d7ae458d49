"""
Main Orchestrator for Family Finance

This module ties together all the components and defines the
end-to-end flows for:
1. Obligations (create → load month → confirm / reverse → update / delete)
2. Piggy bank (transfer from a receivable, withdraw, balance)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written while validation reports errors
- Generated occurrences are never written, edited or deleted;
  confirming one inserts a new row
- A card payment has exactly one linked card transaction, created on
  confirm and removed on reverse / delete
- Every step is audited

There are no cross-table transactions. Sub-steps run in a fixed order
(materialize before linking, unlink before clearing or deleting) and a
failed link is compensated or reported, depending on configuration.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog
from pydantic import ValidationError

from family_finance.audit import AuditLogger, create_correlation_id
from family_finance.config import get_settings, validate_all_settings
from family_finance.models.ledger import (
    CardTransaction,
    PiggyBankEntry,
    PiggyBankEntryType,
)
from family_finance.models.obligation import (
    ConfirmationResult,
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
from family_finance.queries import QueryExecutor
from family_finance.recurrence.months import YearMonth
from family_finance.recurrence.series import build_obligations
from family_finance.services.storage import (
    CardTransactionStorageInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsCardTransactionStorage,
    GoogleSheetsClient,
    GoogleSheetsObligationStorage,
    GoogleSheetsPiggyBankStorage,
    InMemoryCardTransactionStorage,
    InMemoryObligationStorage,
    InMemoryPiggyBankStorage,
    NotFoundError,
    ObligationStorageInterface,
    PiggyBankStorageInterface,
    StorageError,
)
from family_finance.validation import ObligationValidator


logger = structlog.get_logger()

# Fields that only confirm / reverse may change
PROTECTED_FIELDS = frozenset({
    "id",
    "kind",
    "owner_id",
    "is_fixed",
    "installments",
    "current_installment",
    "template_id",
    "series_head_id",
    "settled",
    "settled_date",
    "created_at",
    "updated_at",
})


class ObligationValidationError(Exception):
    """A draft or an update did not pass validation. Nothing was written."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Validation failed: {messages}")


class VirtualOccurrenceError(Exception):
    """
    Attempt to mutate derived state.

    Raised for edit / delete / reverse of a generated occurrence and for
    edits of a template's materialization. Nothing was written.
    """
    pass


class LinkedTransactionError(Exception):
    """The card transaction linked to a payment could not be created or removed."""

    def __init__(self, obligation_id: UUID, message: str, rolled_back: bool = False):
        self.obligation_id = obligation_id
        self.rolled_back = rolled_back
        super().__init__(message)


class SettlementStateError(Exception):
    """Confirming a settled obligation, or reversing one that is not settled."""
    pass


class ObligationFlow:
    """
    Orchestrates the accounts payable / receivable flows.

    State machine of one month's entry:
        generated occurrence --confirm--> materialized, settled
        real, unsettled <--confirm / reverse--> real, settled
        real --delete--> gone

    A fixed template is never settled in place: confirming it in its
    home month also inserts a materialization.
    """

    def __init__(
        self,
        obligation_storage: ObligationStorageInterface,
        card_storage: Optional[CardTransactionStorageInterface] = None,
        validator: Optional[ObligationValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        card_payment_type_id: Optional[str] = None,
        rollback_on_link_failure: Optional[bool] = None,
    ):
        settings = get_settings().app

        self._storage = obligation_storage
        self._card_storage = card_storage
        self._card_payment_type_id = card_payment_type_id or settings.card_payment_type
        self._validator = validator or ObligationValidator(self._card_payment_type_id)
        self._audit_logger = audit_logger
        self._queries = QueryExecutor(obligation_storage, card_storage)
        if rollback_on_link_failure is None:
            rollback_on_link_failure = settings.rollback_on_link_failure
        self._rollback_on_link_failure = rollback_on_link_failure

    # ---------------------------------------------------------------- helpers

    def _pays_with_card(self, obligation: ProjectedObligation) -> bool:
        """Payable paid with the card payment type and a card chosen."""
        return (
            obligation.kind == ObligationKind.PAYABLE
            and obligation.payment_type_id == self._card_payment_type_id
            and bool(obligation.card_id)
        )

    async def _reject_virtual(
        self,
        obligation: ProjectedObligation,
        action: str,
        correlation_id: UUID,
    ) -> None:
        if not obligation.is_generated_fixed_instance:
            return
        if self._audit_logger:
            await self._audit_logger.log_virtual_mutation_rejected(
                virtual_id=obligation.id,
                action=action,
                correlation_id=correlation_id,
            )
        raise VirtualOccurrenceError(
            f"Cannot {action} generated occurrence {obligation.id}; "
            "confirm it first or change the fixed account"
        )

    async def _delete_linked_transactions(
        self,
        obligation: Obligation,
        correlation_id: UUID,
    ) -> int:
        """
        Remove the card transactions created by this obligation's payment.

        None found is fine. Any storage failure aborts the caller.
        """
        if self._card_storage is None:
            if self._pays_with_card(obligation) and obligation.settled:
                raise LinkedTransactionError(
                    obligation.id,
                    "Card transaction storage is not configured",
                )
            return 0

        deleted = 0
        try:
            linked = await self._card_storage.list_transactions(
                source_obligation_id=obligation.id,
            )
            for transaction in linked:
                if await self._card_storage.delete_transaction(transaction.id):
                    deleted += 1
                    if self._audit_logger:
                        await self._audit_logger.log_linked_transaction_deleted(
                            transaction_id=transaction.id,
                            obligation_id=obligation.id,
                            correlation_id=correlation_id,
                        )
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_linked_transaction_failed(
                    obligation_id=obligation.id,
                    error_message=str(e),
                    rolled_back=False,
                    correlation_id=correlation_id,
                )
            raise LinkedTransactionError(
                obligation.id,
                f"Could not remove linked card transaction: {e}",
            ) from e

        return deleted

    async def _materialize(
        self,
        source: ProjectedObligation,
        template_id: UUID,
        settlement_date: date,
        correlation_id: UUID,
    ) -> Obligation:
        """Insert the settled real row for one month of a fixed template."""
        month = YearMonth.from_date(source.anchor_date)

        existing = await self._storage.list_obligations(
            source.kind,
            date_from=month.first_day,
            date_to=month.last_day,
            template_id=template_id,
        )
        if existing:
            raise DuplicateError(
                f"Fixed account {template_id} is already recorded for {month} "
                f"(row {existing[0].id})"
            )

        data = source.model_dump(
            exclude={"id", "created_at", "updated_at", "series_head_id"}
        )
        data.update(
            is_fixed=False,
            installments=1,
            current_installment=1,
            settled=True,
            settled_date=settlement_date,
            template_id=template_id,
        )
        row = Obligation(**data)
        await self._storage.save_obligation(row)

        if self._audit_logger:
            await self._audit_logger.log_occurrence_materialized(
                entity_type=row.kind.value,
                obligation_id=row.id,
                template_id=template_id,
                virtual_id=virtual_occurrence_id(template_id, month),
                correlation_id=correlation_id,
            )
        return row

    async def _link_card_transaction(
        self,
        obligation: Obligation,
        settlement_date: date,
        correlation_id: UUID,
    ) -> CardTransaction:
        if self._card_storage is None:
            raise StorageError("Card transaction storage is not configured")

        transaction = CardTransaction(
            owner_id=obligation.owner_id,
            description=obligation.description,
            amount=obligation.amount,
            card_id=obligation.card_id,
            category_id=obligation.category_id,
            purchase_date=settlement_date,
            installments=obligation.installments or 1,
            current_installment=obligation.current_installment or 1,
            source_obligation_id=obligation.id,
        )
        await self._card_storage.save_transaction(transaction)

        if self._audit_logger:
            await self._audit_logger.log_linked_transaction_created(
                transaction_id=transaction.id,
                obligation_id=obligation.id,
                card_id=transaction.card_id,
                correlation_id=correlation_id,
            )
        return transaction

    # ------------------------------------------------------------- operations

    async def create_obligation(
        self,
        draft: ObligationDraft,
        correlation_id: Optional[UUID] = None,
    ) -> list[Obligation]:
        """
        Validate a draft and insert its rows.

        Returns:
            One template row for a fixed account, otherwise the rows of
            the installment series, head first.

        Raises:
            ObligationValidationError: If the draft has errors
        """
        correlation_id = correlation_id or create_correlation_id()

        result = self._validator.validate(draft)
        if result.has_errors:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    entity_type=draft.kind.value,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in result.issues
                    ],
                    correlation_id=correlation_id,
                )
            raise ObligationValidationError(result)

        rows = build_obligations(draft, self._card_payment_type_id)
        if len(rows) == 1:
            await self._storage.save_obligation(rows[0])
        else:
            await self._storage.save_obligations(rows)

        head = rows[0]
        if self._audit_logger:
            await self._audit_logger.log_obligation_created(
                entity_type=head.kind.value,
                obligation_id=head.id,
                description=head.description,
                amount=str(head.amount),
                is_fixed=head.is_fixed,
                correlation_id=correlation_id,
            )
            if len(rows) > 1:
                await self._audit_logger.log_installment_series_created(
                    entity_type=head.kind.value,
                    head_id=head.id,
                    installments=len(rows),
                    correlation_id=correlation_id,
                )

        return rows

    async def load_month(
        self,
        kind: ObligationKind,
        owner_ids: Optional[Sequence[str]],
        month: YearMonth,
    ) -> list[ProjectedObligation]:
        """
        What the list shows for one month.

        Args:
            kind: Payables or receivables
            owner_ids: The family member ids whose rows are visible
                (None for every owner)
            month: The selected month
        """
        return await self._queries.projected_month(kind, month, owner_ids)

    async def confirm(
        self,
        occurrence: ProjectedObligation,
        settlement_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> ConfirmationResult:
        """
        Mark an obligation as paid / received.

        - Generated occurrence (or a fixed template): insert a new settled
          row pointing at the template.
        - Any other real row: settle it in place.
        - Card payment: also record one card transaction.

        Raises:
            DuplicateError: The template already has a row in that month
            NotFoundError: The template or row no longer exists
            SettlementStateError: The row is already settled
            LinkedTransactionError: The card transaction failed and the
                settlement was rolled back (``rolled_back`` is False when
                the undo itself failed)
        """
        correlation_id = correlation_id or create_correlation_id()
        entity_type = occurrence.kind.value
        warnings: list[str] = []
        previous: Optional[Obligation] = None

        if occurrence.is_generated_fixed_instance:
            template = await self._storage.get_obligation_by_id(
                occurrence.kind, occurrence.template_id
            )
            if template is None:
                raise NotFoundError(
                    f"Fixed account not found: {occurrence.template_id}"
                )
            persisted = await self._materialize(
                occurrence, occurrence.template_id, settlement_date, correlation_id
            )
            materialized = True
        elif occurrence.is_fixed:
            persisted = await self._materialize(
                occurrence, occurrence.id, settlement_date, correlation_id
            )
            materialized = True
        else:
            if occurrence.settled:
                raise SettlementStateError(
                    f"Obligation {occurrence.id} is already settled"
                )
            previous = occurrence
            persisted = occurrence.model_copy(update={
                "settled": True,
                "settled_date": settlement_date,
                "updated_at": datetime.utcnow(),
            })
            await self._storage.update_obligation(persisted)
            materialized = False

        if self._audit_logger:
            await self._audit_logger.log_settlement_confirmed(
                entity_type=entity_type,
                obligation_id=persisted.id,
                settled_date=settlement_date.isoformat(),
                correlation_id=correlation_id,
            )

        linked = None
        if self._pays_with_card(persisted):
            try:
                linked = await self._link_card_transaction(
                    persisted, settlement_date, correlation_id
                )
            except StorageError as e:
                if not self._rollback_on_link_failure:
                    warnings.append(f"Card transaction was not recorded: {e}")
                    if self._audit_logger:
                        await self._audit_logger.log_linked_transaction_failed(
                            obligation_id=persisted.id,
                            error_message=str(e),
                            rolled_back=False,
                            correlation_id=correlation_id,
                        )
                else:
                    try:
                        if materialized:
                            await self._storage.delete_obligation(persisted.kind, persisted.id)
                        else:
                            await self._storage.update_obligation(previous)
                    except StorageError as undo_error:
                        if self._audit_logger:
                            await self._audit_logger.log_linked_transaction_failed(
                                obligation_id=persisted.id,
                                error_message=str(e),
                                rolled_back=False,
                                correlation_id=correlation_id,
                            )
                            await self._audit_logger.log_error(
                                error_type="settlement_rollback_failed",
                                error_message=str(undo_error),
                                details={"obligation_id": str(persisted.id)},
                                correlation_id=correlation_id,
                            )
                        raise LinkedTransactionError(
                            persisted.id,
                            f"Card transaction failed and the settlement could "
                            f"not be undone: {undo_error}",
                            rolled_back=False,
                        ) from undo_error

                    if self._audit_logger:
                        await self._audit_logger.log_linked_transaction_failed(
                            obligation_id=persisted.id,
                            error_message=str(e),
                            rolled_back=True,
                            correlation_id=correlation_id,
                        )
                        await self._audit_logger.log_settlement_rolled_back(
                            entity_type=entity_type,
                            obligation_id=persisted.id,
                            correlation_id=correlation_id,
                        )
                    raise LinkedTransactionError(
                        persisted.id,
                        f"Card transaction failed, settlement undone: {e}",
                        rolled_back=True,
                    ) from e

        return ConfirmationResult(
            obligation=persisted,
            materialized=materialized,
            linked_transaction=linked,
            warnings=warnings,
        )

    async def reverse(
        self,
        obligation: Obligation,
        correlation_id: Optional[UUID] = None,
    ) -> Obligation:
        """
        Undo a settlement.

        The linked card transaction is removed first; if that fails the
        settlement is left untouched.

        Raises:
            VirtualOccurrenceError: For a generated occurrence
            SettlementStateError: The row is not settled
            LinkedTransactionError: If the card transaction can't be removed
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._reject_virtual(obligation, "reverse", correlation_id)

        if not obligation.settled:
            raise SettlementStateError(
                f"Obligation {obligation.id} is not settled"
            )

        await self._delete_linked_transactions(obligation, correlation_id)

        reversed_row = obligation.model_copy(update={
            "settled": False,
            "settled_date": None,
            "updated_at": datetime.utcnow(),
        })
        await self._storage.update_obligation(reversed_row)

        if self._audit_logger:
            await self._audit_logger.log_settlement_reversed(
                entity_type=obligation.kind.value,
                obligation_id=obligation.id,
                correlation_id=correlation_id,
            )
        return reversed_row

    async def delete_obligation(
        self,
        obligation: Obligation,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a real row and the card transactions linked to it.

        Deleting a template leaves its materializations in place as history.

        Raises:
            VirtualOccurrenceError: For a generated occurrence
            LinkedTransactionError: If a linked transaction can't be removed
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._reject_virtual(obligation, "delete", correlation_id)

        removed = await self._delete_linked_transactions(obligation, correlation_id)
        deleted = await self._storage.delete_obligation(obligation.kind, obligation.id)

        if deleted and self._audit_logger:
            await self._audit_logger.log_obligation_deleted(
                entity_type=obligation.kind.value,
                obligation_id=obligation.id,
                linked_transactions_deleted=removed,
                correlation_id=correlation_id,
            )
        return deleted

    async def update_obligation(
        self,
        obligation: Obligation,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Obligation:
        """
        Edit the plain fields of a real row.

        Recurrence and settlement fields are not editable here; settlement
        changes go through confirm / reverse.

        Raises:
            VirtualOccurrenceError: For a generated occurrence or a
                template's materialization (edit the template instead)
            ObligationValidationError: If the changes are invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._reject_virtual(obligation, "edit", correlation_id)

        if obligation.role == ObligationRole.FIXED_MATERIALIZATION:
            if self._audit_logger:
                await self._audit_logger.log_virtual_mutation_rejected(
                    virtual_id=str(obligation.id),
                    action="edit",
                    correlation_id=correlation_id,
                )
            raise VirtualOccurrenceError(
                f"Row {obligation.id} belongs to fixed account "
                f"{obligation.template_id}; edit the fixed account instead"
            )

        issues = [
            ValidationIssue(
                field=name,
                issue_type="not_editable",
                message=f"Field '{name}' cannot be edited",
                severity="error",
            )
            for name in changes
            if name in PROTECTED_FIELDS or name not in Obligation.model_fields
        ]

        updated = None
        if not issues:
            data = obligation.model_dump()
            data.update(changes)
            try:
                updated = Obligation(**data)
            except ValidationError as e:
                issues = [
                    ValidationIssue(
                        field=".".join(str(part) for part in err["loc"]) or "obligation",
                        issue_type="invalid_value",
                        message=err["msg"],
                        severity="error",
                    )
                    for err in e.errors()
                ]

        if issues:
            result = ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                is_valid=False,
                issues=issues,
            )
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    entity_type=obligation.kind.value,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in issues
                    ],
                    correlation_id=correlation_id,
                )
            raise ObligationValidationError(result)

        if updated.payment_type_id != self._card_payment_type_id:
            updated.card_id = None

        changed = [
            name for name in Obligation.model_fields
            if getattr(obligation, name) != getattr(updated, name)
        ]
        updated.updated_at = datetime.utcnow()
        await self._storage.update_obligation(updated)

        if self._audit_logger:
            await self._audit_logger.log_obligation_updated(
                entity_type=obligation.kind.value,
                obligation_id=obligation.id,
                changed_fields=changed,
                correlation_id=correlation_id,
            )
        return updated


class PiggyBankFlow:
    """
    Orchestrates the piggy-bank savings ledger.

    Deposits usually come from a received amount ("transfer to the
    piggy bank"); withdrawals are entered directly.
    """

    def __init__(
        self,
        storage: PiggyBankStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def _record(
        self,
        entry: PiggyBankEntry,
        correlation_id: UUID,
    ) -> PiggyBankEntry:
        await self._storage.append_entry(entry)
        if self._audit_logger:
            await self._audit_logger.log_piggy_bank_entry(
                entry_id=entry.id,
                entry_type=entry.entry_type.value,
                amount=str(entry.amount),
                correlation_id=correlation_id,
            )
        return entry

    async def transfer_from_receivable(
        self,
        receivable: ProjectedObligation,
        amount: Optional[Decimal] = None,
        entry_date: Optional[date] = None,
        description: Optional[str] = None,
        bank_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PiggyBankEntry:
        """
        Deposit (part of) a receivable into the piggy bank.

        Defaults: the whole receivable amount, on the receive date (or the
        settlement date when received), described as
        "Transferência de <description>".
        """
        correlation_id = correlation_id or create_correlation_id()

        if receivable.kind != ObligationKind.RECEIVABLE:
            raise ValueError("Only receivables can be transferred to the piggy bank")

        entry = PiggyBankEntry(
            owner_id=receivable.owner_id,
            description=description or f"Transferência de {receivable.description}",
            amount=amount if amount is not None else receivable.amount,
            entry_date=entry_date or receivable.settled_date or receivable.anchor_date,
            entry_type=PiggyBankEntryType.DEPOSIT,
            bank_id=bank_id,
        )
        return await self._record(entry, correlation_id)

    async def withdraw(
        self,
        owner_id: str,
        amount: Decimal,
        entry_date: date,
        description: str,
        bank_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PiggyBankEntry:
        correlation_id = correlation_id or create_correlation_id()
        entry = PiggyBankEntry(
            owner_id=owner_id,
            description=description,
            amount=amount,
            entry_date=entry_date,
            entry_type=PiggyBankEntryType.WITHDRAWAL,
            bank_id=bank_id,
        )
        return await self._record(entry, correlation_id)

    async def balance(
        self,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> Decimal:
        """Deposits minus withdrawals of the given owners."""
        entries = await self._storage.list_entries(owner_ids)
        return sum((e.signed_amount for e in entries), Decimal("0"))


def create_app_components(
    use_storage: bool = True,
) -> tuple[ObligationFlow, PiggyBankFlow, QueryExecutor, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    When False (or not configured) the in-memory
                    backend is used.

    Returns:
        (obligation_flow, piggy_bank_flow, query_executor, sheets_client)
    """
    sheets_client = None

    if use_storage:
        status = validate_all_settings()
        if status["google_sheets"]:
            sheets_client = GoogleSheetsClient()
            obligation_storage = GoogleSheetsObligationStorage(sheets_client)
            card_storage = GoogleSheetsCardTransactionStorage(sheets_client)
            piggy_bank_storage = GoogleSheetsPiggyBankStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        else:
            # Storage not configured - continue in memory
            logger.warning(
                "storage_not_configured",
                error=status.get("google_sheets_error"),
            )
            use_storage = False

    if not use_storage:
        obligation_storage = InMemoryObligationStorage()
        card_storage = InMemoryCardTransactionStorage()
        piggy_bank_storage = InMemoryPiggyBankStorage()
        audit_logger = AuditLogger()  # Local-only logging

    obligation_flow = ObligationFlow(
        obligation_storage=obligation_storage,
        card_storage=card_storage,
        audit_logger=audit_logger,
    )
    piggy_bank_flow = PiggyBankFlow(
        storage=piggy_bank_storage,
        audit_logger=audit_logger,
    )
    query_executor = QueryExecutor(obligation_storage, card_storage)

    return obligation_flow, piggy_bank_flow, query_executor, sheets_client
