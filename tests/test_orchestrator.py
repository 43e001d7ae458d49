"""
Flow tests for ObligationFlow.

Everything runs against the in-memory backends from conftest.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from family_finance.config import get_settings, validate_all_settings
from family_finance.models.audit import AuditEventType
from family_finance.models.obligation import (
    ObligationDraft,
    ObligationKind,
    ObligationRole,
)
from family_finance.orchestrator import (
    LinkedTransactionError,
    ObligationFlow,
    ObligationValidationError,
    SettlementStateError,
    VirtualOccurrenceError,
    create_app_components,
)
from family_finance.recurrence.months import YearMonth
from family_finance.services.storage import (
    DuplicateError,
    InMemoryCardTransactionStorage,
    InMemoryObligationStorage,
    StorageError,
)

CARD_PAYMENT_TYPE = "cartao"
OWNER = "user-ana"
PARTNER = "user-bruno"


FEB_2024 = YearMonth(year=2024, month=2)
MAR_2024 = YearMonth(year=2024, month=3)


def run_async(coro):
    """Run an async flow call to completion."""
    return asyncio.run(coro)


class FailingSaveCardStorage(InMemoryCardTransactionStorage):
    async def save_transaction(self, transaction):
        raise StorageError("card ledger unavailable")


class FailingDeleteCardStorage(InMemoryCardTransactionStorage):
    async def delete_transaction(self, transaction_id):
        raise StorageError("card ledger unavailable")


class FailingRestoreObligationStorage(InMemoryObligationStorage):
    """Accepts `fail_updates_after` updates, then fails."""

    fail_updates_after = None

    async def update_obligation(self, obligation):
        if self.fail_updates_after is not None:
            if self.fail_updates_after == 0:
                raise StorageError("ledger unavailable")
            self.fail_updates_after -= 1
        return await super().update_obligation(obligation)


def fixed_payable(**overrides) -> ObligationDraft:
    fields = {
        "kind": ObligationKind.PAYABLE,
        "owner_id": OWNER,
        "description": "Internet",
        "amount": Decimal("100.00"),
        "anchor_date": date(2024, 1, 31),
        "is_fixed": True,
    }
    fields.update(overrides)
    return ObligationDraft(**fields)


def card_payable(**overrides) -> ObligationDraft:
    fields = {
        "kind": ObligationKind.PAYABLE,
        "owner_id": OWNER,
        "description": "Notebook",
        "amount": Decimal("400.00"),
        "anchor_date": date(2024, 2, 15),
        "purchase_date": date(2024, 2, 1),
        "installments": 1,
        "payment_type_id": CARD_PAYMENT_TYPE,
        "card_id": "card-1",
    }
    fields.update(overrides)
    return ObligationDraft(**fields)


def all_rows(storage, kind=ObligationKind.PAYABLE):
    return run_async(storage.list_obligations(kind))


def event_types(audit_storage):
    events = run_async(audit_storage.get_recent_events(limit=1000))
    return [e.event_type for e in events]


class TestCreateObligation:
    """Tests for creating obligations."""

    def test_fixed_creates_single_template(self, flow, obligation_storage, audit_storage):
        """Test a fixed draft stores exactly one template row."""
        rows = run_async(flow.create_obligation(fixed_payable()))

        assert len(rows) == 1
        stored = all_rows(obligation_storage)
        assert len(stored) == 1
        assert stored[0].role == ObligationRole.FIXED_TEMPLATE
        assert AuditEventType.OBLIGATION_CREATED in event_types(audit_storage)

    def test_series_creates_every_row(self, flow, obligation_storage, audit_storage):
        """Test an installment draft stores all rows at once."""
        rows = run_async(flow.create_obligation(card_payable(installments=3)))

        assert len(rows) == 3
        stored = all_rows(obligation_storage)
        assert [r.current_installment for r in stored] == [1, 2, 3]
        assert AuditEventType.INSTALLMENT_SERIES_CREATED in event_types(audit_storage)

    def test_invalid_draft_writes_nothing(self, flow, obligation_storage, audit_storage):
        """Test validation errors stop the flow before any write."""
        with pytest.raises(ObligationValidationError) as exc_info:
            run_async(flow.create_obligation(fixed_payable(amount=None)))

        assert exc_info.value.result.has_errors
        assert all_rows(obligation_storage) == []
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_storage)


class TestLoadMonth:
    """Tests for loading a month."""

    def test_projects_template(self, flow):
        """Test a later month shows a generated occurrence."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]

        visible = run_async(flow.load_month(ObligationKind.PAYABLE, [OWNER], FEB_2024))

        assert len(visible) == 1
        assert visible[0].is_generated_fixed_instance
        assert visible[0].template_id == template.id

    def test_family_scope(self, flow):
        """Test only the given owners' rows are visible."""
        run_async(flow.create_obligation(fixed_payable()))
        run_async(flow.create_obligation(fixed_payable(owner_id=PARTNER, description="Luz")))

        mine = run_async(flow.load_month(ObligationKind.PAYABLE, [OWNER], FEB_2024))
        family = run_async(
            flow.load_month(ObligationKind.PAYABLE, [OWNER, PARTNER], FEB_2024)
        )

        assert [o.description for o in mine] == ["Internet"]
        assert len(family) == 2

    def test_receivables_are_separate(self, flow):
        """Test payables never show in the receivables list."""
        run_async(flow.create_obligation(fixed_payable()))
        assert run_async(flow.load_month(ObligationKind.RECEIVABLE, None, FEB_2024)) == []


class TestConfirm:
    """Tests for confirming settlements."""

    def test_february_scenario(self, flow, obligation_storage):
        """Test the day-31 template through projection, confirmation and re-projection."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]

        visible = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))
        assert len(visible) == 1
        occurrence = visible[0]
        assert occurrence.id == f"temp-{template.id}-2024-02"
        assert occurrence.anchor_date == date(2024, 2, 29)
        assert occurrence.settled is False

        result = run_async(flow.confirm(occurrence, date(2024, 2, 28)))

        row = result.obligation
        assert result.materialized
        assert row.template_id == template.id
        assert row.is_fixed is False
        assert row.settled is True
        assert row.settled_date == date(2024, 2, 28)
        assert row.anchor_date == date(2024, 2, 29)

        visible = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))
        assert len(visible) == 1
        assert visible[0].id == row.id
        assert not visible[0].is_generated_fixed_instance

    def test_materialization_leaves_template_untouched(self, flow, obligation_storage):
        """Test confirming an occurrence never settles the template."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, MAR_2024))[0]

        run_async(flow.confirm(occurrence, date(2024, 3, 30)))

        stored = run_async(
            obligation_storage.get_obligation_by_id(ObligationKind.PAYABLE, template.id)
        )
        assert stored.is_fixed
        assert stored.settled is False
        assert len(all_rows(obligation_storage)) == 2

    def test_second_materialization_rejected(self, flow, obligation_storage):
        """Test a stale occurrence cannot be confirmed twice."""
        run_async(flow.create_obligation(fixed_payable()))
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]
        run_async(flow.confirm(occurrence, date(2024, 2, 28)))

        with pytest.raises(DuplicateError):
            run_async(flow.confirm(occurrence, date(2024, 2, 29)))

        assert len(all_rows(obligation_storage)) == 2

    def test_confirm_template_in_home_month(self, flow, obligation_storage):
        """Test the template's own month is recorded as a materialization."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]
        january = run_async(
            flow.load_month(ObligationKind.PAYABLE, None, YearMonth(year=2024, month=1))
        )
        assert january[0].id == template.id

        result = run_async(flow.confirm(january[0], date(2024, 1, 31)))

        assert result.materialized
        assert result.obligation.template_id == template.id
        january = run_async(
            flow.load_month(ObligationKind.PAYABLE, None, YearMonth(year=2024, month=1))
        )
        assert [o.id for o in january] == [result.obligation.id]

    def test_confirm_real_row_in_place(self, flow, obligation_storage):
        """Test a plain row is updated, not copied."""
        row = run_async(flow.create_obligation(card_payable(payment_type_id="pix")))[0]

        result = run_async(flow.confirm(row, date(2024, 2, 15)))

        assert not result.materialized
        assert result.obligation.id == row.id
        stored = all_rows(obligation_storage)
        assert len(stored) == 1
        assert stored[0].settled
        assert stored[0].settled_date == date(2024, 2, 15)

    def test_confirm_already_settled(self, flow):
        """Test a settled row cannot be confirmed again."""
        row = run_async(flow.create_obligation(card_payable(payment_type_id="pix")))[0]
        settled = run_async(flow.confirm(row, date(2024, 2, 15))).obligation

        with pytest.raises(SettlementStateError):
            run_async(flow.confirm(settled, date(2024, 2, 16)))

    def test_confirm_receivable(self, flow, obligation_storage):
        """Test receivables settle the same way."""
        row = run_async(flow.create_obligation(ObligationDraft(
            kind=ObligationKind.RECEIVABLE,
            owner_id=OWNER,
            description="Salário",
            amount=Decimal("5000.00"),
            anchor_date=date(2024, 2, 5),
        )))[0]

        result = run_async(flow.confirm(row, date(2024, 2, 5)))

        assert result.obligation.settled
        assert result.linked_transaction is None


class TestLinkedCardTransactions:
    """Tests for the card transaction created by a card payment."""

    def test_confirm_creates_exactly_one(self, flow, card_storage):
        """Test a card payment records one linked transaction."""
        row = run_async(flow.create_obligation(card_payable()))[0]

        result = run_async(flow.confirm(row, date(2024, 2, 14)))

        transactions = run_async(card_storage.list_transactions())
        assert len(transactions) == 1
        transaction = transactions[0]
        assert transaction == result.linked_transaction
        assert transaction.source_obligation_id == row.id
        assert transaction.purchase_date == date(2024, 2, 14)
        assert transaction.card_id == "card-1"
        assert transaction.amount == Decimal("400.00")

    def test_installments_copied(self, flow, card_storage):
        """Test the transaction copies the row's installment position."""
        rows = run_async(flow.create_obligation(card_payable(installments=3)))

        run_async(flow.confirm(rows[1], date(2024, 3, 15)))

        transaction = run_async(card_storage.list_transactions())[0]
        assert transaction.installments == 3
        assert transaction.current_installment == 2

    def test_materialized_card_payment_links_new_row(self, flow, card_storage):
        """Test the link points at the materialized row, not the template."""
        template = run_async(flow.create_obligation(fixed_payable(
            payment_type_id=CARD_PAYMENT_TYPE,
            card_id="card-1",
        )))[0]
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]

        result = run_async(flow.confirm(occurrence, date(2024, 2, 28)))

        transaction = run_async(card_storage.list_transactions())[0]
        assert transaction.source_obligation_id == result.obligation.id
        assert transaction.source_obligation_id != template.id

    def test_other_payment_types_create_nothing(self, flow, card_storage):
        """Test non-card payments have no linked transaction."""
        row = run_async(flow.create_obligation(card_payable(payment_type_id="pix")))[0]
        run_async(flow.confirm(row, date(2024, 2, 14)))
        assert run_async(card_storage.list_transactions()) == []

    def test_reverse_removes_linked_transaction(self, flow, obligation_storage, card_storage):
        """Test reversing deletes the transaction and clears the settlement."""
        row = run_async(flow.create_obligation(card_payable()))[0]
        settled = run_async(flow.confirm(row, date(2024, 2, 14))).obligation

        reversed_row = run_async(flow.reverse(settled))

        assert run_async(card_storage.list_transactions()) == []
        assert reversed_row.settled is False
        assert reversed_row.settled_date is None
        stored = all_rows(obligation_storage)[0]
        assert stored.settled is False

    def test_reverse_of_unsettled_row_rejected(self, flow, obligation_storage, audit_storage):
        """Test reversing an open row writes nothing and logs no reversal."""
        row = run_async(flow.create_obligation(card_payable()))[0]
        before = all_rows(obligation_storage)

        with pytest.raises(SettlementStateError):
            run_async(flow.reverse(row))

        assert all_rows(obligation_storage) == before
        assert AuditEventType.SETTLEMENT_REVERSED not in event_types(audit_storage)

    def test_delete_removes_both_rows(self, flow, obligation_storage, card_storage, audit_storage):
        """Test deleting a paid card obligation removes the transaction too."""
        row = run_async(flow.create_obligation(card_payable()))[0]
        settled = run_async(flow.confirm(row, date(2024, 2, 14))).obligation

        assert run_async(flow.delete_obligation(settled)) is True

        assert all_rows(obligation_storage) == []
        assert run_async(card_storage.list_transactions()) == []
        types = event_types(audit_storage)
        assert AuditEventType.LINKED_TRANSACTION_DELETED in types
        assert AuditEventType.OBLIGATION_DELETED in types

    def test_delete_without_linked_transaction(self, flow, obligation_storage):
        """Test deleting an unpaid row with nothing linked."""
        row = run_async(flow.create_obligation(card_payable()))[0]
        assert run_async(flow.delete_obligation(row)) is True
        assert all_rows(obligation_storage) == []

    def test_delete_template_keeps_materializations(self, flow, obligation_storage):
        """Test removing a fixed account leaves its recorded months."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]
        paid = run_async(flow.confirm(occurrence, date(2024, 2, 28))).obligation

        run_async(flow.delete_obligation(template))

        assert [r.id for r in all_rows(obligation_storage)] == [paid.id]


class TestLinkFailures:
    """Tests for failures of the card transaction step."""

    def make_flow(self, obligation_storage, card_storage, audit_logger, rollback):
        return ObligationFlow(
            obligation_storage=obligation_storage,
            card_storage=card_storage,
            audit_logger=audit_logger,
            card_payment_type_id=CARD_PAYMENT_TYPE,
            rollback_on_link_failure=rollback,
        )

    def test_rollback_of_in_place_settlement(self, obligation_storage, audit_logger, audit_storage):
        """Test the row is unsettled again when the transaction fails."""
        flow = self.make_flow(obligation_storage, FailingSaveCardStorage(), audit_logger, True)
        row = run_async(flow.create_obligation(card_payable()))[0]

        with pytest.raises(LinkedTransactionError) as exc_info:
            run_async(flow.confirm(row, date(2024, 2, 14)))

        assert exc_info.value.rolled_back
        stored = all_rows(obligation_storage)[0]
        assert stored.settled is False
        assert stored.settled_date is None
        assert AuditEventType.SETTLEMENT_ROLLED_BACK in event_types(audit_storage)

    def test_rollback_of_materialization(self, obligation_storage, audit_logger):
        """Test the materialized row is removed when the transaction fails."""
        flow = self.make_flow(obligation_storage, FailingSaveCardStorage(), audit_logger, True)
        template = run_async(flow.create_obligation(fixed_payable(
            payment_type_id=CARD_PAYMENT_TYPE,
            card_id="card-1",
        )))[0]
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]

        with pytest.raises(LinkedTransactionError):
            run_async(flow.confirm(occurrence, date(2024, 2, 28)))

        assert [r.id for r in all_rows(obligation_storage)] == [template.id]
        visible = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))
        assert visible[0].is_generated_fixed_instance

    def test_failed_rollback_is_reported(self, audit_logger, audit_storage):
        """Test a failing undo still raises LinkedTransactionError and is audited."""
        obligation_storage = FailingRestoreObligationStorage()
        flow = self.make_flow(obligation_storage, FailingSaveCardStorage(), audit_logger, True)
        row = run_async(flow.create_obligation(card_payable()))[0]
        obligation_storage.fail_updates_after = 1

        with pytest.raises(LinkedTransactionError) as exc_info:
            run_async(flow.confirm(row, date(2024, 2, 14)))

        assert exc_info.value.rolled_back is False
        events = run_async(audit_storage.get_recent_events(limit=1000))
        failed = [e for e in events if e.event_type == AuditEventType.LINKED_TRANSACTION_FAILED]
        assert len(failed) == 1
        assert failed[0].details["rolled_back"] is False
        assert AuditEventType.SYSTEM_ERROR in [e.event_type for e in events]
        assert AuditEventType.SETTLEMENT_ROLLED_BACK not in [e.event_type for e in events]

    def test_best_effort_reports_warning(self, obligation_storage, audit_logger, audit_storage):
        """Test the settlement stays and the failure is reported."""
        flow = self.make_flow(obligation_storage, FailingSaveCardStorage(), audit_logger, False)
        row = run_async(flow.create_obligation(card_payable()))[0]

        result = run_async(flow.confirm(row, date(2024, 2, 14)))

        assert result.obligation.settled
        assert result.linked_transaction is None
        assert len(result.warnings) == 1
        assert all_rows(obligation_storage)[0].settled
        assert AuditEventType.LINKED_TRANSACTION_FAILED in event_types(audit_storage)

    def test_reverse_aborts_when_unlink_fails(self, obligation_storage, audit_logger):
        """Test the settlement stays when the transaction cannot be removed."""
        card_storage = FailingDeleteCardStorage()
        flow = self.make_flow(obligation_storage, card_storage, audit_logger, True)
        row = run_async(flow.create_obligation(card_payable()))[0]
        settled = run_async(flow.confirm(row, date(2024, 2, 14))).obligation

        with pytest.raises(LinkedTransactionError):
            run_async(flow.reverse(settled))

        assert all_rows(obligation_storage)[0].settled
        assert len(run_async(card_storage.list_transactions())) == 1


class TestDerivedStateIsReadOnly:
    """Tests that generated occurrences and materializations can't be edited."""

    def snapshot(self, obligation_storage, card_storage):
        rows = all_rows(obligation_storage)
        return (
            [(r.id, r.settled, r.description, r.updated_at) for r in rows],
            run_async(card_storage.list_transactions()),
        )

    @pytest.mark.parametrize("action", ["reverse", "delete", "edit"])
    def test_virtual_mutations_rejected(
        self, action, flow, obligation_storage, card_storage, audit_storage
    ):
        """Test edit/delete/reverse of a generated occurrence write nothing."""
        run_async(flow.create_obligation(fixed_payable(
            payment_type_id=CARD_PAYMENT_TYPE,
            card_id="card-1",
        )))
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]
        before = self.snapshot(obligation_storage, card_storage)

        with pytest.raises(VirtualOccurrenceError):
            if action == "reverse":
                run_async(flow.reverse(occurrence))
            elif action == "delete":
                run_async(flow.delete_obligation(occurrence))
            else:
                run_async(flow.update_obligation(occurrence, {"description": "X"}))

        assert self.snapshot(obligation_storage, card_storage) == before
        assert AuditEventType.VIRTUAL_MUTATION_REJECTED in event_types(audit_storage)

    def test_materialization_edit_rejected(self, flow, obligation_storage):
        """Test a recorded month of a fixed account is edited via the template."""
        run_async(flow.create_obligation(fixed_payable()))
        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, FEB_2024))[0]
        paid = run_async(flow.confirm(occurrence, date(2024, 2, 28))).obligation

        with pytest.raises(VirtualOccurrenceError):
            run_async(flow.update_obligation(paid, {"amount": Decimal("120.00")}))

        stored = run_async(
            obligation_storage.get_obligation_by_id(ObligationKind.PAYABLE, paid.id)
        )
        assert stored.amount == Decimal("100.00")


class TestUpdateObligation:
    """Tests for editing real rows."""

    def test_updates_plain_fields(self, flow, obligation_storage, audit_storage):
        """Test description and amount edits are stored."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]

        updated = run_async(flow.update_obligation(
            template,
            {"description": "Internet fibra", "amount": Decimal("129.90")},
        ))

        stored = run_async(
            obligation_storage.get_obligation_by_id(ObligationKind.PAYABLE, template.id)
        )
        assert stored.description == "Internet fibra"
        assert stored.amount == Decimal("129.90")
        assert updated.is_fixed
        assert AuditEventType.OBLIGATION_UPDATED in event_types(audit_storage)

    def test_template_edit_shows_in_projection(self, flow):
        """Test later months pick up the new template values."""
        template = run_async(flow.create_obligation(fixed_payable()))[0]
        run_async(flow.update_obligation(template, {"amount": Decimal("150.00")}))

        occurrence = run_async(flow.load_month(ObligationKind.PAYABLE, None, MAR_2024))[0]

        assert occurrence.amount == Decimal("150.00")

    def test_settlement_fields_not_editable(self, flow):
        """Test settlement goes through confirm / reverse only."""
        row = run_async(flow.create_obligation(card_payable()))[0]

        with pytest.raises(ObligationValidationError):
            run_async(flow.update_obligation(row, {"settled": True}))

    def test_invalid_value_rejected(self, flow, obligation_storage):
        """Test model validation errors are reported, nothing written."""
        row = run_async(flow.create_obligation(card_payable()))[0]

        with pytest.raises(ObligationValidationError):
            run_async(flow.update_obligation(row, {"amount": Decimal("-5.00")}))

        assert all_rows(obligation_storage)[0].amount == Decimal("400.00")

    def test_switching_away_from_card_clears_card(self, flow):
        """Test the card is dropped when the payment type changes."""
        row = run_async(flow.create_obligation(card_payable()))[0]

        updated = run_async(flow.update_obligation(row, {"payment_type_id": "pix"}))

        assert updated.card_id is None


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_falls_back_to_memory_without_sheets(self, monkeypatch):
        """Test missing Sheets settings give working in-memory components."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()

        status = validate_all_settings()
        obligation_flow, piggy_bank_flow, executor, sheets_client = create_app_components()

        assert status["google_sheets"] is False
        assert "google_sheets_error" in status
        assert sheets_client is None
        run_async(obligation_flow.create_obligation(fixed_payable()))
        visible = run_async(executor.projected_month(ObligationKind.PAYABLE, FEB_2024))
        assert len(visible) == 1
