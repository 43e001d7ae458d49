"""Tests for the two-stage obligation validator."""

from datetime import date
from decimal import Decimal

import pytest

from family_finance.models.obligation import ObligationDraft, ObligationKind
from family_finance.validation import ObligationValidator


@pytest.fixture
def validator():
    return ObligationValidator(card_payment_type_id="cartao")


def draft(**overrides) -> ObligationDraft:
    fields = {
        "kind": ObligationKind.PAYABLE,
        "owner_id": "user-ana",
        "description": "Mercado",
        "amount": Decimal("320.00"),
        "anchor_date": date(2024, 2, 10),
        "purchase_date": date(2024, 2, 1),
        "installments": 1,
    }
    fields.update(overrides)
    return ObligationDraft(**fields)


def issue_fields(result, severity="error"):
    return {i.field for i in result.issues if i.severity == severity}


class TestSchemaStage:
    """Tests for stage 1."""

    def test_valid_payable(self, validator):
        """Test a complete payable passes both stages."""
        result = validator.validate(draft())
        assert result.schema_valid
        assert result.semantic_valid
        assert result.is_valid
        assert result.issues == []

    def test_missing_required_fields(self, validator):
        """Test description, amount and date are required."""
        result = validator.validate(draft(description=None, amount=None, anchor_date=None))
        assert not result.schema_valid
        assert {"description", "amount", "anchor_date"} <= issue_fields(result)

    def test_zero_amount(self, validator):
        """Test the amount must be positive."""
        result = validator.validate(draft(amount=Decimal("0")))
        assert "amount" in issue_fields(result)

    def test_too_many_decimal_places(self, validator):
        """Test amounts are limited to cents."""
        result = validator.validate(draft(amount=Decimal("10.005")))
        assert "amount" in issue_fields(result)

    def test_card_payment_requires_card(self, validator):
        """Test choosing the card payment type without a card is an error."""
        result = validator.validate(draft(payment_type_id="cartao", card_id=None))
        assert "card_id" in issue_fields(result)

    def test_card_payment_with_card(self, validator):
        """Test a card payment naming a card passes."""
        result = validator.validate(draft(payment_type_id="cartao", card_id="card-1"))
        assert result.is_valid

    def test_purchase_date_required_for_non_fixed_payable(self, validator):
        """Test installment payables need a purchase date."""
        result = validator.validate(draft(purchase_date=None))
        assert "purchase_date" in issue_fields(result)

    def test_purchase_date_not_required_for_fixed(self, validator):
        """Test fixed payables have no purchase date."""
        result = validator.validate(draft(is_fixed=True, purchase_date=None))
        assert result.is_valid

    def test_purchase_date_not_required_for_receivable(self, validator):
        """Test receivables have no purchase date."""
        result = validator.validate(
            draft(kind=ObligationKind.RECEIVABLE, purchase_date=None)
        )
        assert result.is_valid

    def test_installments_bounds(self, validator):
        """Test installments must be between 1 and the configured maximum."""
        assert "installments" in issue_fields(validator.validate(draft(installments=0)))
        assert "installments" in issue_fields(validator.validate(draft(installments=121)))
        assert validator.validate(draft(installments=120)).is_valid

    def test_fixed_installments_ignored(self, validator):
        """Test installments on a fixed draft are reported, not rejected."""
        result = validator.validate(draft(is_fixed=True, installments=6))
        assert result.is_valid
        assert "installments" in issue_fields(result, severity="info")

    def test_schema_failure_skips_semantic_stage(self, validator):
        """Test stage 2 does not run when stage 1 fails."""
        result = validator.validate(
            draft(description=None, purchase_date=date(2024, 3, 1))
        )
        assert not result.schema_valid
        assert not result.semantic_valid
        assert result.warnings == []


class TestSemanticStage:
    """Tests for stage 2."""

    def test_unusually_high_amount_is_warning(self, validator):
        """Test huge amounts are flagged, not rejected."""
        result = validator.validate(draft(amount=Decimal("2000000.00")))
        assert result.is_valid
        assert "amount" in issue_fields(result, severity="warning")

    def test_purchase_after_due_date_is_warning(self, validator):
        """Test an inconsistent purchase date is flagged."""
        result = validator.validate(draft(purchase_date=date(2024, 2, 20)))
        assert result.is_valid
        assert "purchase_date" in issue_fields(result, severity="warning")


class TestUserFriendlySummary:
    """Tests for the display summary."""

    def test_all_good(self, validator):
        """Test the message when nothing is wrong."""
        result = validator.validate(draft())
        assert validator.get_user_friendly_summary(result) == "All checks passed."

    def test_lists_errors(self, validator):
        """Test errors are listed by message."""
        result = validator.validate(draft(description=None))
        summary = validator.get_user_friendly_summary(result)
        assert "Please fix the following:" in summary
        assert "Description is required" in summary
