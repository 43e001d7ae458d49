"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Ranges (positive amount, installment count)
- Card payments must name a card
- This catches incomplete or malformed forms

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Purchase date after the due date
- This catches suspicious but possible data

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the flow refuses to write while there are errors.
"""

from decimal import Decimal
from typing import Optional

from family_finance.config import get_settings
from family_finance.models.obligation import (
    ObligationDraft,
    ObligationKind,
    ValidationIssue,
    ValidationResult,
)


class ObligationValidator:
    """
    Validates a new obligation draft through a two-stage pipeline.

    Stage 1: Schema validation
    Stage 2: Semantic validation
    """

    def __init__(
        self,
        card_payment_type_id: Optional[str] = None,
    ):
        """
        Initialize validator.

        Args:
            card_payment_type_id: Id of the payment type meaning "credit card".
                Defaults to the configured card payment type.
        """
        self._settings = get_settings().app
        self._card_payment_type_id = (
            card_payment_type_id or self._settings.card_payment_type
        )

    def _pays_with_card(self, draft: ObligationDraft) -> bool:
        return (
            self._card_payment_type_id is not None
            and draft.payment_type_id == self._card_payment_type_id
        )

    def _validate_schema(
        self,
        draft: ObligationDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not draft.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            ))

        if draft.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif draft.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))
        elif draft.amount.as_tuple().exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount cannot have more than two decimal places",
                severity="error",
            ))

        if draft.anchor_date is None:
            date_label = "Due date" if draft.kind == ObligationKind.PAYABLE else "Receive date"
            issues.append(ValidationIssue(
                field="anchor_date",
                issue_type="missing",
                message=f"{date_label} is required",
                severity="error",
            ))

        if draft.is_fixed:
            if draft.installments not in (None, 1):
                issues.append(ValidationIssue(
                    field="installments",
                    issue_type="ignored",
                    message="Fixed accounts repeat monthly; installments are ignored",
                    severity="info",
                ))
        elif draft.installments is None or draft.installments < 1:
            issues.append(ValidationIssue(
                field="installments",
                issue_type="invalid_value",
                message="Installments must be at least 1",
                severity="error",
            ))
        elif draft.installments > self._settings.max_installments:
            issues.append(ValidationIssue(
                field="installments",
                issue_type="invalid_value",
                message=(
                    f"At most {self._settings.max_installments} installments "
                    "are supported"
                ),
                severity="error",
            ))

        if draft.kind == ObligationKind.PAYABLE:
            if self._pays_with_card(draft) and not draft.card_id:
                issues.append(ValidationIssue(
                    field="card_id",
                    issue_type="missing",
                    message="Choose the credit card used for this payment",
                    severity="error",
                ))
            if not draft.is_fixed and draft.purchase_date is None:
                issues.append(ValidationIssue(
                    field="purchase_date",
                    issue_type="missing",
                    message="Purchase date is required for non-fixed accounts",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _validate_semantic(
        self,
        draft: ObligationDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        max_amount = Decimal(str(self._settings.max_obligation_amount))
        if draft.amount and draft.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (R$ {draft.amount:,.2f}) seems unusually high",
                severity="warning",
            ))

        if (
            draft.purchase_date
            and draft.anchor_date
            and draft.purchase_date > draft.anchor_date
        ):
            issues.append(ValidationIssue(
                field="purchase_date",
                issue_type="inconsistent",
                message="Purchase date is after the due date",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def validate(self, draft: ObligationDraft) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """Summary of validation results for display next to the form."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for issue in result.warnings:
                lines.append(f"   • {issue.message}")

        return "\n".join(lines)
