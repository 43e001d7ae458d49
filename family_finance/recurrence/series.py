"""
Building the rows of a new obligation.

A fixed obligation is one template row. A non-fixed obligation with N
installments becomes N rows created together, one per month, each
anchored one month after the previous. Rows 2..N point at row 1.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from family_finance.models.obligation import Obligation, ObligationDraft
from family_finance.recurrence.months import add_months


def _base_fields(draft: ObligationDraft, card_payment_type_id: Optional[str]) -> dict[str, Any]:
    pays_with_card = (
        card_payment_type_id is not None
        and draft.payment_type_id == card_payment_type_id
    )
    return {
        "kind": draft.kind,
        "owner_id": draft.owner_id,
        "description": draft.description,
        "amount": Decimal(draft.amount),
        "category_id": draft.category_id,
        "payment_type_id": draft.payment_type_id,
        "card_id": draft.card_id if pays_with_card else None,
        "expense_type": draft.expense_type,
        "income_type_id": draft.income_type_id,
        "source_id": draft.source_id,
        "payer_id": draft.payer_id,
        "responsible_person_id": draft.responsible_person_id,
    }


def build_fixed_template(
    draft: ObligationDraft,
    card_payment_type_id: Optional[str] = None,
) -> Obligation:
    """A fixed template: one row, installments = 1, no purchase date."""
    return Obligation(
        **_base_fields(draft, card_payment_type_id),
        anchor_date=draft.anchor_date,
        is_fixed=True,
        installments=1,
        current_installment=1,
        purchase_date=None,
    )


def installment_dates(first: date, installments: int) -> list[date]:
    return [add_months(first, i) for i in range(installments)]


def build_installment_series(
    draft: ObligationDraft,
    card_payment_type_id: Optional[str] = None,
) -> list[Obligation]:
    """
    All rows of an installment series, head first.

    ``draft.amount`` is the amount of one installment.
    """
    installments = draft.installments or 1
    base = _base_fields(draft, card_payment_type_id)
    dates = installment_dates(draft.anchor_date, installments)

    head = Obligation(
        **base,
        anchor_date=dates[0],
        installments=installments,
        current_installment=1,
        purchase_date=draft.purchase_date,
    )
    rows = [head]
    for position, anchor in enumerate(dates[1:], start=2):
        rows.append(Obligation(
            **base,
            anchor_date=anchor,
            installments=installments,
            current_installment=position,
            purchase_date=draft.purchase_date,
            series_head_id=head.id,
        ))
    return rows


def build_obligations(
    draft: ObligationDraft,
    card_payment_type_id: Optional[str] = None,
) -> list[Obligation]:
    """Rows to insert for a validated draft."""
    if draft.is_fixed:
        return [build_fixed_template(draft, card_payment_type_id)]
    return build_installment_series(draft, card_payment_type_id)
