"""
Occurrence Projector

Given every obligation of one ledger and a target month, compute what
is visible in that month:

1. Rows whose anchor date is in the month are shown as they are
   (including a fixed template in its own home month).
2. A fixed template anchored before the month is shown as a
   VirtualOccurrence, unless a real row materializing it for that
   month already exists. The real row is authoritative.
3. Everything else is hidden.

The projector is a pure function: no storage access, no clock.
"""

from typing import Iterable, Sequence
from uuid import UUID

from family_finance.models.obligation import (
    Obligation,
    ProjectedObligation,
    VirtualOccurrence,
    virtual_occurrence_id,
)
from family_finance.recurrence.months import YearMonth


def generate_occurrence(template: Obligation, month: YearMonth) -> VirtualOccurrence:
    """
    Clone a fixed template into the given month.

    The day of month is kept, clamped to the last day of short months.
    """
    data = template.model_dump(exclude={"id", "created_at", "updated_at"})
    data.update(
        id=virtual_occurrence_id(template.id, month),
        anchor_date=month.day(template.anchor_date.day),
        settled=False,
        settled_date=None,
        template_id=template.id,
    )
    return VirtualOccurrence(**data)


def materialized_templates(
    obligations: Iterable[Obligation],
    month: YearMonth,
) -> set[UUID]:
    """Ids of templates that already have a real row in the month."""
    return {
        o.template_id
        for o in obligations
        if o.template_id is not None and month.contains(o.anchor_date)
    }


def project(
    obligations: Sequence[Obligation],
    target_month: YearMonth,
) -> list[ProjectedObligation]:
    """
    Obligations visible in ``target_month``, sorted by anchor date.

    Ties keep input order.
    """
    materialized = materialized_templates(obligations, target_month)
    projected: list[ProjectedObligation] = []

    for obligation in obligations:
        if target_month.contains(obligation.anchor_date):
            # A template settled in its home month is represented by its
            # materialization.
            if obligation.is_fixed and obligation.id in materialized:
                continue
            projected.append(obligation)
        elif obligation.is_fixed and obligation.anchor_date <= target_month.last_day:
            if obligation.id in materialized:
                continue
            projected.append(generate_occurrence(obligation, target_month))

    projected.sort(key=lambda o: o.anchor_date)
    return projected
