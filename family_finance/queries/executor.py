"""
Query Execution Engine

Read-only views over the ledgers: the month summary shown above the
payables / receivables list and the card statement for one month.

DESIGN DECISION: Summaries are computed from the same projection the
list shows, so a fixed template counts in every month it is visible
in, and a materialized month is never counted twice.
"""

from decimal import Decimal
from typing import Optional, Sequence

from family_finance.models.ledger import CardStatement
from family_finance.models.obligation import (
    MonthSummary,
    ObligationKind,
    ProjectedObligation,
)
from family_finance.recurrence.months import YearMonth
from family_finance.recurrence.projector import project
from family_finance.services.storage import (
    CardTransactionStorageInterface,
    ObligationStorageInterface,
)


UNASSIGNED_RESPONSIBLE = "unassigned"


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class QueryExecutor:
    """
    Executes read queries against obligation and card storage.

    GUARANTEES:
    - Only returns real data from storage (plus projected occurrences)
    - Never writes
    """

    def __init__(
        self,
        obligation_storage: ObligationStorageInterface,
        card_storage: Optional[CardTransactionStorageInterface] = None,
    ):
        self._obligations = obligation_storage
        self._cards = card_storage

    async def projected_month(
        self,
        kind: ObligationKind,
        month: YearMonth,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> list[ProjectedObligation]:
        """Rows and generated occurrences visible in the month."""
        # Nothing anchored after the month can be visible in it
        rows = await self._obligations.list_obligations(
            kind,
            owner_ids=owner_ids,
            date_to=month.last_day,
        )
        return project(rows, month)

    async def month_summary(
        self,
        kind: ObligationKind,
        month: YearMonth,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> MonthSummary:
        """
        Totals of one ledger for one month.

        Each visible row counts with its own amount. An installment
        series has one row per month, so its total value is spread over
        the months instead of counted in each.
        """
        visible = await self.projected_month(kind, month, owner_ids)

        forecast = Decimal("0")
        settled = Decimal("0")
        by_responsible: dict[str, Decimal] = {}

        for obligation in visible:
            value = obligation.amount
            forecast += value
            if obligation.settled:
                settled += value
                key = obligation.responsible_person_id or UNASSIGNED_RESPONSIBLE
                by_responsible[key] = by_responsible.get(key, Decimal("0")) + value

        return MonthSummary(
            kind=kind,
            month=month,
            obligation_count=len(visible),
            forecast_total=forecast,
            settled_total=settled,
            outstanding_total=forecast - settled,
            settled_by_responsible=by_responsible,
        )

    async def card_statement(
        self,
        card_id: str,
        month: YearMonth,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> CardStatement:
        """Card transactions purchased in the month, oldest first."""
        if self._cards is None:
            raise QueryExecutionError("Card transaction storage is not configured")
        if not card_id:
            raise QueryExecutionError("A card id is required for a statement")

        transactions = await self._cards.list_transactions(
            owner_ids=owner_ids,
            card_id=card_id,
            date_from=month.first_day,
            date_to=month.last_day,
        )
        return CardStatement(
            card_id=card_id,
            month=month,
            transactions=transactions,
        )
