"""
In-Memory Storage Implementation

Dict-backed implementations of the storage interfaces. Used by the
test suite and for running the flows without a spreadsheet.

Rows are stored as copies so callers cannot mutate stored state
by holding on to a returned model.
"""

from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from family_finance.models.audit import AuditEvent
from family_finance.models.ledger import CardTransaction, PiggyBankEntry
from family_finance.models.obligation import Obligation, ObligationKind
from family_finance.services.storage.interface import (
    AuditStorageInterface,
    CardTransactionStorageInterface,
    DuplicateError,
    NotFoundError,
    ObligationStorageInterface,
    PiggyBankStorageInterface,
)


def _in_range(d: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and d < date_from:
        return False
    if date_to and d > date_to:
        return False
    return True


class InMemoryObligationStorage(ObligationStorageInterface):
    """Obligations kept in one dict per ledger, in insertion order."""

    def __init__(self):
        self._tables: dict[ObligationKind, dict[UUID, Obligation]] = {
            kind: {} for kind in ObligationKind
        }

    async def save_obligation(self, obligation: Obligation) -> bool:
        table = self._tables[obligation.kind]
        if obligation.id in table:
            raise DuplicateError(f"Obligation already exists: {obligation.id}")
        table[obligation.id] = obligation.model_copy(deep=True)
        return True

    async def save_obligations(self, obligations: Sequence[Obligation]) -> bool:
        for obligation in obligations:
            await self.save_obligation(obligation)
        return True

    async def get_obligation_by_id(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> Optional[Obligation]:
        found = self._tables[kind].get(obligation_id)
        return found.model_copy(deep=True) if found else None

    async def update_obligation(self, obligation: Obligation) -> bool:
        table = self._tables[obligation.kind]
        if obligation.id not in table:
            raise NotFoundError(f"Obligation not found: {obligation.id}")
        table[obligation.id] = obligation.model_copy(deep=True)
        return True

    async def delete_obligation(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> bool:
        return self._tables[kind].pop(obligation_id, None) is not None

    async def list_obligations(
        self,
        kind: ObligationKind,
        owner_ids: Optional[Sequence[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        template_id: Optional[UUID] = None,
        settled: Optional[bool] = None,
    ) -> list[Obligation]:
        rows = []
        for obligation in self._tables[kind].values():
            if owner_ids is not None and obligation.owner_id not in owner_ids:
                continue
            if not _in_range(obligation.anchor_date, date_from, date_to):
                continue
            if template_id and obligation.template_id != template_id:
                continue
            if settled is not None and obligation.settled != settled:
                continue
            rows.append(obligation.model_copy(deep=True))

        rows.sort(key=lambda o: o.anchor_date)
        return rows


class InMemoryCardTransactionStorage(CardTransactionStorageInterface):

    def __init__(self):
        self._rows: dict[UUID, CardTransaction] = {}

    async def save_transaction(self, transaction: CardTransaction) -> bool:
        if transaction.id in self._rows:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._rows[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[CardTransaction]:
        found = self._rows.get(transaction_id)
        return found.model_copy(deep=True) if found else None

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._rows.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        owner_ids: Optional[Sequence[str]] = None,
        card_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source_obligation_id: Optional[UUID] = None,
    ) -> list[CardTransaction]:
        rows = []
        for transaction in self._rows.values():
            if owner_ids is not None and transaction.owner_id not in owner_ids:
                continue
            if card_id and transaction.card_id != card_id:
                continue
            if not _in_range(transaction.purchase_date, date_from, date_to):
                continue
            if (
                source_obligation_id
                and transaction.source_obligation_id != source_obligation_id
            ):
                continue
            rows.append(transaction.model_copy(deep=True))

        rows.sort(key=lambda t: t.purchase_date)
        return rows


class InMemoryPiggyBankStorage(PiggyBankStorageInterface):

    def __init__(self):
        self._entries: list[PiggyBankEntry] = []

    async def append_entry(self, entry: PiggyBankEntry) -> bool:
        self._entries.append(entry.model_copy(deep=True))
        return True

    async def list_entries(
        self,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> list[PiggyBankEntry]:
        entries = [
            e.model_copy(deep=True)
            for e in self._entries
            if owner_ids is None or e.owner_id in owner_ids
        ]
        entries.sort(key=lambda e: e.entry_date, reverse=True)
        return entries


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
