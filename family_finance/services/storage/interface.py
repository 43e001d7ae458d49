"""
Abstract Storage Interface

The ledgers are accessed through abstract interfaces so that:
1. Google Sheets can be swapped for a relational database later
2. In-memory storage can be used for testing
3. Business logic stays decoupled from the storage implementation

The interface is intentionally small: generic CRUD plus the filtered
reads the reconciliation logic needs (by owner, by date range, by
linked id). There are no cross-table transactions.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from family_finance.models.audit import AuditEvent
from family_finance.models.ledger import CardTransaction, PiggyBankEntry
from family_finance.models.obligation import Obligation, ObligationKind


class ObligationStorageInterface(ABC):
    """
    Abstract interface for accounts payable / receivable storage.

    One implementation serves both ledgers; ``kind`` selects the table.
    """

    @abstractmethod
    async def save_obligation(self, obligation: Obligation) -> bool:
        """
        Insert a new obligation row.

        Raises:
            DuplicateError: If a row with this id already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def save_obligations(self, obligations: Sequence[Obligation]) -> bool:
        """
        Insert several rows in order (an installment series).

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_obligation_by_id(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> Optional[Obligation]:
        """Return the row, or None if it does not exist."""
        pass

    @abstractmethod
    async def update_obligation(self, obligation: Obligation) -> bool:
        """
        Replace an existing row.

        Raises:
            NotFoundError: If the row doesn't exist
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def delete_obligation(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> bool:
        """
        Delete a row by id.

        Returns:
            True if a row was deleted, False if none matched
        """
        pass

    @abstractmethod
    async def list_obligations(
        self,
        kind: ObligationKind,
        owner_ids: Optional[Sequence[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        template_id: Optional[UUID] = None,
        settled: Optional[bool] = None,
    ) -> list[Obligation]:
        """
        List rows of one ledger, ascending by anchor date.

        Args:
            kind: Which ledger
            owner_ids: Only rows created by these users (family scope)
            date_from: Anchor date on or after
            date_to: Anchor date on or before
            template_id: Only materializations of this fixed template
            settled: Filter by settlement state
        """
        pass


class CardTransactionStorageInterface(ABC):
    """Abstract interface for credit-card transaction storage."""

    @abstractmethod
    async def save_transaction(self, transaction: CardTransaction) -> bool:
        """
        Insert a card transaction.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[CardTransaction]:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by id.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_ids: Optional[Sequence[str]] = None,
        card_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source_obligation_id: Optional[UUID] = None,
    ) -> list[CardTransaction]:
        """List transactions, ascending by purchase date."""
        pass


class PiggyBankStorageInterface(ABC):
    """Abstract interface for the piggy-bank ledger."""

    @abstractmethod
    async def append_entry(self, entry: PiggyBankEntry) -> bool:
        pass

    @abstractmethod
    async def list_entries(
        self,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> list[PiggyBankEntry]:
        """List entries, newest first."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Events about one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
