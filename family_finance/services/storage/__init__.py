"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory backend runs the
flows without a spreadsheet.
"""

from family_finance.services.storage.interface import (
    AuditStorageInterface,
    CardTransactionStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    ObligationStorageInterface,
    PiggyBankStorageInterface,
    StorageError,
)
from family_finance.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsCardTransactionStorage,
    GoogleSheetsClient,
    GoogleSheetsObligationStorage,
    GoogleSheetsPiggyBankStorage,
)
from family_finance.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryCardTransactionStorage,
    InMemoryObligationStorage,
    InMemoryPiggyBankStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CardTransactionStorageInterface",
    "ObligationStorageInterface",
    "PiggyBankStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsCardTransactionStorage",
    "GoogleSheetsClient",
    "GoogleSheetsObligationStorage",
    "GoogleSheetsPiggyBankStorage",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryCardTransactionStorage",
    "InMemoryObligationStorage",
    "InMemoryPiggyBankStorage",
]
