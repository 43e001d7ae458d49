"""
Google Sheets Storage Implementation

Each table of the original schema is one worksheet with a header row:
accounts_payable, accounts_receivable, credit_card_transactions,
piggy_bank_entries and the audit log. Column names follow the original
schema (due_date / receive_date, paid / received,
original_fixed_account_id), so the sheets can be exported back.

TRADEOFFS:
- Not suitable for high-volume data (fine for a household)
- No transactions (the flows order their writes carefully)
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from family_finance.config import get_settings
from family_finance.models.audit import AuditEvent, AuditEventType, AuditSeverity
from family_finance.models.ledger import (
    CardTransaction,
    PiggyBankEntry,
    PiggyBankEntryType,
)
from family_finance.models.obligation import (
    ExpenseType,
    Obligation,
    ObligationKind,
)
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


PAYABLE_COLUMNS = [
    "id",
    "created_by",
    "description",
    "amount",
    "due_date",
    "is_fixed",
    "installments",
    "current_installment",
    "original_fixed_account_id",
    "paid",
    "paid_date",
    "category_id",
    "payment_type_id",
    "card_id",
    "purchase_date",
    "expense_type",
    "responsible_person_id",
    "created_at",
    "updated_at",
]

RECEIVABLE_COLUMNS = [
    "id",
    "created_by",
    "description",
    "amount",
    "receive_date",
    "is_fixed",
    "installments",
    "current_installment",
    "original_fixed_account_id",
    "received",
    "received_date",
    "income_type_id",
    "source_id",
    "payer_id",
    "responsible_person_id",
    "created_at",
    "updated_at",
]

CARD_TRANSACTION_COLUMNS = [
    "id",
    "created_by",
    "description",
    "amount",
    "card_id",
    "category_id",
    "purchase_date",
    "installments",
    "current_installment",
    "is_fixed",
    "original_fixed_transaction_id",
    "account_payable_id",
    "created_at",
]

PIGGY_BANK_COLUMNS = [
    "id",
    "user_id",
    "description",
    "amount",
    "entry_date",
    "type",
    "bank_id",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Columns whose name differs between the two obligation ledgers
_ANCHOR_COLUMN = {
    ObligationKind.PAYABLE: "due_date",
    ObligationKind.RECEIVABLE: "receive_date",
}
_SETTLED_COLUMN = {
    ObligationKind.PAYABLE: "paid",
    ObligationKind.RECEIVABLE: "received",
}
_SETTLED_DATE_COLUMN = {
    ObligationKind.PAYABLE: "paid_date",
    ObligationKind.RECEIVABLE: "received_date",
}
_COLUMNS = {
    ObligationKind.PAYABLE: PAYABLE_COLUMNS,
    ObligationKind.RECEIVABLE: RECEIVABLE_COLUMNS,
}


def _as_record(columns: list[str], row: list) -> dict[str, str]:
    """Zip a row with its header; missing trailing cells become ""."""
    padded = list(row) + [""] * (len(columns) - len(row))
    return dict(zip(columns, padded))


def _date_or_none(value: str) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _iso_or_blank(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def _bool(value: str) -> bool:
    return value.strip().lower() == "true"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Establish connection using service account credentials."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_obligations_sheet(self, kind: ObligationKind) -> gspread.Worksheet:
        if kind == ObligationKind.PAYABLE:
            title = self._settings.payables_sheet_name
        else:
            title = self._settings.receivables_sheet_name
        return self.get_sheet(title, _COLUMNS[kind])

    def get_card_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.card_transactions_sheet_name,
            CARD_TRANSACTION_COLUMNS,
        )

    def get_piggy_bank_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.piggy_bank_sheet_name, PIGGY_BANK_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


def _find_row_index(sheet: gspread.Worksheet, row_id: str) -> Optional[int]:
    """1-based sheet row of the record with this id (row 1 is the header)."""
    for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
        if row and row[0] == row_id:
            return idx
    return None


class GoogleSheetsObligationStorage(ObligationStorageInterface):
    """
    Google Sheets implementation of obligation storage.

    ``template_id`` and ``series_head_id`` share the
    ``original_fixed_account_id`` column: series rows always have
    installments > 1, template materializations always have 1.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _obligation_to_row(self, obligation: Obligation) -> list:
        kind = obligation.kind
        link = obligation.template_id or obligation.series_head_id
        record: dict[str, Any] = {
            "id": str(obligation.id),
            "created_by": obligation.owner_id,
            "description": obligation.description,
            "amount": str(obligation.amount),
            _ANCHOR_COLUMN[kind]: obligation.anchor_date.isoformat(),
            "is_fixed": str(obligation.is_fixed),
            "installments": str(obligation.installments),
            "current_installment": str(obligation.current_installment),
            "original_fixed_account_id": str(link) if link else "",
            _SETTLED_COLUMN[kind]: str(obligation.settled),
            _SETTLED_DATE_COLUMN[kind]: _iso_or_blank(obligation.settled_date),
            "category_id": obligation.category_id or "",
            "payment_type_id": obligation.payment_type_id or "",
            "card_id": obligation.card_id or "",
            "purchase_date": _iso_or_blank(obligation.purchase_date),
            "expense_type": obligation.expense_type.value,
            "income_type_id": obligation.income_type_id or "",
            "source_id": obligation.source_id or "",
            "payer_id": obligation.payer_id or "",
            "responsible_person_id": obligation.responsible_person_id or "",
            "created_at": obligation.created_at.isoformat(),
            "updated_at": obligation.updated_at.isoformat(),
        }
        return [record[column] for column in _COLUMNS[kind]]

    def _row_to_obligation(self, kind: ObligationKind, row: list) -> Obligation:
        record = _as_record(_COLUMNS[kind], row)

        installments = int(record["installments"] or 1)
        link = UUID(record["original_fixed_account_id"]) if record["original_fixed_account_id"] else None

        return Obligation(
            id=UUID(record["id"]),
            kind=kind,
            owner_id=record["created_by"],
            description=record["description"],
            amount=Decimal(record["amount"]),
            anchor_date=date.fromisoformat(record[_ANCHOR_COLUMN[kind]]),
            is_fixed=_bool(record["is_fixed"]),
            installments=installments,
            current_installment=int(record["current_installment"] or 1),
            template_id=link if installments == 1 else None,
            series_head_id=link if installments > 1 else None,
            settled=_bool(record[_SETTLED_COLUMN[kind]]),
            settled_date=_date_or_none(record[_SETTLED_DATE_COLUMN[kind]]),
            category_id=record.get("category_id") or None,
            payment_type_id=record.get("payment_type_id") or None,
            card_id=record.get("card_id") or None,
            purchase_date=_date_or_none(record.get("purchase_date", "")),
            expense_type=ExpenseType(record.get("expense_type") or ExpenseType.VARIABLE.value),
            income_type_id=record.get("income_type_id") or None,
            source_id=record.get("source_id") or None,
            payer_id=record.get("payer_id") or None,
            responsible_person_id=record["responsible_person_id"] or None,
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(record["updated_at"]),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def save_obligation(self, obligation: Obligation) -> bool:
        try:
            sheet = self._client.get_obligations_sheet(obligation.kind)
            if _find_row_index(sheet, str(obligation.id)):
                raise DuplicateError(f"Obligation already exists: {obligation.id}")
            sheet.append_row(self._obligation_to_row(obligation), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save obligation: {e}")

    async def save_obligations(self, obligations: Sequence[Obligation]) -> bool:
        if not obligations:
            return True
        kinds = {o.kind for o in obligations}
        if len(kinds) != 1:
            raise StorageError("Cannot save obligations of different kinds together")
        try:
            sheet = self._client.get_obligations_sheet(kinds.pop())
            rows = [self._obligation_to_row(o) for o in obligations]
            sheet.append_rows(rows, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save obligations: {e}")

    async def get_obligation_by_id(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> Optional[Obligation]:
        try:
            sheet = self._client.get_obligations_sheet(kind)
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(obligation_id):
                    return self._row_to_obligation(kind, row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get obligation: {e}")

    async def update_obligation(self, obligation: Obligation) -> bool:
        try:
            sheet = self._client.get_obligations_sheet(obligation.kind)
            idx = _find_row_index(sheet, str(obligation.id))
            if idx is None:
                raise NotFoundError(f"Obligation not found: {obligation.id}")

            obligation.updated_at = datetime.utcnow()
            new_row = self._obligation_to_row(obligation)
            for col_idx, value in enumerate(new_row, start=1):
                sheet.update_cell(idx, col_idx, value)
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update obligation: {e}")

    async def delete_obligation(
        self,
        kind: ObligationKind,
        obligation_id: UUID,
    ) -> bool:
        try:
            sheet = self._client.get_obligations_sheet(kind)
            idx = _find_row_index(sheet, str(obligation_id))
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete obligation: {e}")

    async def list_obligations(
        self,
        kind: ObligationKind,
        owner_ids: Optional[Sequence[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        template_id: Optional[UUID] = None,
        settled: Optional[bool] = None,
    ) -> list[Obligation]:
        try:
            sheet = self._client.get_obligations_sheet(kind)
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list obligations: {e}")

        obligations = []
        for row in rows:
            if not row or not row[0]:
                continue
            obligation = self._row_to_obligation(kind, row)

            if owner_ids is not None and obligation.owner_id not in owner_ids:
                continue
            if date_from and obligation.anchor_date < date_from:
                continue
            if date_to and obligation.anchor_date > date_to:
                continue
            if template_id and obligation.template_id != template_id:
                continue
            if settled is not None and obligation.settled != settled:
                continue

            obligations.append(obligation)

        obligations.sort(key=lambda o: o.anchor_date)
        return obligations


class GoogleSheetsCardTransactionStorage(CardTransactionStorageInterface):
    """Google Sheets implementation of card transaction storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _transaction_to_row(self, transaction: CardTransaction) -> list:
        return [
            str(transaction.id),
            transaction.owner_id,
            transaction.description,
            str(transaction.amount),
            transaction.card_id,
            transaction.category_id or "",
            transaction.purchase_date.isoformat(),
            str(transaction.installments),
            str(transaction.current_installment),
            str(transaction.is_fixed),
            str(transaction.original_fixed_transaction_id) if transaction.original_fixed_transaction_id else "",
            str(transaction.source_obligation_id) if transaction.source_obligation_id else "",
            transaction.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> CardTransaction:
        record = _as_record(CARD_TRANSACTION_COLUMNS, row)
        return CardTransaction(
            id=UUID(record["id"]),
            owner_id=record["created_by"],
            description=record["description"],
            amount=Decimal(record["amount"]),
            card_id=record["card_id"],
            category_id=record["category_id"] or None,
            purchase_date=date.fromisoformat(record["purchase_date"]),
            installments=int(record["installments"] or 1),
            current_installment=int(record["current_installment"] or 1),
            is_fixed=_bool(record["is_fixed"]),
            original_fixed_transaction_id=(
                UUID(record["original_fixed_transaction_id"])
                if record["original_fixed_transaction_id"] else None
            ),
            source_obligation_id=(
                UUID(record["account_payable_id"])
                if record["account_payable_id"] else None
            ),
            created_at=datetime.fromisoformat(record["created_at"]),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_transaction(self, transaction: CardTransaction) -> bool:
        try:
            sheet = self._client.get_card_transactions_sheet()
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save card transaction: {e}")

    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[CardTransaction]:
        try:
            sheet = self._client.get_card_transactions_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(transaction_id):
                    return self._row_to_transaction(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get card transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            sheet = self._client.get_card_transactions_sheet()
            idx = _find_row_index(sheet, str(transaction_id))
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete card transaction: {e}")

    async def list_transactions(
        self,
        owner_ids: Optional[Sequence[str]] = None,
        card_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source_obligation_id: Optional[UUID] = None,
    ) -> list[CardTransaction]:
        try:
            sheet = self._client.get_card_transactions_sheet()
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list card transactions: {e}")

        transactions = []
        for row in rows:
            if not row or not row[0]:
                continue
            transaction = self._row_to_transaction(row)

            if owner_ids is not None and transaction.owner_id not in owner_ids:
                continue
            if card_id and transaction.card_id != card_id:
                continue
            if date_from and transaction.purchase_date < date_from:
                continue
            if date_to and transaction.purchase_date > date_to:
                continue
            if source_obligation_id and transaction.source_obligation_id != source_obligation_id:
                continue

            transactions.append(transaction)

        transactions.sort(key=lambda t: t.purchase_date)
        return transactions


class GoogleSheetsPiggyBankStorage(PiggyBankStorageInterface):
    """Google Sheets implementation of the piggy-bank ledger."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_entry(self, entry: PiggyBankEntry) -> bool:
        try:
            sheet = self._client.get_piggy_bank_sheet()
            sheet.append_row([
                str(entry.id),
                entry.owner_id,
                entry.description,
                str(entry.amount),
                entry.entry_date.isoformat(),
                entry.entry_type.value,
                entry.bank_id or "",
                entry.created_at.isoformat(),
            ], value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save piggy bank entry: {e}")

    async def list_entries(
        self,
        owner_ids: Optional[Sequence[str]] = None,
    ) -> list[PiggyBankEntry]:
        try:
            sheet = self._client.get_piggy_bank_sheet()
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list piggy bank entries: {e}")

        entries = []
        for row in rows:
            if not row or not row[0]:
                continue
            record = _as_record(PIGGY_BANK_COLUMNS, row)
            if owner_ids is not None and record["user_id"] not in owner_ids:
                continue
            entries.append(PiggyBankEntry(
                id=UUID(record["id"]),
                owner_id=record["user_id"],
                description=record["description"],
                amount=Decimal(record["amount"]),
                entry_date=date.fromisoformat(record["entry_date"]),
                entry_type=PiggyBankEntryType(record["type"]),
                bank_id=record["bank_id"] or None,
                created_at=datetime.fromisoformat(record["created_at"]),
            ))

        entries.sort(key=lambda e: e.entry_date, reverse=True)
        return entries


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        record = _as_record(AUDIT_COLUMNS, row)
        return AuditEvent(
            event_id=UUID(record["event_id"]),
            timestamp=datetime.fromisoformat(record["timestamp"]),
            event_type=AuditEventType(record["event_type"]),
            severity=AuditSeverity(record["severity"]),
            entity_type=record["entity_type"] or None,
            entity_id=record["entity_id"] or None,
            correlation_id=UUID(record["correlation_id"]) if record["correlation_id"] else None,
            description=record["description"],
            details=json.loads(record["details_json"]) if record["details_json"] else {},
            error_message=record["error_message"] or None,
            is_user_action=_bool(record["is_user_action"]),
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return [self._row_to_event(row) for row in rows if row and row[0]]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._read_events(), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
