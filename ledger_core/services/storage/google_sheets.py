"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a backend because:
1. Non-technical users can look at their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for personal/household ledgers)
- No transactions (saving an account rewrites its rows in one update)
- Limited query capabilities (we filter in Python)

Layout:
- Transactions sheet: one row per transaction, first column is the account id
- Patterns sheet: one row per account, the whole document as a JSON cell
- Audit sheet: one row per event
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_core.config import GoogleSheetsSettings, get_settings
from ledger_core.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_core.models.ledger import Transaction
from ledger_core.models.patterns import PatternsDocument
from ledger_core.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
)


TRANSACTION_COLUMNS = [
    "account_id",
    "id",
    "date",
    "amount",
    "category",
    "description",
    "payer",
    "split_json",
    "split_among_json",
    "settled",
    "settled_at",
]

PATTERN_COLUMNS = [
    "account_id",
    "document_json",
    "last_updated",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "account_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _safe_getter(row: list):
    """Missing trailing cells come back as empty strings."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
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
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Transactions as rows, one account's rows among everyone's.

    Saving rewrites the sheet body: other accounts' rows are kept as-is,
    this account's rows are replaced. The new body is written before any
    leftover tail is cleared, so a failed write never drops rows.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
        )

    def _transaction_to_row(self, account_id: str, txn: Transaction) -> list:
        return [
            account_id,
            txn.id,
            txn.date.isoformat(),
            str(txn.amount),
            txn.category,
            txn.description or "",
            txn.payer or "",
            json.dumps({k: str(v) for k, v in txn.split.items()}) if txn.split else "",
            json.dumps(txn.split_among) if txn.split_among is not None else "",
            str(txn.settled),
            txn.settled_at.isoformat() if txn.settled_at else "",
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        safe_get = _safe_getter(row)
        split_json = safe_get(7)
        among_json = safe_get(8)
        return Transaction(
            id=safe_get(1),
            date=date.fromisoformat(safe_get(2)),
            amount=Decimal(safe_get(3)),
            category=safe_get(4) or "Other",
            description=safe_get(5) or None,
            payer=safe_get(6) or None,
            split={k: Decimal(v) for k, v in json.loads(split_json).items()} if split_json else None,
            split_among=json.loads(among_json) if among_json else None,
            settled=safe_get(9).lower() == "true",
            settled_at=datetime.fromisoformat(safe_get(10)) if safe_get(10) else None,
        )

    async def get_transactions(self, account_id: str) -> list[Transaction]:
        try:
            rows = self._sheet().get_all_values()[1:]
            return [
                self._row_to_transaction(row)
                for row in rows
                if row and row[0] == account_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get transactions: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_transactions(self, account_id: str, transactions: list[Transaction]) -> bool:
        try:
            sheet = self._sheet()
            existing = sheet.get_all_values()[1:]
            kept = [row for row in existing if row and row[0] != account_id]
            ours = [self._transaction_to_row(account_id, t) for t in transactions]

            values = kept + ours

            # Overwrite first, then clear only the rows past the new end.
            # A failed update leaves the previous body intact.
            if values:
                sheet.update(
                    range_name="A2",
                    values=values,
                    value_input_option="RAW",
                )
            if len(existing) > len(values):
                sheet.batch_clear([f"A{len(values) + 2}:K{len(existing) + 1}"])
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transactions: {e}")


class GoogleSheetsPatternStorage(PatternStorageInterface):
    """The patterns document as a single JSON cell per account."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.patterns_sheet_name,
            PATTERN_COLUMNS,
        )

    async def get_patterns(self, account_id: str) -> Optional[PatternsDocument]:
        try:
            for row in self._sheet().get_all_values()[1:]:
                if row and row[0] == account_id:
                    document_json = _safe_getter(row)(1)
                    return PatternsDocument.model_validate_json(document_json) if document_json else None
            return None
        except Exception as e:
            raise StorageError(f"Failed to get patterns: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_patterns(self, account_id: str, document: PatternsDocument) -> bool:
        try:
            sheet = self._sheet()
            row = [
                account_id,
                document.model_dump_json(by_alias=True),
                document.last_updated.isoformat() if document.last_updated else "",
            ]

            all_rows = sheet.get_all_values()
            for idx, existing in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if existing and existing[0] == account_id:
                    sheet.update(
                        range_name=f"A{idx}:C{idx}",
                        values=[row],
                        value_input_option="RAW",
                    )
                    return True

            sheet.append_row(row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save patterns: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            account_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if row and row[0]:
                events.append(self._row_to_event(row))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        try:
            return [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
        account_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if account_id is None or e.account_id == account_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
