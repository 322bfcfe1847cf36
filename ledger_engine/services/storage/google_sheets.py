"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

One spreadsheet holds one user's ledger, with a worksheet per record kind.
The spreadsheet IS the user scope: nothing here filters by user.

TRADEOFFS:
- Not suitable for high-volume data (we're fine at personal-finance scale)
- No transactions: invoice settlement relies on the compensating
  rollback of LedgerStorageInterface.apply_settlement
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_engine.config import get_settings
from ledger_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_engine.models.ledger import (
    DESCRIPTION_MAX_LENGTH,
    Account,
    AccountType,
    Category,
    CreditCard,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    StorageConnectionError,
    StorageError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# Column mappings, one list per worksheet
ACCOUNT_COLUMNS = [
    "id",
    "name",
    "type",
    "initial_balance",
    "color",
    "pix_key",
]

CARD_COLUMNS = [
    "id",
    "name",
    "limit_total",
    "closing_day",
    "due_day",
    "color",
]

CATEGORY_COLUMNS = [
    "id",
    "name",
    "icon",
    "color",
    "type",
]

TRANSACTION_COLUMNS = [
    "id",
    "description",
    "amount",
    "date",
    "type",
    "category_id",
    "account_id",
    "card_id",
    "is_paid",
    "installment_current",
    "installment_total",
    "related_transaction_id",
    "related_recurring_id",
]

RECURRING_COLUMNS = [
    "id",
    "description",
    "amount",
    "day_of_month",
    "type",
    "category_id",
    "account_id",
    "card_id",
    "active",
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

IS_PAID_COLUMN = TRANSACTION_COLUMNS.index("is_paid") + 1


def _cell(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows and empty strings."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _bool(value: str) -> bool:
    return value.strip().lower() == "true"


def _optional_int(value: str) -> Optional[int]:
    return int(value) if value else None


# =============================================================================
# ROW <-> MODEL MAPPING
# =============================================================================

def row_to_account(row: list) -> Account:
    return Account(
        id=_cell(row, 0),
        name=_cell(row, 1),
        type=AccountType(_cell(row, 2, "bank")),
        initial_balance=Decimal(_cell(row, 3, "0")),
        color=_cell(row, 4, "#64748b"),
        pix_key=_cell(row, 5) or None,
    )


def row_to_card(row: list) -> CreditCard:
    return CreditCard(
        id=_cell(row, 0),
        name=_cell(row, 1),
        limit_total=Decimal(_cell(row, 2, "0")),
        closing_day=int(_cell(row, 3, "1")),
        due_day=int(_cell(row, 4, "1")),
        color=_cell(row, 5, "#0f172a"),
    )


def row_to_category(row: list) -> Category:
    return Category(
        id=_cell(row, 0),
        name=_cell(row, 1),
        icon=_cell(row, 2, "tag"),
        color=_cell(row, 3, "#64748b"),
        type=TransactionType(_cell(row, 4, "expense")),
    )


def transaction_to_row(
    transaction: Transaction,
    description_max_length: int = DESCRIPTION_MAX_LENGTH,
) -> list:
    return [
        transaction.id,
        transaction.description[:description_max_length],
        str(transaction.amount),
        transaction.date.isoformat(),
        transaction.type.value,
        transaction.category_id,
        transaction.account_id or "",
        transaction.card_id or "",
        str(transaction.is_paid),
        str(transaction.installment_current) if transaction.installment_current else "",
        str(transaction.installment_total) if transaction.installment_total else "",
        transaction.related_transaction_id or "",
        transaction.related_recurring_id or "",
    ]


def row_to_transaction(row: list) -> Transaction:
    return Transaction(
        id=_cell(row, 0),
        description=_cell(row, 1)[:DESCRIPTION_MAX_LENGTH],
        amount=Decimal(_cell(row, 2)),
        date=date.fromisoformat(_cell(row, 3)),
        type=TransactionType(_cell(row, 4)),
        category_id=_cell(row, 5),
        account_id=_cell(row, 6) or None,
        card_id=_cell(row, 7) or None,
        is_paid=_bool(_cell(row, 8)),
        installment_current=_optional_int(_cell(row, 9)),
        installment_total=_optional_int(_cell(row, 10)),
        related_transaction_id=_cell(row, 11) or None,
        related_recurring_id=_cell(row, 12) or None,
    )


def recurring_to_row(config: RecurringTransaction) -> list:
    return [
        config.id,
        config.description,
        str(config.amount),
        str(config.day_of_month),
        config.type.value,
        config.category_id,
        config.account_id or "",
        config.card_id or "",
        str(config.active),
    ]


def row_to_recurring(row: list) -> RecurringTransaction:
    return RecurringTransaction(
        id=_cell(row, 0),
        description=_cell(row, 1)[:DESCRIPTION_MAX_LENGTH],
        amount=Decimal(_cell(row, 2)),
        day_of_month=int(_cell(row, 3)),
        type=TransactionType(_cell(row, 4)),
        category_id=_cell(row, 5),
        account_id=_cell(row, 6) or None,
        card_id=_cell(row, 7) or None,
        active=_bool(_cell(row, 8, "True")),
    )


def row_to_event(row: list) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(_cell(row, 0)),
        timestamp=datetime.fromisoformat(_cell(row, 1)),
        event_type=AuditEventType(_cell(row, 2)),
        severity=AuditSeverity(_cell(row, 3)),
        entity_type=_cell(row, 4) or None,
        entity_id=_cell(row, 5) or None,
        correlation_id=UUID(_cell(row, 6)) if _cell(row, 6) else None,
        description=_cell(row, 7),
        details=json.loads(_cell(row, 8)) if _cell(row, 8) else {},
        error_message=_cell(row, 9) or None,
        is_user_action=_bool(_cell(row, 10)),
    )


# =============================================================================
# CLIENT
# =============================================================================

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
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

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
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with a header row."""
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

    def accounts_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def cards_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.cards_sheet_name, CARD_COLUMNS)

    def categories_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.categories_sheet_name, CATEGORY_COLUMNS)

    def recurring_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.recurring_sheet_name, RECURRING_COLUMNS)

    def audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


# =============================================================================
# LEDGER STORAGE
# =============================================================================

class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Records are stored one per row; the first column is always the id.
    Rows that fail to parse are skipped and logged, never fatal.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        description_max_length: Optional[int] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._description_max_length = (
            description_max_length or get_settings().ledger.description_max_length
        )

    def _read_all(
        self,
        sheet: gspread.Worksheet,
        parse: Callable[[list], T],
    ) -> list[T]:
        records = []
        for row in sheet.get_all_values()[1:]:  # Skip header
            if not row or not row[0]:
                continue
            try:
                records.append(parse(row))
            except Exception as e:
                logger.warning(
                    "malformed_row_skipped",
                    worksheet=sheet.title,
                    row_id=row[0],
                    error=str(e),
                )
        return records

    @staticmethod
    def _row_index(sheet: gspread.Worksheet) -> dict[str, int]:
        """Map record id -> 1-based sheet row number."""
        return {
            row[0]: idx
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
            if row and row[0]
        }

    async def fetch_accounts(self) -> list[Account]:
        try:
            accounts = self._read_all(self._client.accounts_sheet(), row_to_account)
        except Exception as e:
            raise StorageError(f"Failed to fetch accounts: {e}")
        return sorted(accounts, key=lambda a: a.name)

    async def fetch_transactions(self) -> list[Transaction]:
        try:
            transactions = self._read_all(
                self._client.transactions_sheet(), row_to_transaction
            )
        except Exception as e:
            raise StorageError(f"Failed to fetch transactions: {e}")
        return sorted(transactions, key=lambda t: t.date, reverse=True)

    async def fetch_cards(self) -> list[CreditCard]:
        try:
            cards = self._read_all(self._client.cards_sheet(), row_to_card)
        except Exception as e:
            raise StorageError(f"Failed to fetch cards: {e}")
        return sorted(cards, key=lambda c: c.name)

    async def fetch_categories(self) -> list[Category]:
        try:
            categories = self._read_all(self._client.categories_sheet(), row_to_category)
        except Exception as e:
            raise StorageError(f"Failed to fetch categories: {e}")
        return sorted(categories, key=lambda c: c.name)

    async def fetch_recurring_configs(self) -> list[RecurringTransaction]:
        try:
            return self._read_all(self._client.recurring_sheet(), row_to_recurring)
        except Exception as e:
            raise StorageError(f"Failed to fetch recurring configs: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_transactions(self, transactions: list[Transaction]) -> bool:
        """Replace existing rows by id and append the rest."""
        if not transactions:
            return True
        try:
            sheet = self._client.transactions_sheet()
            index = self._row_index(sheet)

            updates = []
            appends = []
            for t in transactions:
                row = transaction_to_row(t, self._description_max_length)
                if t.id in index:
                    updates.append({
                        "range": rowcol_to_a1(index[t.id], 1),
                        "values": [row],
                    })
                else:
                    appends.append(row)

            if updates:
                sheet.batch_update(updates, value_input_option="RAW")
            if appends:
                sheet.append_rows(appends, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to upsert transactions: {e}")

    @retry(
        retry=retry_if_not_exception_type(DuplicateError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.transactions_sheet()
            if transaction.id in self._row_index(sheet):
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            sheet.append_row(
                transaction_to_row(transaction, self._description_max_length),
                value_input_option="RAW",
            )
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert transaction: {e}")

    async def mark_card_transactions_paid(
        self,
        card_id: str,
        date_from: date,
        date_to: date,
    ) -> int:
        try:
            sheet = self._client.transactions_sheet()
            updates = []
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if not row or _cell(row, 7) != card_id or _bool(_cell(row, 8)):
                    continue
                try:
                    posted = date.fromisoformat(_cell(row, 3))
                except ValueError:
                    continue
                if date_from <= posted <= date_to:
                    updates.append({
                        "range": rowcol_to_a1(idx, IS_PAID_COLUMN),
                        "values": [["True"]],
                    })

            if updates:
                sheet.batch_update(updates, value_input_option="RAW")
            return len(updates)
        except Exception as e:
            raise StorageError(f"Failed to mark card transactions paid: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        try:
            sheet = self._client.transactions_sheet()
            idx = self._row_index(sheet).get(transaction_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def save_recurring_config(self, config: RecurringTransaction) -> bool:
        try:
            sheet = self._client.recurring_sheet()
            idx = self._row_index(sheet).get(config.id)
            row = recurring_to_row(config)
            if idx is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.batch_update(
                    [{"range": rowcol_to_a1(idx, 1), "values": [row]}],
                    value_input_option="RAW",
                )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save recurring config: {e}")

    async def delete_recurring_config(self, config_id: str) -> bool:
        try:
            sheet = self._client.recurring_sheet()
            idx = self._row_index(sheet).get(config_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete recurring config: {e}")


# =============================================================================
# AUDIT STORAGE
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e))
            return False

    async def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.audit_sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(row_to_event(row))
                except Exception:
                    continue
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [
                e for e in await self._all_events()
                if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = await self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
