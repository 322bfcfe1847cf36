"""Tests for the storage backends. Google Sheets is mocked."""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from ledger_engine.models.audit import AuditEventBuilder
from ledger_engine.models.ledger import (
    AccountType,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from ledger_engine.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    StorageError,
)
from ledger_engine.services.storage.google_sheets import (
    ACCOUNT_COLUMNS,
    AUDIT_COLUMNS,
    RECURRING_COLUMNS,
    TRANSACTION_COLUMNS,
    row_to_event,
    row_to_transaction,
    transaction_to_row,
)

TX_ROWS = [
    TRANSACTION_COLUMNS,
    ["tx-1", "Coffee", "4.50", "2024-03-02", "expense", "cat-food", "", "card-visa",
     "False", "", "", "", ""],
    ["tx-2", "Book", "30.00", "2024-03-20", "expense", "cat-books", "", "card-visa",
     "False", "1", "2", "grp-1", ""],
    ["tx-3", "Old", "10.00", "2024-02-27", "expense", "cat-food", "", "card-visa",
     "False", "", "", "", ""],
    ["tx-4", "Salary", "3000.00", "2024-03-01", "income", "cat-salary", "acc-1", "",
     "True", "", "", "", ""],
]


def _sheet(rows, title="Transactions"):
    sheet = MagicMock()
    sheet.title = title
    sheet.get_all_values.return_value = rows
    return sheet


class SlowFlipStorage(InMemoryLedgerStorage):
    """Storage whose status flip never finishes in time."""

    async def mark_card_transactions_paid(self, card_id, date_from, date_to):
        await asyncio.sleep(5)
        return await super().mark_card_transactions_paid(card_id, date_from, date_to)


@pytest.fixture
def tx_sheet():
    return _sheet([list(r) for r in TX_ROWS])


@pytest.fixture
def sheets_client(tx_sheet):
    client = MagicMock()
    client.transactions_sheet.return_value = tx_sheet
    return client


@pytest.fixture
def sheets_storage(sheets_client):
    return GoogleSheetsLedgerStorage(sheets_client, description_max_length=100)


class TestInMemoryLedgerStorage:
    """Tests for the in-memory backend."""

    @pytest.mark.asyncio
    async def test_transactions_newest_first(self, storage):
        transactions = await storage.fetch_transactions()
        assert [t.id for t in transactions] == ["tx-card-3", "tx-card-2", "tx-card-1"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self, storage):
        original = storage.transactions["tx-card-1"]
        changed = original.model_copy(update={"description": "Changed"})
        await storage.upsert_transactions([changed])
        assert storage.transactions["tx-card-1"].description == "Changed"
        assert len(storage.transactions) == 3

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, storage):
        with pytest.raises(DuplicateError):
            await storage.insert_transaction(storage.transactions["tx-card-1"])

    @pytest.mark.asyncio
    async def test_insert_requires_id(self, storage):
        draft = Transaction(amount=Decimal("1"), date=date(2024, 3, 1), type=TransactionType.EXPENSE)
        with pytest.raises(StorageError):
            await storage.insert_transaction(draft)

    @pytest.mark.asyncio
    async def test_mark_paid_returns_count(self, storage, card):
        updated = await storage.mark_card_transactions_paid(
            card.id, date(2024, 3, 1), date(2024, 3, 15)
        )
        assert updated == 2
        assert storage.transactions["tx-card-3"].is_paid is False

    @pytest.mark.asyncio
    async def test_fail_on(self, checking):
        storage = InMemoryLedgerStorage(accounts=[checking], fail_on={"fetch_accounts"})
        with pytest.raises(StorageError):
            await storage.fetch_accounts()

    @pytest.mark.asyncio
    async def test_rollback_when_flip_fails(self, storage, checking, card):
        """apply_settlement removes the payment when the status flip fails."""
        storage.fail_on = {"mark_card_transactions_paid"}
        payment = Transaction(
            id="pay-1",
            amount=Decimal("300"),
            date=date(2024, 4, 5),
            type=TransactionType.EXPENSE,
            account_id=checking.id,
            is_paid=True,
        )
        with pytest.raises(StorageError, match="rolled back"):
            await storage.apply_settlement(payment, card.id, date(2024, 3, 1), date(2024, 3, 31))
        assert "pay-1" not in storage.transactions

    @pytest.mark.asyncio
    async def test_rollback_failure_is_reported(self, storage, checking, card):
        storage.fail_on = {"mark_card_transactions_paid", "delete_transaction"}
        payment = Transaction(
            id="pay-1",
            amount=Decimal("300"),
            date=date(2024, 4, 5),
            type=TransactionType.EXPENSE,
            account_id=checking.id,
            is_paid=True,
        )
        with pytest.raises(StorageError, match="could not be rolled back"):
            await storage.apply_settlement(payment, card.id, date(2024, 3, 1), date(2024, 3, 31))


    @pytest.mark.asyncio
    async def test_rollback_when_flip_cancelled(self, checking, card, march_card_purchases):
        """A timeout during the status flip removes the payment again."""
        storage = SlowFlipStorage(
            accounts=[checking], cards=[card], transactions=march_card_purchases
        )
        payment = Transaction(
            id="pay-1",
            amount=Decimal("300"),
            date=date(2024, 4, 5),
            type=TransactionType.EXPENSE,
            account_id=checking.id,
            is_paid=True,
        )
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                storage.apply_settlement(payment, card.id, date(2024, 3, 1), date(2024, 3, 31)),
                timeout=0.05,
            )
        assert "pay-1" not in storage.transactions
        assert not any(t.is_paid for t in storage.transactions.values())


class TestRowMapping:
    """Tests for sheet row conversion."""

    def test_row_to_transaction(self):
        tx = row_to_transaction(TX_ROWS[2])
        assert tx.amount == Decimal("30.00")
        assert tx.date == date(2024, 3, 20)
        assert tx.card_id == "card-visa"
        assert tx.account_id is None
        assert tx.installment_current == 1
        assert tx.installment_total == 2
        assert tx.related_transaction_id == "grp-1"

    def test_transaction_row_matches_columns(self):
        tx = row_to_transaction(TX_ROWS[4])
        row = transaction_to_row(tx)
        assert len(row) == len(TRANSACTION_COLUMNS)
        assert row == TX_ROWS[4]

    def test_description_truncated(self):
        tx = row_to_transaction(TX_ROWS[1]).model_copy(update={"description": "x" * 150})
        assert len(transaction_to_row(tx, 100)[1]) == 100

    def test_description_survives_round_trip(self):
        """A maximum-length description is stored and read back unchanged."""
        tx = row_to_transaction(TX_ROWS[1]).model_copy(update={"description": "d" * 100})
        assert row_to_transaction(transaction_to_row(tx)).description == "d" * 100

    def test_overlong_sheet_description_clamped(self):
        """A description edited in the sheet beyond the column width still loads."""
        row = list(TX_ROWS[1])
        row[1] = "y" * 250
        assert row_to_transaction(row).description == "y" * 100

    def test_short_row_uses_defaults(self):
        tx = row_to_transaction(["tx-9", "", "1.00", "2024-03-02", "expense"])
        assert tx.is_paid is False
        assert tx.installment_total is None

    def test_audit_row_round_trip(self):
        event = AuditEventBuilder.transaction_deleted(transaction_id="tx-1")
        row = event.to_sheets_row()
        assert len(row) == len(AUDIT_COLUMNS)
        parsed = row_to_event(row)
        assert parsed.event_id == event.event_id
        assert parsed.entity_id == "tx-1"


class TestGoogleSheetsLedgerStorage:
    """Tests for GoogleSheetsLedgerStorage with a mocked client."""

    @pytest.mark.asyncio
    async def test_fetch_transactions(self, sheets_storage):
        transactions = await sheets_storage.fetch_transactions()
        assert [t.id for t in transactions] == ["tx-2", "tx-1", "tx-4", "tx-3"]

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, sheets_storage, tx_sheet):
        tx_sheet.get_all_values.return_value = [
            *TX_ROWS,
            ["tx-bad", "Broken", "not-a-number", "2024-03-02", "expense"],
            ["", "no id"],
            [],
        ]
        transactions = await sheets_storage.fetch_transactions()
        assert len(transactions) == 4

    @pytest.mark.asyncio
    async def test_fetch_accounts(self, sheets_client):
        sheets_client.accounts_sheet.return_value = _sheet([
            ACCOUNT_COLUMNS,
            ["acc-2", "Wallet", "wallet", "20.00", "", ""],
            ["acc-1", "Bank", "bank", "100.00", "#fff", "key"],
        ], title="Accounts")
        accounts = await GoogleSheetsLedgerStorage(sheets_client, 100).fetch_accounts()
        assert [a.id for a in accounts] == ["acc-1", "acc-2"]
        assert accounts[1].type == AccountType.WALLET
        assert accounts[1].current_balance == Decimal("20.00")
        assert accounts[0].pix_key == "key"

    @pytest.mark.asyncio
    async def test_fetch_error_wrapped(self, sheets_client, sheets_storage):
        sheets_client.cards_sheet.side_effect = RuntimeError("quota")
        with pytest.raises(StorageError, match="quota"):
            await sheets_storage.fetch_cards()

    @pytest.mark.asyncio
    async def test_upsert_updates_and_appends(self, sheets_storage, tx_sheet):
        existing = row_to_transaction(TX_ROWS[1]).model_copy(update={"is_paid": True})
        new = Transaction(
            id="tx-new",
            amount=Decimal("9.99"),
            date=date(2024, 3, 3),
            type=TransactionType.EXPENSE,
            card_id="card-visa",
        )

        await sheets_storage.upsert_transactions([existing, new])

        updates = tx_sheet.batch_update.call_args[0][0]
        assert updates == [{"range": "A2", "values": [transaction_to_row(existing)]}]
        appended = tx_sheet.append_rows.call_args[0][0]
        assert [r[0] for r in appended] == ["tx-new"]

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, sheets_storage, tx_sheet):
        with pytest.raises(DuplicateError):
            await sheets_storage.insert_transaction(row_to_transaction(TX_ROWS[1]))
        tx_sheet.append_row.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_card_transactions_paid(self, sheets_storage, tx_sheet):
        """Only unpaid rows of the card inside the window are flipped."""
        updated = await sheets_storage.mark_card_transactions_paid(
            "card-visa", date(2024, 3, 1), date(2024, 3, 31)
        )
        assert updated == 2
        updates = tx_sheet.batch_update.call_args[0][0]
        assert [u["range"] for u in updates] == ["I2", "I3"]
        assert all(u["values"] == [["True"]] for u in updates)

    @pytest.mark.asyncio
    async def test_mark_paid_nothing_to_do(self, sheets_storage, tx_sheet):
        updated = await sheets_storage.mark_card_transactions_paid(
            "card-other", date(2024, 3, 1), date(2024, 3, 31)
        )
        assert updated == 0
        tx_sheet.batch_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_transaction(self, sheets_storage, tx_sheet):
        assert await sheets_storage.delete_transaction("tx-3") is True
        tx_sheet.delete_rows.assert_called_once_with(4)
        assert await sheets_storage.delete_transaction("tx-missing") is False

    @pytest.mark.asyncio
    async def test_save_recurring_config(self, sheets_client):
        sheet = _sheet([RECURRING_COLUMNS], title="Recurring")
        sheets_client.recurring_sheet.return_value = sheet
        config = RecurringTransaction(
            id="rec-1",
            description="Gym",
            amount=Decimal("30"),
            day_of_month=10,
            type=TransactionType.EXPENSE,
            account_id="acc-1",
        )

        storage = GoogleSheetsLedgerStorage(sheets_client, 100)
        assert await storage.save_recurring_config(config) is True
        row = sheet.append_row.call_args[0][0]
        assert row[0] == "rec-1"
        assert row[8] == "True"


class TestGoogleSheetsAuditStorage:
    """Tests for GoogleSheetsAuditStorage."""

    @pytest.mark.asyncio
    async def test_append_event(self):
        client = MagicMock()
        sheet = _sheet([AUDIT_COLUMNS], title="AuditLog")
        client.audit_sheet.return_value = sheet

        event = AuditEventBuilder.transaction_deleted(transaction_id="tx-1")
        assert await GoogleSheetsAuditStorage(client).append_event(event) is True
        sheet.append_row.assert_called_once()

    @pytest.mark.asyncio
    async def test_events_by_correlation_id(self):
        correlation_id = uuid4()
        first = AuditEventBuilder.transaction_deleted(
            transaction_id="tx-1", correlation_id=correlation_id
        )
        other = AuditEventBuilder.transaction_deleted(
            transaction_id="tx-2", correlation_id=uuid4()
        )

        client = MagicMock()
        client.audit_sheet.return_value = _sheet(
            [AUDIT_COLUMNS, first.to_sheets_row(), other.to_sheets_row()],
            title="AuditLog",
        )
        storage = GoogleSheetsAuditStorage(client)

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.entity_id for e in events] == ["tx-1"]
        assert len(await storage.get_recent_events()) == 2
