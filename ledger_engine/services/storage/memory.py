"""
In-Memory Storage Implementation

Dict-backed storage used by tests and as the fallback when no backend
is configured. Records are kept by id, so writes behave like the hosted
backend's upsert-by-id (last write wins per record).

fail_on lets tests make individual operations raise StorageError, e.g.
InMemoryLedgerStorage(fail_on={"mark_card_transactions_paid"}).
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.ledger import (
    Account,
    Category,
    CreditCard,
    RecurringTransaction,
    Transaction,
)
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Single-user ledger kept in process memory."""

    def __init__(
        self,
        accounts: Iterable[Account] = (),
        transactions: Iterable[Transaction] = (),
        cards: Iterable[CreditCard] = (),
        categories: Iterable[Category] = (),
        recurring_configs: Iterable[RecurringTransaction] = (),
        fail_on: Optional[set[str]] = None,
    ):
        self.accounts = {a.id: a for a in accounts}
        self.transactions = {t.id: t for t in transactions}
        self.cards = {c.id: c for c in cards}
        self.categories = {c.id: c for c in categories}
        self.recurring_configs = {r.id: r for r in recurring_configs}
        self.fail_on = set(fail_on or ())

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"Simulated failure in {operation}")

    async def fetch_accounts(self) -> list[Account]:
        self._check("fetch_accounts")
        return sorted(self.accounts.values(), key=lambda a: a.name)

    async def fetch_transactions(self) -> list[Transaction]:
        self._check("fetch_transactions")
        return sorted(self.transactions.values(), key=lambda t: t.date, reverse=True)

    async def fetch_cards(self) -> list[CreditCard]:
        self._check("fetch_cards")
        return sorted(self.cards.values(), key=lambda c: c.name)

    async def fetch_categories(self) -> list[Category]:
        self._check("fetch_categories")
        return sorted(self.categories.values(), key=lambda c: c.name)

    async def fetch_recurring_configs(self) -> list[RecurringTransaction]:
        self._check("fetch_recurring_configs")
        return list(self.recurring_configs.values())

    async def upsert_transactions(self, transactions: list[Transaction]) -> bool:
        self._check("upsert_transactions")
        for t in transactions:
            if not t.id:
                raise StorageError("Cannot store a transaction without an id")
            self.transactions[t.id] = t
        return True

    async def insert_transaction(self, transaction: Transaction) -> bool:
        self._check("insert_transaction")
        if not transaction.id:
            raise StorageError("Cannot store a transaction without an id")
        if transaction.id in self.transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self.transactions[transaction.id] = transaction
        return True

    async def mark_card_transactions_paid(
        self,
        card_id: str,
        date_from: date,
        date_to: date,
    ) -> int:
        self._check("mark_card_transactions_paid")
        updated = 0
        for tx_id, t in list(self.transactions.items()):
            if t.card_id == card_id and not t.is_paid and date_from <= t.date <= date_to:
                self.transactions[tx_id] = t.model_copy(update={"is_paid": True})
                updated += 1
        return updated

    async def delete_transaction(self, transaction_id: str) -> bool:
        self._check("delete_transaction")
        return self.transactions.pop(transaction_id, None) is not None

    async def save_recurring_config(self, config: RecurringTransaction) -> bool:
        self._check("save_recurring_config")
        self.recurring_configs[config.id] = config
        return True

    async def delete_recurring_config(self, config_id: str) -> bool:
        self._check("delete_recurring_config")
        return self.recurring_configs.pop(config_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
