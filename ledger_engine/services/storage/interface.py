"""
Abstract Storage Interface

DESIGN DECISION: The ledger engine never talks to a backend directly.
Persistence is an injected collaborator behind this interface. This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the reconciliation logic decoupled from storage implementation

Every implementation is scoped to a single user: the engine never
filters by user itself.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

import structlog

from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.ledger import (
    Account,
    Category,
    CreditCard,
    RecurringTransaction,
    Transaction,
)

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods. Write methods raise StorageError
    (or a subclass) when the backend fails.
    """

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_accounts(self) -> list[Account]:
        pass

    @abstractmethod
    async def fetch_transactions(self) -> list[Transaction]:
        """All transactions, newest first."""
        pass

    @abstractmethod
    async def fetch_cards(self) -> list[CreditCard]:
        pass

    @abstractmethod
    async def fetch_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def fetch_recurring_configs(self) -> list[RecurringTransaction]:
        pass

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_transactions(self, transactions: list[Transaction]) -> bool:
        """
        Insert or replace transactions by id (last write wins per record).

        Returns:
            True if all transactions were written

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> bool:
        """
        Insert a single new transaction.

        Raises:
            DuplicateError: If a transaction with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def mark_card_transactions_paid(
        self,
        card_id: str,
        date_from: date,
        date_to: date,
    ) -> int:
        """
        Flip every unpaid transaction of a card dated in [date_from, date_to] to paid.

        Returns:
            Number of transactions updated

        Raises:
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction. Returns False when it did not exist."""
        pass

    @abstractmethod
    async def save_recurring_config(self, config: RecurringTransaction) -> bool:
        pass

    @abstractmethod
    async def delete_recurring_config(self, config_id: str) -> bool:
        pass

    # ------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------

    async def apply_settlement(
        self,
        payment: Transaction,
        card_id: str,
        date_from: date,
        date_to: date,
    ) -> int:
        """
        Record an invoice payment and mark the invoice transactions paid.

        Both writes form one unit: either the payment exists AND the card
        transactions are paid, or neither change is visible.

        Backends with native transactions should override this. The default
        implementation inserts the payment first (nothing is flipped if that
        fails) and deletes it again when the status flip fails or is
        cancelled, e.g. by a caller-side timeout.

        Returns:
            Number of card transactions marked paid

        Raises:
            StorageError: If the settlement could not be applied
        """
        await self.insert_transaction(payment)
        try:
            return await self.mark_card_transactions_paid(card_id, date_from, date_to)
        except asyncio.CancelledError:
            try:
                await self.delete_transaction(payment.id)
            except Exception as rollback_error:
                logger.error(
                    "settlement_rollback_failed",
                    payment_id=payment.id,
                    error=str(rollback_error),
                )
            raise
        except Exception as e:
            try:
                await self.delete_transaction(payment.id)
            except Exception as rollback_error:
                raise StorageError(
                    f"Settlement failed ({e}) and payment {payment.id} "
                    f"could not be rolled back: {rollback_error}"
                ) from e
            raise StorageError(f"Settlement failed and was rolled back: {e}") from e


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one refresh pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass
