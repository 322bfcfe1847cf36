"""
Reconciliation Orchestrator

This module ties the ledger components together and defines the
end-to-end flows:
1. Refresh (fetch -> generate recurring postings -> fold balances -> write back)
2. Add transaction (split installments -> persist)
3. Pay invoice (delegated to InvoiceSettlement)

DESIGN DECISION: Storage is an injected collaborator, never global state.
The pure refresh() can be run and tested without any backend.

CONCURRENCY: each refresh works on the snapshot it fetched. A user write
landing while a refresh is in flight is not locked out; write-back is an
upsert-by-id of the generated postings only, so at worst the last write
wins per record.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger, configure_logging, create_correlation_id
from ledger_engine.config import get_settings
from ledger_engine.ledger.balances import calculate_balances
from ledger_engine.ledger.installments import split_installments
from ledger_engine.ledger.invoices import InvoiceSettlement
from ledger_engine.ledger.recurring import run_recurring
from ledger_engine.models.ledger import (
    Account,
    Category,
    CreditCard,
    RecordKind,
    RecurringTransaction,
    RefreshResult,
    SettlementResult,
    Transaction,
    UnresolvedReference,
)
from ledger_engine.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


def refresh(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    cards: Iterable[CreditCard],
    categories: Iterable[Category],
    recurring_configs: Iterable[RecurringTransaction],
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> RefreshResult:
    """
    One pure reconciliation pass.

    Recurring postings for the month are generated first and appended to
    the transaction list; balances are then folded over the union.
    Cards and categories pass through unchanged.
    """
    today = date.today()
    month = month or today.month
    year = year or today.year

    accounts = list(accounts)
    transactions = list(transactions)
    cards = list(cards)

    run = run_recurring(
        transactions,
        recurring_configs,
        month,
        year,
        account_ids={a.id for a in accounts},
        card_ids={c.id for c in cards},
    )
    all_transactions = transactions + run.generated
    balances = calculate_balances(accounts, all_transactions)

    return RefreshResult(
        accounts=balances.accounts,
        transactions=all_transactions,
        cards=cards,
        categories=list(categories),
        generated=run.generated,
        unresolved=run.unresolved + balances.unresolved,
    )


class ReconciliationFlow:
    """
    Orchestrates ledger operations against a storage backend.

    Flow of a refresh:
    1. Fetch accounts, transactions, cards, categories, recurring templates
    2. Generate this month's recurring postings (idempotent)
    3. Fold all transactions into account balances
    4. Write the generated postings back

    A failed write-back does not lose the computed view: the result is
    returned with persisted=False and the next refresh regenerates the
    missing postings.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settlement: Optional[InvoiceSettlement] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settlement = settlement or InvoiceSettlement(storage, audit_logger)

    async def refresh_from_storage(
        self,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RefreshResult:
        """
        Fetch everything, reconcile, and persist generated postings.

        Raises:
            StorageError: If the initial fetch fails (there is nothing to reconcile)
        """
        correlation_id = correlation_id or create_correlation_id()
        today = today or date.today()

        try:
            accounts = await self._storage.fetch_accounts()
            transactions = await self._storage.fetch_transactions()
            cards = await self._storage.fetch_cards()
            categories = await self._storage.fetch_categories()
            configs = await self._storage.fetch_recurring_configs()
        except StorageError as e:
            logger.error("refresh_fetch_failed", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="refresh_fetch_failed",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        result = refresh(
            accounts,
            transactions,
            cards,
            categories,
            configs,
            month=today.month,
            year=today.year,
        )

        if result.generated:
            try:
                await self._storage.upsert_transactions(result.generated)
            except StorageError as e:
                result.persisted = False
                logger.warning("recurring_writeback_failed", error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_storage_error(
                        operation="upsert_transactions",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
            else:
                if self._audit_logger:
                    await self._audit_logger.log_recurring_generated(
                        transaction_ids=[t.id for t in result.generated],
                        month=today.month,
                        year=today.year,
                        correlation_id=correlation_id,
                    )

        if self._audit_logger:
            if result.unresolved:
                await self._audit_logger.log_unresolved(result.unresolved, correlation_id)
            await self._audit_logger.log_refresh_completed(
                account_count=len(result.accounts),
                transaction_count=len(result.transactions),
                generated_count=len(result.generated),
                correlation_id=correlation_id,
            )

        return result

    async def add_transaction(
        self,
        draft: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Save a new transaction, expanding card installments first.

        Returns the postings that were written.

        Raises:
            StorageError: If the write fails
        """
        correlation_id = correlation_id or create_correlation_id()

        card = None
        if draft.card_id:
            cards = await self._storage.fetch_cards()
            card = next((c for c in cards if c.id == draft.card_id), None)
            if card is None and self._audit_logger:
                await self._audit_logger.log_unresolved(
                    [UnresolvedReference(
                        record_kind=RecordKind.TRANSACTION,
                        record_id=draft.id,
                        field="card_id",
                        missing_id=draft.card_id,
                    )],
                    correlation_id,
                )

        postings = split_installments(draft, card, get_settings().ledger.currency_places)
        await self._storage.upsert_transactions(postings)

        if self._audit_logger:
            await self._audit_logger.log_installments_created(
                group_id=postings[0].related_transaction_id,
                transaction_ids=[p.id for p in postings],
                amount=str(draft.amount),
                correlation_id=correlation_id,
            )
        return postings

    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        deleted = await self._storage.delete_transaction(transaction_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return deleted

    async def save_recurring_config(
        self,
        config: RecurringTransaction,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        saved = await self._storage.save_recurring_config(config)
        if saved and self._audit_logger:
            await self._audit_logger.log_recurring_config_saved(
                config_id=config.id,
                description=config.description,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return saved

    async def delete_recurring_config(
        self,
        config_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        deleted = await self._storage.delete_recurring_config(config_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_recurring_config_deleted(
                config_id=config_id,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return deleted

    async def pay_invoice(
        self,
        card_id: str,
        account_id: str,
        amount,
        month_date: date,
        today: Optional[date] = None,
    ) -> SettlementResult:
        """Settle a card invoice. Never raises; see InvoiceSettlement."""
        return await self._settlement.settle_invoice_detailed(
            card_id=card_id,
            account_id=account_id,
            amount=amount,
            month_date=month_date,
            today=today,
        )


def create_app_components(
    use_storage: bool = True,
) -> tuple[ReconciliationFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on in-memory storage.

    Returns:
        (reconciliation_flow, sheets_client)
    """
    configure_logging(get_settings().app.log_level)

    sheets_client = None
    storage: LedgerStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger()  # Local-only logging

    flow = ReconciliationFlow(storage=storage, audit_logger=audit_logger)
    return flow, sheets_client
