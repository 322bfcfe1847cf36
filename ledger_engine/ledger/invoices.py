"""
Credit Card Invoices

Computes a card's open invoice for a billing month and settles it.

KNOWN BEHAVIOR: the billing window is the CALENDAR month of the chosen
date, not the card's closing-day cycle. A purchase made after the closing
day is still counted in the calendar month it happened in, even though
the bank would bill it on the next invoice. This is kept as-is and
pinned by tests; see billing_window().

Settlement state per invoice month:

    OPEN (unpaid card transactions exist) -> SETTLING -> PAID

Settling writes a payment transaction on the paying account and flips
the invoice transactions to paid, as one unit of work.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.ledger.money import month_window_for, to_money
from ledger_engine.models.ledger import (
    CreditCard,
    InvoiceSummary,
    SettlementResult,
    Transaction,
    TransactionType,
    new_id,
)
from ledger_engine.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)


# =============================================================================
# PURE INVOICE COMPUTATIONS
# =============================================================================

def billing_window(month_date: date) -> tuple[date, date]:
    """First and last day of the calendar month containing month_date."""
    return month_window_for(month_date)


def invoice_transactions(
    card_id: str,
    transactions: Iterable[Transaction],
    month_date: date,
) -> list[Transaction]:
    """Unpaid transactions of a card inside the billing window, newest first."""
    start, end = billing_window(month_date)
    selected = [
        t for t in transactions
        if t.card_id == card_id and not t.is_paid and start <= t.date <= end
    ]
    return sorted(selected, key=lambda t: t.date, reverse=True)


def invoice_total(
    card_id: str,
    transactions: Iterable[Transaction],
    month_date: date,
) -> Decimal:
    return sum(
        (t.amount for t in invoice_transactions(card_id, transactions, month_date)),
        Decimal("0"),
    )


def open_invoice_total(card_id: str, transactions: Iterable[Transaction]) -> Decimal:
    """Everything still unpaid on the card, whatever the month."""
    return sum(
        (t.amount for t in transactions if t.card_id == card_id and not t.is_paid),
        Decimal("0"),
    )


def available_credit(
    card: CreditCard,
    transactions: Iterable[Transaction],
    month_date: date,
) -> Decimal:
    """limit_total minus the card's unpaid spending in the billing month."""
    return card.limit_total - invoice_total(card.id, transactions, month_date)


def summarize_invoice(
    card: CreditCard,
    transactions: Iterable[Transaction],
    month_date: date,
) -> InvoiceSummary:
    start, end = billing_window(month_date)
    items = invoice_transactions(card.id, transactions, month_date)
    total = sum((t.amount for t in items), Decimal("0"))
    return InvoiceSummary(
        card_id=card.id,
        window_start=start,
        window_end=end,
        transactions=items,
        total=total,
        limit_total=card.limit_total,
        available_credit=card.limit_total - total,
    )


def build_payment_transaction(
    account_id: str,
    amount: Decimal,
    month_date: date,
    card_name: str,
    today: date,
    settings: LedgerSettings,
) -> Transaction:
    """The expense that debits the paying account for an invoice."""
    description = settings.payment_description_template.format(
        card_name=card_name,
        month=month_date.month,
        year=month_date.year,
    )
    return Transaction(
        id=new_id(),
        description=description[:settings.description_max_length],
        amount=amount,
        date=today,
        type=TransactionType.EXPENSE,
        category_id=settings.payment_category_id,
        account_id=account_id,
        is_paid=True,
    )


# =============================================================================
# SETTLEMENT
# =============================================================================

class InvoiceSettlement:
    """
    Pays a card invoice from an account.

    CRITICAL: the caller never sees an exception from this class.
    Every failure (lookup, validation, storage, timeout) is audited and
    reported as False / SettlementResult(success=False).

    The two writes are delegated to LedgerStorageInterface.apply_settlement,
    which guarantees that the payment and the status flip are applied
    together or not at all.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    async def _bounded(self, awaitable):
        """Fail fast instead of hanging on a stuck backend."""
        return await asyncio.wait_for(
            awaitable,
            timeout=self._settings.settlement_timeout_seconds,
        )

    async def settle_invoice(
        self,
        card_id: str,
        account_id: str,
        amount,
        month_date: date,
        card_name: Optional[str] = None,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Pay the invoice; True only when both writes were applied."""
        result = await self.settle_invoice_detailed(
            card_id=card_id,
            account_id=account_id,
            amount=amount,
            month_date=month_date,
            card_name=card_name,
            today=today,
            correlation_id=correlation_id,
        )
        return result.success

    async def settle_invoice_detailed(
        self,
        card_id: str,
        account_id: str,
        amount,
        month_date: date,
        card_name: Optional[str] = None,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementResult:
        """
        Pay the invoice and describe what happened.

        Args:
            card_id: Card whose invoice is paid
            account_id: Account the money leaves from
            amount: Invoice total to debit
            month_date: Any day of the billing month
            card_name: Label for the payment description (looked up if None)
            today: Payment date (defaults to date.today())
        """
        correlation_id = correlation_id or create_correlation_id()
        today = today or date.today()

        try:
            amount = to_money(amount, self._settings.currency_places)
            if amount <= 0:
                return await self._fail(
                    card_id, account_id, f"Invoice amount must be positive, got {amount}",
                    correlation_id,
                )

            accounts = await self._bounded(self._storage.fetch_accounts())
            if not any(a.id == account_id for a in accounts):
                return await self._fail(
                    card_id, account_id, f"Paying account not found: {account_id}",
                    correlation_id,
                )

            cards = await self._bounded(self._storage.fetch_cards())
            card = next((c for c in cards if c.id == card_id), None)
            if card is None:
                return await self._fail(
                    card_id, account_id, f"Card not found: {card_id}",
                    correlation_id,
                )

            payment = build_payment_transaction(
                account_id=account_id,
                amount=amount,
                month_date=month_date,
                card_name=card_name or card.name,
                today=today,
                settings=self._settings,
            )
            start, end = billing_window(month_date)

            marked = await self._bounded(
                self._storage.apply_settlement(payment, card_id, start, end)
            )
        except asyncio.TimeoutError:
            return await self._fail(
                card_id, account_id, "Settlement timed out", correlation_id,
            )
        except Exception as e:
            return await self._fail(card_id, account_id, str(e), correlation_id)

        logger.info(
            "invoice_settled",
            card_id=card_id,
            account_id=account_id,
            amount=str(amount),
            marked_paid=marked,
        )
        if self._audit_logger:
            await self._audit_logger.log_invoice_settled(
                card_id=card_id,
                account_id=account_id,
                payment_id=payment.id,
                amount=str(amount),
                marked_paid=marked,
                correlation_id=correlation_id,
            )

        return SettlementResult(
            success=True,
            card_id=card_id,
            account_id=account_id,
            payment=payment,
            marked_paid=marked,
        )

    async def _fail(
        self,
        card_id: str,
        account_id: str,
        message: str,
        correlation_id: UUID,
    ) -> SettlementResult:
        logger.warning(
            "invoice_settlement_failed",
            card_id=card_id,
            account_id=account_id,
            error=message,
        )
        if self._audit_logger:
            await self._audit_logger.log_settlement_failed(
                card_id=card_id,
                account_id=account_id,
                error_message=message,
                correlation_id=correlation_id,
            )
        return SettlementResult(
            success=False,
            card_id=card_id,
            account_id=account_id,
            error_message=message,
        )
