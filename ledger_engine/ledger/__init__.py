"""
Ledger reconciliation core.

Pure computations (balances, installments, recurring postings, invoices,
summaries) plus the side-effecting invoice settlement.
"""

from ledger_engine.ledger.balances import calculate_balances, total_balance
from ledger_engine.ledger.installments import (
    installment_group,
    should_split,
    split_installments,
)
from ledger_engine.ledger.invoices import (
    InvoiceSettlement,
    available_credit,
    billing_window,
    build_payment_transaction,
    invoice_total,
    invoice_transactions,
    open_invoice_total,
    summarize_invoice,
)
from ledger_engine.ledger.money import (
    add_months,
    clamp_day,
    days_in_month,
    month_window,
    month_window_for,
    split_amount,
    to_money,
)
from ledger_engine.ledger.recurring import (
    RecurringRun,
    materialize_recurring,
    run_recurring,
)
from ledger_engine.ledger.summary import (
    card_month_total,
    monthly_summary,
    upcoming_card_alerts,
)

__all__ = [
    # Balances
    "calculate_balances",
    "total_balance",
    # Installments
    "installment_group",
    "should_split",
    "split_installments",
    # Invoices
    "InvoiceSettlement",
    "available_credit",
    "billing_window",
    "build_payment_transaction",
    "invoice_total",
    "invoice_transactions",
    "open_invoice_total",
    "summarize_invoice",
    # Money / dates
    "add_months",
    "clamp_day",
    "days_in_month",
    "month_window",
    "month_window_for",
    "split_amount",
    "to_money",
    # Recurring
    "RecurringRun",
    "materialize_recurring",
    "run_recurring",
    # Summary
    "card_month_total",
    "monthly_summary",
    "upcoming_card_alerts",
]
