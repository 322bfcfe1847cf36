"""
Monthly figures and card deadline alerts for the dashboard.

The monthly summary is an operational view: money moved into or out of
savings and investment accounts is not counted as income or expense.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable

from ledger_engine.ledger.money import add_months, clamp_day, in_month
from ledger_engine.models.ledger import (
    Account,
    AccountType,
    CardAlert,
    CreditCard,
    MonthlySummary,
    Transaction,
    TransactionType,
    UserSettings,
)

NON_OPERATIONAL_TYPES = {AccountType.SAVINGS, AccountType.INVESTMENT}


def monthly_summary(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    year: int,
    month: int,
) -> MonthlySummary:
    """Income, expense and result of one calendar month."""
    reserved = {a.id for a in accounts if a.type in NON_OPERATIONAL_TYPES}

    income = Decimal("0")
    expense = Decimal("0")
    count = 0
    for t in transactions:
        if not in_month(t.date, year, month):
            continue
        if t.account_id and t.account_id in reserved:
            continue
        count += 1
        if t.type == TransactionType.INCOME:
            income += t.amount
        else:
            expense += t.amount

    return MonthlySummary(
        year=year,
        month=month,
        income=income,
        expense=expense,
        transaction_count=count,
    )


def card_month_total(
    card_id: str,
    transactions: Iterable[Transaction],
    year: int,
    month: int,
) -> Decimal:
    """Everything charged on a card in a month, paid or not."""
    return sum(
        (
            t.amount for t in transactions
            if t.card_id == card_id and in_month(t.date, year, month)
        ),
        Decimal("0"),
    )


def next_occurrence(day: int, today: date) -> date:
    """Next date (today included) falling on `day`, clamped per month."""
    candidate = clamp_day(today.year, today.month, day)
    if candidate >= today:
        return candidate
    following = add_months(date(today.year, today.month, 1), 1)
    return clamp_day(following.year, following.month, day)


def upcoming_card_alerts(
    cards: Iterable[CreditCard],
    today: date,
    settings: UserSettings,
) -> list[CardAlert]:
    """
    Closing and due dates that fall inside the user's notice windows.

    Sorted by date, closing before due on the same day.
    """
    alerts = []
    for card in cards:
        for kind, day, window in (
            ("closing", card.closing_day, settings.notify_closing_days),
            ("due", card.due_day, settings.notify_due_days),
        ):
            on_date = next_occurrence(day, today)
            days_left = (on_date - today).days
            if days_left <= window:
                alerts.append(CardAlert(
                    card_id=card.id,
                    card_name=card.name,
                    kind=kind,
                    on_date=on_date,
                    days_left=days_left,
                ))

    return sorted(alerts, key=lambda a: (a.on_date, a.kind != "closing"))
