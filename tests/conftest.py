"""Pytest configuration and fixtures."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.config import get_settings
from ledger_engine.models.ledger import (
    Account,
    AccountType,
    Category,
    CreditCard,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from ledger_engine.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached process-wide; reset them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def checking() -> Account:
    return Account(
        id="acc-checking",
        name="Checking",
        type=AccountType.BANK,
        initial_balance=Decimal("1000.00"),
    )


@pytest.fixture
def savings() -> Account:
    return Account(
        id="acc-savings",
        name="Savings",
        type=AccountType.SAVINGS,
        initial_balance=Decimal("5000.00"),
    )


@pytest.fixture
def card() -> CreditCard:
    return CreditCard(
        id="card-visa",
        name="Visa Gold",
        limit_total=Decimal("2000.00"),
        closing_day=25,
        due_day=5,
    )


@pytest.fixture
def groceries() -> Category:
    return Category(id="cat-groceries", name="Groceries")


@pytest.fixture
def march_card_purchases(card: CreditCard) -> list[Transaction]:
    """Three unpaid card purchases in March 2024 totalling 300.00."""
    return [
        Transaction(
            id=f"tx-card-{i}",
            description=f"Purchase {i}",
            amount=Decimal(amount),
            date=date(2024, 3, day),
            type=TransactionType.EXPENSE,
            category_id="cat-groceries",
            card_id=card.id,
            is_paid=False,
        )
        for i, (amount, day) in enumerate(
            [("120.00", 2), ("80.50", 14), ("99.50", 28)], start=1
        )
    ]


@pytest.fixture
def rent_config(checking: Account) -> RecurringTransaction:
    return RecurringTransaction(
        id="rec-rent",
        description="Rent",
        amount=Decimal("50.00"),
        day_of_month=5,
        type=TransactionType.EXPENSE,
        category_id="cat-housing",
        account_id=checking.id,
    )


@pytest.fixture
def storage(checking, savings, card, groceries, march_card_purchases) -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage(
        accounts=[checking, savings],
        transactions=march_card_purchases,
        cards=[card],
        categories=[groceries],
    )


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()
