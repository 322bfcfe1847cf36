"""
Core Ledger Models

These models define the records the reconciliation engine works on:
accounts, credit cards, categories, transactions and recurring templates,
plus the result objects the engine hands back to callers.

DESIGN DECISION: Every record is an immutable value object within a single
reconciliation pass. "Changing" a record means building a new one with
model_copy(update=...) and replacing it by id in the caller's store.

DESIGN DECISION: Money is always Decimal. Installments must sum to the
original amount exactly, which floats cannot guarantee.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# Amounts carry at most cents; descriptions fit the stored column width.
MONEY_PLACES = 2
DESCRIPTION_MAX_LENGTH = 100


def new_id() -> str:
    """Generate a fresh record identity."""
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class AccountType(str, Enum):
    """
    Kinds of accounts a user can hold.

    SAVINGS and INVESTMENT accounts are left out of the monthly
    operational summary (see ledger.summary).
    """
    BANK = "bank"
    WALLET = "wallet"
    SAVINGS = "savings"
    INVESTMENT = "investment"


class RecordKind(str, Enum):
    """Record kinds, used when reporting unresolved references."""
    ACCOUNT = "account"
    CARD = "card"
    TRANSACTION = "transaction"
    RECURRING = "recurring"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A place where money lives (bank account, wallet, ...).

    CRITICAL: current_balance is derived data. It is always recomputed
    from initial_balance plus paid transactions and is never trusted
    as an authoritative stored value.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.BANK
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        description="Opening balance, set at creation and never changed"
    )
    current_balance: Decimal = Field(
        default=Decimal("0"),
        description="Derived balance (filled in by the balance calculator)"
    )
    color: str = "#64748b"
    pix_key: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def default_current_balance(cls, data):
        """An account nobody has reconciled yet holds its opening balance."""
        if isinstance(data, dict) and data.get("current_balance") is None:
            data = {
                **data,
                "current_balance": data.get("initial_balance", Decimal("0")),
            }
        return data


class CreditCard(BaseModel):
    """A credit card with a limit and a monthly closing/due day."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    limit_total: Decimal = Field(default=Decimal("0"), ge=0)
    closing_day: int = Field(default=1, ge=1, le=31)
    due_day: int = Field(default=1, ge=1, le=31)
    color: str = "#0f172a"


class Category(BaseModel):
    """Spending / earning category."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    icon: str = "tag"
    color: str = "#64748b"
    type: TransactionType = TransactionType.EXPENSE


class Transaction(BaseModel):
    """
    A single ledger entry.

    A transaction settles against at most one target: an account (money
    moves immediately when paid) or a card (money moves when the card
    invoice is settled). Unbound drafts are tolerated and simply affect
    nothing.

    id is optional so that drafts can be handed to the installment
    splitter, which assigns identities.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: Optional[str] = None
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    amount: Decimal = Field(..., gt=0, decimal_places=MONEY_PLACES)
    date: date
    type: TransactionType
    category_id: str = ""
    account_id: Optional[str] = None
    card_id: Optional[str] = None
    is_paid: bool = False

    # Installment group fields
    installment_current: Optional[int] = Field(default=None, ge=1)
    installment_total: Optional[int] = Field(default=None, ge=1)
    related_transaction_id: Optional[str] = None

    # Back-reference to the recurring template that produced this entry
    related_recurring_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_binding(self) -> "Transaction":
        """Validate settlement target and installment numbering."""
        if self.account_id and self.card_id:
            raise ValueError(
                "Transaction cannot be bound to both an account and a card"
            )
        if (
            self.installment_current is not None
            and self.installment_total is not None
            and self.installment_current > self.installment_total
        ):
            raise ValueError("Installment number cannot exceed installment total")
        return self

    @property
    def signed_amount(self) -> Decimal:
        """Amount with income positive and expense negative."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount

    @property
    def is_installment(self) -> bool:
        return bool(self.installment_total and self.installment_total > 1)


class RecurringTransaction(BaseModel):
    """
    Template for a posting that repeats every month on a fixed day.

    Not a ledger entry itself: the recurring generator expands it into
    one real Transaction per month.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    amount: Decimal = Field(..., gt=0, decimal_places=MONEY_PLACES)
    day_of_month: int = Field(..., ge=1, le=31)
    type: TransactionType
    category_id: str = ""
    account_id: Optional[str] = None
    card_id: Optional[str] = None
    active: bool = True

    @model_validator(mode="after")
    def validate_binding(self) -> "RecurringTransaction":
        """A template must post to exactly one account or card."""
        if bool(self.account_id) == bool(self.card_id):
            raise ValueError(
                "Recurring transaction must be bound to exactly one account or card"
            )
        return self


class UserSettings(BaseModel):
    """Per-user notification preferences for card deadlines."""

    notify_closing_days: int = Field(default=3, ge=0, le=31)
    notify_due_days: int = Field(default=5, ge=0, le=31)


# =============================================================================
# RESULT MODELS
# =============================================================================

class UnresolvedReference(BaseModel):
    """
    A record pointing at an id that does not exist.

    The engine never fails on dangling references. It skips the record
    and reports it here so callers can surface or debug it.
    """
    model_config = ConfigDict(frozen=True)

    record_kind: RecordKind
    record_id: Optional[str]
    field: str
    missing_id: str

    def describe(self) -> str:
        return (
            f"{self.record_kind.value} {self.record_id or '<new>'}: "
            f"{self.field}={self.missing_id} does not resolve"
        )


class BalanceResult(BaseModel):
    """Output of the balance calculator."""

    accounts: list[Account] = Field(default_factory=list)
    unresolved: list[UnresolvedReference] = Field(default_factory=list)


class RefreshResult(BaseModel):
    """
    Output of one reconciliation pass.

    transactions is the full list (existing + generated). generated holds
    only the postings created by this pass.
    """

    accounts: list[Account] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    cards: list[CreditCard] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    generated: list[Transaction] = Field(default_factory=list)
    unresolved: list[UnresolvedReference] = Field(default_factory=list)
    persisted: bool = Field(
        default=True,
        description="False when generated postings could not be written back"
    )

    @property
    def total_balance(self) -> Decimal:
        return sum((a.current_balance for a in self.accounts), Decimal("0"))


class InvoiceSummary(BaseModel):
    """Open invoice of one card for one billing window."""

    card_id: str
    window_start: date
    window_end: date
    transactions: list[Transaction] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    limit_total: Decimal = Decimal("0")
    available_credit: Decimal = Decimal("0")

    @property
    def is_open(self) -> bool:
        return len(self.transactions) > 0


class SettlementResult(BaseModel):
    """Detailed outcome of an invoice settlement."""

    success: bool
    card_id: str
    account_id: str
    payment: Optional[Transaction] = None
    marked_paid: int = 0
    error_message: Optional[str] = None


class MonthlySummary(BaseModel):
    """Operational income/expense figures for one calendar month."""

    year: int
    month: int = Field(..., ge=1, le=12)
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    transaction_count: int = 0

    @property
    def result(self) -> Decimal:
        return self.income - self.expense


class CardAlert(BaseModel):
    """An upcoming closing or due date worth notifying the user about."""

    card_id: str
    card_name: str
    kind: str = Field(..., pattern="^(closing|due)$")
    on_date: date
    days_left: int = Field(..., ge=0)
