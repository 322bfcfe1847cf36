"""
Balance Calculator

Folds the transaction list into account balances:

    current_balance = initial_balance + sum(paid income) - sum(paid expense)

over the transactions bound to each account. Unpaid entries (pending card
purchases, future bills) and entries without an account never move a
balance. The fold is a plain sum, so the order of the transaction list
does not matter.
"""

from decimal import Decimal
from typing import Iterable

from ledger_engine.models.ledger import (
    Account,
    BalanceResult,
    RecordKind,
    Transaction,
    UnresolvedReference,
)


def calculate_balances(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
) -> BalanceResult:
    """
    Recompute current_balance for every account.

    Paid transactions pointing at an account that does not exist are
    reported in BalanceResult.unresolved and otherwise ignored.
    """
    accounts = list(accounts)
    deltas: dict[str, Decimal] = {a.id: Decimal("0") for a in accounts}
    unresolved: list[UnresolvedReference] = []

    for tx in transactions:
        if not tx.is_paid or not tx.account_id:
            continue
        if tx.account_id not in deltas:
            unresolved.append(UnresolvedReference(
                record_kind=RecordKind.TRANSACTION,
                record_id=tx.id,
                field="account_id",
                missing_id=tx.account_id,
            ))
            continue
        deltas[tx.account_id] += tx.signed_amount

    updated = [
        a.model_copy(update={"current_balance": a.initial_balance + deltas[a.id]})
        for a in accounts
    ]
    return BalanceResult(accounts=updated, unresolved=unresolved)


def total_balance(accounts: Iterable[Account]) -> Decimal:
    """Sum of current balances across accounts."""
    return sum((a.current_balance for a in accounts), Decimal("0"))
