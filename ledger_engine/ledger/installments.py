"""
Installment Splitter

Expands one card purchase paid in N installments into N dated postings,
one per month, sharing a relatedTransactionId.

GUARANTEE: the amounts of the returned postings always add up to the
original amount exactly. The first N-1 shares are equal; the last one
absorbs the rounding remainder.
"""

from typing import Iterable, Optional

import structlog

from ledger_engine.ledger.money import DEFAULT_PLACES, add_months, split_amount
from ledger_engine.models.ledger import CreditCard, Transaction, new_id

logger = structlog.get_logger(__name__)


def should_split(transaction: Transaction, card: Optional[CreditCard]) -> bool:
    """Only card-bound purchases with more than one installment are split."""
    return bool(
        transaction.card_id
        and card is not None
        and transaction.installment_total
        and transaction.installment_total > 1
    )


def split_installments(
    transaction: Transaction,
    card: Optional[CreditCard] = None,
    places: int = DEFAULT_PLACES,
) -> list[Transaction]:
    """
    Split a transaction into its installment postings.

    Installment i (0-based) is dated i calendar months after the original
    date, with the day clamped to the end of shorter months.

    When the transaction does not qualify for splitting, a single-element
    list is returned holding the transaction unchanged, apart from a fresh
    id when it had none.
    """
    if not should_split(transaction, card):
        if transaction.id:
            return [transaction]
        return [transaction.model_copy(update={"id": new_id()})]

    total = transaction.installment_total
    shares = split_amount(transaction.amount, total, places)

    if min(shares) <= 0:
        # Too few minor units for N positive installments: keep it whole.
        logger.warning(
            "installment_split_skipped",
            amount=str(transaction.amount),
            installment_total=total,
        )
        return [transaction.model_copy(update={
            "id": transaction.id or new_id(),
            "installment_current": None,
            "installment_total": None,
        })]

    group_id = new_id()
    postings = [
        transaction.model_copy(update={
            "id": new_id(),
            "date": add_months(transaction.date, i),
            "amount": share,
            "installment_current": i + 1,
            "installment_total": total,
            "related_transaction_id": group_id,
        })
        for i, share in enumerate(shares)
    ]

    logger.debug(
        "installments_split",
        group_id=group_id,
        installment_total=total,
        card_id=card.id,
    )
    return postings


def installment_group(
    transactions: Iterable[Transaction],
    related_transaction_id: str,
) -> list[Transaction]:
    """All siblings of an installment group, in installment order."""
    siblings = [
        t for t in transactions
        if t.related_transaction_id == related_transaction_id
    ]
    return sorted(siblings, key=lambda t: t.installment_current or 0)
