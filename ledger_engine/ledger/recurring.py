"""
Recurring Generator

Materializes the current month's occurrence of each active recurring
template.

IDEMPOTENT: a template that already has a posting (related_recurring_id
equal to the template id) dated inside the target month is skipped, so
the generator can run on every refresh without duplicating postings.
"""

from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ledger_engine.ledger.money import clamp_day, in_month
from ledger_engine.models.ledger import (
    RecordKind,
    RecurringTransaction,
    Transaction,
    TransactionType,
    UnresolvedReference,
    new_id,
)


class RecurringRun(BaseModel):
    """Postings produced by one generator run plus skipped templates."""

    generated: list[Transaction] = Field(default_factory=list)
    unresolved: list[UnresolvedReference] = Field(default_factory=list)


def default_is_paid(config: RecurringTransaction) -> bool:
    """
    Income and account-bound expenses settle immediately.

    Card-bound expenses stay pending until the card invoice is paid.
    """
    if config.type == TransactionType.INCOME:
        return True
    return bool(config.account_id)


def posting_for(config: RecurringTransaction, month: int, year: int) -> Transaction:
    """Build the posting of a template for the given month."""
    return Transaction(
        id=new_id(),
        description=config.description,
        amount=config.amount,
        date=clamp_day(year, month, config.day_of_month),
        type=config.type,
        category_id=config.category_id,
        account_id=config.account_id,
        card_id=config.card_id,
        is_paid=default_is_paid(config),
        related_recurring_id=config.id,
    )


def _missing_binding(
    config: RecurringTransaction,
    account_ids: Optional[set[str]],
    card_ids: Optional[set[str]],
) -> Optional[UnresolvedReference]:
    if config.account_id and account_ids is not None and config.account_id not in account_ids:
        return UnresolvedReference(
            record_kind=RecordKind.RECURRING,
            record_id=config.id,
            field="account_id",
            missing_id=config.account_id,
        )
    if config.card_id and card_ids is not None and config.card_id not in card_ids:
        return UnresolvedReference(
            record_kind=RecordKind.RECURRING,
            record_id=config.id,
            field="card_id",
            missing_id=config.card_id,
        )
    return None


def run_recurring(
    existing_transactions: Iterable[Transaction],
    recurring_configs: Iterable[RecurringTransaction],
    month: int,
    year: int,
    account_ids: Optional[set[str]] = None,
    card_ids: Optional[set[str]] = None,
) -> RecurringRun:
    """
    Generate this month's postings and report templates bound to unknown ids.

    account_ids / card_ids are optional: when None, bindings are not checked.
    """
    already_posted = {
        t.related_recurring_id
        for t in existing_transactions
        if t.related_recurring_id and in_month(t.date, year, month)
    }

    run = RecurringRun()
    for config in recurring_configs:
        if not config.active or config.id in already_posted:
            continue

        missing = _missing_binding(config, account_ids, card_ids)
        if missing is not None:
            run.unresolved.append(missing)
            continue

        run.generated.append(posting_for(config, month, year))
        already_posted.add(config.id)

    return run


def materialize_recurring(
    existing_transactions: Iterable[Transaction],
    recurring_configs: Iterable[RecurringTransaction],
    current_month: int,
    current_year: int,
) -> list[Transaction]:
    """Return only the postings newly created for the given month."""
    return run_recurring(
        existing_transactions,
        recurring_configs,
        current_month,
        current_year,
    ).generated
