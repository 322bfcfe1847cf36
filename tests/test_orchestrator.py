"""Tests for the reconciliation orchestrator."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.audit import AuditLogger
from ledger_engine.models.audit import AuditEventType
from ledger_engine.models.ledger import (
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from ledger_engine.orchestrator import (
    ReconciliationFlow,
    create_app_components,
    refresh,
)
from ledger_engine.services.storage import InMemoryLedgerStorage, StorageError

MARCH_10 = date(2024, 3, 10)


@pytest.fixture
def flow_storage(storage, rent_config) -> InMemoryLedgerStorage:
    storage.recurring_configs[rent_config.id] = rent_config
    return storage


@pytest.fixture
def flow(flow_storage, audit_storage) -> ReconciliationFlow:
    return ReconciliationFlow(flow_storage, AuditLogger(audit_storage))


class TestRefresh:
    """Tests for the pure refresh pass."""

    def test_generates_and_folds(self, checking, savings, card, groceries, rent_config):
        """The rent posting is generated and immediately reflected in the balance."""
        result = refresh([checking, savings], [], [card], [groceries], [rent_config], month=3, year=2024)

        assert len(result.generated) == 1
        assert result.generated[0] in result.transactions
        balances = {a.id: a.current_balance for a in result.accounts}
        assert balances[checking.id] == Decimal("950.00")
        assert balances[savings.id] == Decimal("5000.00")
        assert result.total_balance == Decimal("5950.00")
        assert result.cards == [card]
        assert result.categories == [groceries]
        assert result.unresolved == []

    def test_second_pass_is_idempotent(self, checking, card, rent_config):
        first = refresh([checking], [], [card], [], [rent_config], month=3, year=2024)
        second = refresh(
            first.accounts, first.transactions, [card], [], [rent_config], month=3, year=2024
        )
        assert second.generated == []
        assert second.accounts == first.accounts

    def test_card_recurring_does_not_move_balance(self, checking, card):
        streaming = RecurringTransaction(
            description="Streaming",
            amount=Decimal("15.90"),
            day_of_month=10,
            type=TransactionType.EXPENSE,
            card_id=card.id,
        )
        result = refresh([checking], [], [card], [], [streaming], month=3, year=2024)
        assert result.generated[0].is_paid is False
        assert result.accounts[0].current_balance == checking.initial_balance

    def test_unresolved_collected(self, checking, card, rent_config):
        """Dangling ids from recurring templates and transactions are both reported."""
        orphan_config = rent_config.model_copy(update={"id": "rec-orphan", "account_id": "acc-gone"})
        orphan_tx = Transaction(
            id="tx-orphan",
            amount=Decimal("5"),
            date=MARCH_10,
            type=TransactionType.EXPENSE,
            account_id="acc-ghost",
            is_paid=True,
        )
        result = refresh([checking], [orphan_tx], [card], [], [orphan_config], month=3, year=2024)
        assert {r.missing_id for r in result.unresolved} == {"acc-gone", "acc-ghost"}
        assert result.generated == []


class TestReconciliationFlow:
    """Tests for ReconciliationFlow against in-memory storage."""

    @pytest.mark.asyncio
    async def test_refresh_persists_generated(self, flow, flow_storage, checking):
        result = await flow.refresh_from_storage(today=MARCH_10)

        assert result.persisted
        assert len(result.generated) == 1
        assert result.generated[0].id in flow_storage.transactions
        balances = {a.id: a.current_balance for a in result.accounts}
        assert balances[checking.id] == Decimal("950.00")

    @pytest.mark.asyncio
    async def test_refresh_twice_same_month(self, flow, flow_storage):
        await flow.refresh_from_storage(today=MARCH_10)
        count = len(flow_storage.transactions)

        second = await flow.refresh_from_storage(today=date(2024, 3, 28))

        assert second.generated == []
        assert len(flow_storage.transactions) == count

    @pytest.mark.asyncio
    async def test_refresh_next_month_generates_again(self, flow, flow_storage):
        await flow.refresh_from_storage(today=MARCH_10)
        april = await flow.refresh_from_storage(today=date(2024, 4, 2))
        assert len(april.generated) == 1
        assert april.generated[0].date == date(2024, 4, 5)

    @pytest.mark.asyncio
    async def test_writeback_failure_keeps_view(self, flow, flow_storage, audit_storage, checking):
        """A failed write-back is reported, not raised; the computed view survives."""
        flow_storage.fail_on = {"upsert_transactions"}

        result = await flow.refresh_from_storage(today=MARCH_10)

        assert result.persisted is False
        assert len(result.generated) == 1
        assert result.generated[0].id not in flow_storage.transactions
        assert {a.id: a.current_balance for a in result.accounts}[checking.id] == Decimal("950.00")
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.STORAGE_ERROR in types

    @pytest.mark.asyncio
    async def test_fetch_failure_raises(self, flow, flow_storage, audit_storage):
        flow_storage.fail_on = {"fetch_transactions"}
        with pytest.raises(StorageError):
            await flow.refresh_from_storage(today=MARCH_10)
        assert [e.event_type for e in audit_storage.events] == [AuditEventType.SYSTEM_ERROR]

    @pytest.mark.asyncio
    async def test_refresh_audit_trail(self, flow, audit_storage):
        await flow.refresh_from_storage(today=MARCH_10)
        types = [e.event_type for e in audit_storage.events]
        assert types == [
            AuditEventType.RECURRING_GENERATED,
            AuditEventType.REFRESH_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_add_transaction_splits_installments(self, flow, flow_storage, card):
        draft = Transaction(
            description="Sofa",
            amount=Decimal("100.00"),
            date=date(2024, 3, 12),
            type=TransactionType.EXPENSE,
            card_id=card.id,
            installment_total=3,
        )

        postings = await flow.add_transaction(draft)

        assert len(postings) == 3
        assert sum(p.amount for p in postings) == Decimal("100.00")
        for p in postings:
            assert flow_storage.transactions[p.id] == p

    @pytest.mark.asyncio
    async def test_add_transaction_unknown_card_saved_whole(self, flow, flow_storage, audit_storage):
        draft = Transaction(
            amount=Decimal("100.00"),
            date=date(2024, 3, 12),
            type=TransactionType.EXPENSE,
            card_id="card-gone",
            installment_total=3,
        )

        postings = await flow.add_transaction(draft)

        assert len(postings) == 1
        assert postings[0].id in flow_storage.transactions
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.UNRESOLVED_REFERENCE in types

    @pytest.mark.asyncio
    async def test_delete_transaction(self, flow, flow_storage, audit_storage):
        assert await flow.delete_transaction("tx-card-1") is True
        assert "tx-card-1" not in flow_storage.transactions
        assert await flow.delete_transaction("tx-card-1") is False
        deleted = [e for e in audit_storage.events if e.event_type == AuditEventType.TRANSACTION_DELETED]
        assert len(deleted) == 1

    @pytest.mark.asyncio
    async def test_recurring_config_lifecycle(self, flow, flow_storage, checking):
        config = RecurringTransaction(
            id="rec-gym",
            description="Gym",
            amount=Decimal("30"),
            day_of_month=12,
            type=TransactionType.EXPENSE,
            account_id=checking.id,
        )
        assert await flow.save_recurring_config(config) is True
        assert flow_storage.recurring_configs["rec-gym"] == config

        assert await flow.delete_recurring_config("rec-gym") is True
        assert "rec-gym" not in flow_storage.recurring_configs
        assert await flow.delete_recurring_config("rec-gym") is False

    @pytest.mark.asyncio
    async def test_pay_invoice(self, flow, flow_storage, card, checking):
        result = await flow.pay_invoice(
            card.id, checking.id, Decimal("300.00"), date(2024, 3, 1), today=date(2024, 4, 5)
        )

        assert result.success
        assert result.marked_paid == 3
        refreshed = await flow.refresh_from_storage(today=date(2024, 4, 5))
        balances = {a.id: a.current_balance for a in refreshed.accounts}
        # 1000 - 300 (invoice) - 50 (April rent)
        assert balances[checking.id] == Decimal("650.00")


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_in_memory_components(self):
        flow, sheets_client = create_app_components(use_storage=False)
        assert isinstance(flow, ReconciliationFlow)
        assert sheets_client is None
