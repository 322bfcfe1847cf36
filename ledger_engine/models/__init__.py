"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the engine must conform to these schemas.
"""

from ledger_engine.models.ledger import (
    Account,
    AccountType,
    BalanceResult,
    CardAlert,
    Category,
    CreditCard,
    InvoiceSummary,
    MonthlySummary,
    RecordKind,
    RecurringTransaction,
    RefreshResult,
    SettlementResult,
    Transaction,
    TransactionType,
    UnresolvedReference,
    UserSettings,
    new_id,
)
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Account",
    "AccountType",
    "Category",
    "CreditCard",
    "RecordKind",
    "RecurringTransaction",
    "Transaction",
    "TransactionType",
    "UserSettings",
    "new_id",
    # Results
    "BalanceResult",
    "CardAlert",
    "InvoiceSummary",
    "MonthlySummary",
    "RefreshResult",
    "SettlementResult",
    "UnresolvedReference",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
