"""
Audit Models for the Ledger Engine

Every operation that writes to the ledger is logged for audit purposes.
This provides:
1. Traceability of generated and settled transactions
2. Debugging information when a settlement or write-back fails
3. A trail of dangling references the engine skipped

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Reconciliation
    REFRESH_COMPLETED = "refresh_completed"
    RECURRING_GENERATED = "recurring_generated"
    UNRESOLVED_REFERENCE = "unresolved_reference"

    # Transaction writes
    INSTALLMENTS_CREATED = "installments_created"
    TRANSACTION_DELETED = "transaction_deleted"

    # Invoice settlement
    INVOICE_SETTLED = "invoice_settled"
    SETTLEMENT_FAILED = "settlement_failed"

    # Recurring templates
    RECURRING_CONFIG_SAVED = "recurring_config_saved"
    RECURRING_CONFIG_DELETED = "recurring_config_deleted"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger write creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'card', 'recurring')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one refresh)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.recurring_generated(count, month, year, correlation_id)
        event = AuditEventBuilder.invoice_settled(card_id, account_id, ...)
    """

    @staticmethod
    def refresh_completed(
        account_count: int,
        transaction_count: int,
        generated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_COMPLETED,
            correlation_id=correlation_id,
            description=(
                f"Ledger refreshed: {account_count} accounts, "
                f"{transaction_count} transactions"
            ),
            details={
                "account_count": account_count,
                "transaction_count": transaction_count,
                "generated_count": generated_count,
            },
        )

    @staticmethod
    def recurring_generated(
        transaction_ids: list[str],
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_GENERATED,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Generated {len(transaction_ids)} recurring postings for {month:02d}/{year}",
            details={
                "transaction_ids": transaction_ids,
                "month": month,
                "year": year,
            },
        )

    @staticmethod
    def unresolved_reference(
        record_kind: str,
        record_id: Optional[str],
        field: str,
        missing_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNRESOLVED_REFERENCE,
            severity=AuditSeverity.WARNING,
            entity_type=record_kind,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Skipped {record_kind}: {field} points at unknown id",
            details={
                "field": field,
                "missing_id": missing_id,
            },
        )

    @staticmethod
    def installments_created(
        group_id: Optional[str],
        transaction_ids: list[str],
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENTS_CREATED,
            entity_type="installment_group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Created {len(transaction_ids)} postings for {amount}",
            details={
                "transaction_ids": transaction_ids,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted by user",
            is_user_action=True,
        )

    @staticmethod
    def invoice_settled(
        card_id: str,
        account_id: str,
        payment_id: str,
        amount: str,
        marked_paid: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_SETTLED,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Invoice paid: {amount} from account {account_id}",
            details={
                "account_id": account_id,
                "payment_id": payment_id,
                "amount": amount,
                "marked_paid": marked_paid,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_failed(
        card_id: str,
        account_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description="Invoice settlement failed",
            error_message=error_message,
            details={
                "account_id": account_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_config_saved(
        config_id: str,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_CONFIG_SAVED,
            entity_type="recurring",
            entity_id=config_id,
            correlation_id=correlation_id,
            description=f"Recurring template saved: {description}",
            is_user_action=True,
        )

    @staticmethod
    def recurring_config_deleted(
        config_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_CONFIG_DELETED,
            entity_type="recurring",
            entity_id=config_id,
            correlation_id=correlation_id,
            description="Recurring template deleted",
            is_user_action=True,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
