"""
Audit Logger

DESIGN DECISION: Every ledger write is logged.
This provides:
1. Complete traceability of generated and settled money
2. Debugging capability when a write-back fails

The audit logger:
- Is async to match the storage layer
- Gracefully handles failures (a failed audit write never breaks a ledger operation)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_engine.models.audit import AuditEvent, AuditEventBuilder
from ledger_engine.models.ledger import UnresolvedReference
from ledger_engine.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_refresh_completed(
        self,
        account_count: int,
        transaction_count: int,
        generated_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.refresh_completed(
            account_count=account_count,
            transaction_count=transaction_count,
            generated_count=generated_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurring_generated(
        self,
        transaction_ids: list[str],
        month: int,
        year: int,
        correlation_id: UUID,
    ) -> None:
        """Log recurring postings created by a refresh."""
        event = AuditEventBuilder.recurring_generated(
            transaction_ids=transaction_ids,
            month=month,
            year=year,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_unresolved(
        self,
        references: list[UnresolvedReference],
        correlation_id: UUID,
    ) -> None:
        """Log every dangling reference the engine skipped."""
        for ref in references:
            event = AuditEventBuilder.unresolved_reference(
                record_kind=ref.record_kind.value,
                record_id=ref.record_id,
                field=ref.field,
                missing_id=ref.missing_id,
                correlation_id=correlation_id,
            )
            await self.log(event)

    async def log_installments_created(
        self,
        group_id: Optional[str],
        transaction_ids: list[str],
        amount: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.installments_created(
            group_id=group_id,
            transaction_ids=transaction_ids,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_invoice_settled(
        self,
        card_id: str,
        account_id: str,
        payment_id: str,
        amount: str,
        marked_paid: int,
        correlation_id: UUID,
    ) -> None:
        """Log a successful invoice payment."""
        event = AuditEventBuilder.invoice_settled(
            card_id=card_id,
            account_id=account_id,
            payment_id=payment_id,
            amount=amount,
            marked_paid=marked_paid,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_failed(
        self,
        card_id: str,
        account_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.settlement_failed(
            card_id=card_id,
            account_id=account_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurring_config_saved(
        self,
        config_id: str,
        description: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.recurring_config_saved(
            config_id=config_id,
            description=description,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurring_config_deleted(
        self,
        config_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.recurring_config_deleted(
            config_id=config_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed storage call."""
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., an invoice payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
