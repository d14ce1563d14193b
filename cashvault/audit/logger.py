"""
Audit Logger

DESIGN DECISION: Every job decision that moves money or sends a message
is logged. This provides:
1. Traceability of every balance change made by a job
2. An answer to "why didn't I get an alert?"
3. Debugging capability for failed job runs

The audit logger:
- Is async to fit the job flows
- Gracefully handles failures (a broken audit sink never fails a job)
- Supports correlation IDs to group the events of one job run
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from cashvault.models.audit import AuditEvent, AuditEventBuilder
from cashvault.services.storage import AuditStorageInterface


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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (always)
    2. Audit storage (when configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("cashvault.audit")
        self.events: list[AuditEvent] = []

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if storage write succeeded (or no storage configured).
        """
        self.events.append(event)
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
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_recurring_triggered(
        self,
        due_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_triggered(
            due_count=due_count,
            correlation_id=correlation_id,
        ))

    async def log_recurring_processed(
        self,
        transaction_id: UUID,
        new_entry_id: UUID,
        balance_delta: str,
        next_recurring_date: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_processed(
            transaction_id=transaction_id,
            new_entry_id=new_entry_id,
            balance_delta=balance_delta,
            next_recurring_date=next_recurring_date,
            correlation_id=correlation_id,
        ))

    async def log_recurring_skipped(
        self,
        transaction_id: Optional[UUID],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_skipped(
            transaction_id=transaction_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_recurring_failed(
        self,
        transaction_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_failed(
            transaction_id=transaction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_budget_alert_sent(
        self,
        budget_id: UUID,
        percentage_used: str,
        recipient: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_alert_sent(
            budget_id=budget_id,
            percentage_used=percentage_used,
            recipient=recipient,
            correlation_id=correlation_id,
        ))

    async def log_budget_check_skipped(
        self,
        budget_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_check_skipped(
            budget_id=budget_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_budget_check_failed(
        self,
        budget_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_check_failed(
            budget_id=budget_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_monthly_report_sent(
        self,
        user_id: UUID,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.monthly_report_sent(
            user_id=user_id,
            month=month,
            correlation_id=correlation_id,
        ))

    async def log_monthly_report_skipped(
        self,
        user_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.monthly_report_skipped(
            user_id=user_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_monthly_report_failed(
        self,
        user_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.monthly_report_failed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a job run and pass it to every unit.
    """
    return uuid4()
