"""
Audit Models for Cashvault Jobs

Every job decision that touches money or sends a message is recorded.
This lets us answer "why did my balance change?" and "why did I get
(or not get) an alert?" after the fact.

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
    # Recurring transactions
    RECURRING_TRIGGERED = "recurring_triggered"
    RECURRING_PROCESSED = "recurring_processed"
    RECURRING_SKIPPED = "recurring_skipped"
    RECURRING_FAILED = "recurring_failed"

    # Budget alerts
    BUDGET_ALERT_SENT = "budget_alert_sent"
    BUDGET_CHECK_SKIPPED = "budget_check_skipped"
    BUDGET_CHECK_FAILED = "budget_check_failed"

    # Monthly reports
    MONTHLY_REPORT_SENT = "monthly_report_sent"
    MONTHLY_REPORT_SKIPPED = "monthly_report_skipped"
    MONTHLY_REPORT_FAILED = "monthly_report_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    Events from one batch run share a correlation_id.
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
        description="Type of entity (e.g., 'transaction', 'budget', 'user')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one job run)"
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

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.recurring_processed(transaction_id, ...)
        event = AuditEventBuilder.budget_alert_sent(budget_id, ...)
    """

    @staticmethod
    def recurring_triggered(
        due_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TRIGGERED,
            correlation_id=correlation_id,
            description=f"Recurring check found {due_count} due transactions",
            details={"due_count": due_count},
        )

    @staticmethod
    def recurring_processed(
        transaction_id: UUID,
        new_entry_id: UUID,
        balance_delta: str,
        next_recurring_date: datetime,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PROCESSED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Recurring transaction fired: {balance_delta}",
            details={
                "new_entry_id": str(new_entry_id),
                "balance_delta": balance_delta,
                "next_recurring_date": next_recurring_date.isoformat(),
            },
        )

    @staticmethod
    def recurring_skipped(
        transaction_id: Optional[UUID],
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Recurring transaction skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def recurring_failed(
        transaction_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Recurring transaction was not applied",
            error_message=error_message,
        )

    @staticmethod
    def budget_alert_sent(
        budget_id: UUID,
        percentage_used: str,
        recipient: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_SENT,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget alert sent at {percentage_used}% used",
            details={
                "percentage_used": percentage_used,
                "recipient": recipient,
            },
        )

    @staticmethod
    def budget_check_skipped(
        budget_id: UUID,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CHECK_SKIPPED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget check skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def budget_check_failed(
        budget_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CHECK_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget check failed",
            error_message=error_message,
        )

    @staticmethod
    def monthly_report_sent(
        user_id: UUID,
        month: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_REPORT_SENT,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Monthly report sent for {month}",
            details={"month": month},
        )

    @staticmethod
    def monthly_report_skipped(
        user_id: UUID,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_REPORT_SKIPPED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Monthly report skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def monthly_report_failed(
        user_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_REPORT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Monthly report failed",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
