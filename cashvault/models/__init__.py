"""
Data Models Package

This package contains all Pydantic models used by the Cashvault jobs.
All data flowing between storage and job logic conforms to these schemas.
"""

from cashvault.models.ledger import (
    Account,
    AccountType,
    Budget,
    BudgetAlertDecision,
    BudgetAlertPayload,
    BudgetCheckTarget,
    JobRunSummary,
    MonthlyReportPayload,
    MonthlyStats,
    Notification,
    NotificationTemplate,
    RecurringFiring,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from cashvault.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "Budget",
    "BudgetAlertDecision",
    "BudgetAlertPayload",
    "BudgetCheckTarget",
    "JobRunSummary",
    "MonthlyReportPayload",
    "MonthlyStats",
    "Notification",
    "NotificationTemplate",
    "RecurringFiring",
    "RecurringInterval",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
