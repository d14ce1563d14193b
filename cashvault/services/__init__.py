"""Services package."""

from cashvault.services.notifications import (
    NotificationError,
    NotificationSenderInterface,
    OutboxNotificationSender,
)
from cashvault.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    SQLiteLedgerStorage,
    StorageError,
)

__all__ = [
    # Notifications
    "NotificationError",
    "NotificationSenderInterface",
    "OutboxNotificationSender",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "LedgerStorageInterface",
    "NotFoundError",
    "PersistenceError",
    "SQLiteLedgerStorage",
    "StorageError",
]
