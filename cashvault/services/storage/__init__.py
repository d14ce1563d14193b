"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ledger data lives in SQLite; job audit events can go to Google Sheets.
"""

from cashvault.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageError,
)
from cashvault.services.storage.sqlite import SQLiteLedgerStorage
from cashvault.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
    # Implementations
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "SQLiteLedgerStorage",
]
