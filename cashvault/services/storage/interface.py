"""
Abstract Storage Interface

DESIGN DECISION: The jobs talk to storage only through these interfaces.
This allows us to:
1. Run the same job logic against SQLite, Postgres, or an ORM-backed service
2. Use an in-memory database for testing
3. Keep the decision rules free of persistence code

The interface is intentionally narrow - just the reads the jobs need,
the two kinds of writes they make, and enough seeding to set up data.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from cashvault.models.ledger import (
    Account,
    Budget,
    BudgetCheckTarget,
    RecurringFiring,
    Transaction,
    User,
)
from cashvault.models.audit import AuditEvent


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation must implement these methods.
    """

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_recurring_transactions(self) -> list[Transaction]:
        """
        List every transaction flagged as recurring.

        Eligibility and due-ness are decided by the caller.
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Retrieve a transaction by ID, optionally scoped to a user.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budget_targets(self) -> list[BudgetCheckTarget]:
        """
        List every budget joined with its user and the user's default account.

        default_account is None when the user has no default account.
        """
        pass

    @abstractmethod
    async def get_expense_total(
        self,
        user_id: UUID,
        account_id: UUID,
        date_from: datetime,
        date_to: datetime,
    ) -> Decimal:
        """
        Sum EXPENSE amounts for one account with date_from <= date < date_to.

        Returns:
            The total, Decimal("0") when there is nothing to sum
        """
        pass

    @abstractmethod
    async def list_users(self) -> list[User]:
        pass

    @abstractmethod
    async def list_accounts(self, user_id: UUID) -> list[Account]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: UUID,
        date_from: datetime,
        date_to: datetime,
    ) -> list[Transaction]:
        """List a user's transactions with date_from <= date < date_to, oldest first."""
        pass

    # ------------------------------------------------------------------
    # Job writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def apply_recurring_firing(self, firing: RecurringFiring) -> None:
        """
        Apply a recurring firing atomically.

        In one transaction: insert firing.new_entry, add balance_delta to
        the account balance, and set the template's last_processed and
        next_recurring_date. Either all three happen or none do.

        Raises:
            NotFoundError: If the template or account no longer exists
            DuplicateError: If this firing was already applied
            PersistenceError: If the transaction did not commit
        """
        pass

    @abstractmethod
    async def mark_budget_alert_sent(
        self,
        budget_id: UUID,
        sent_at: datetime,
    ) -> None:
        """
        Set a budget's last_alert_sent.

        Raises:
            NotFoundError: If the budget no longer exists
            PersistenceError: If the update did not commit
        """
        pass

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_user(self, user: User) -> User:
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a transaction.

        Raises:
            DuplicateError: If the id or idempotency key already exists
        """
        pass

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for one job run, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class PersistenceError(StorageError):
    """A write did not commit. Nothing from it was applied."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
