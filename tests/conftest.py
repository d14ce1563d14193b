"""
Shared fixtures.

Every test gets a fresh in-memory ledger. No test talks to Google
Sheets, Gemini or a mail service.
"""

from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio

from cashvault.config import JobSettings
from cashvault.models.ledger import (
    Account,
    RecurringInterval,
    Transaction,
    TransactionType,
    User,
)
from cashvault.services.notifications import OutboxNotificationSender
from cashvault.services.storage import SQLiteLedgerStorage


@pytest.fixture
def storage():
    storage = SQLiteLedgerStorage(":memory:").initialize()
    yield storage
    storage.close()


@pytest.fixture
def job_settings():
    """Job settings that never sleep: no backoff, no throttle window."""
    return JobSettings(
        retry_attempts=3,
        retry_wait_multiplier=0,
        retry_wait_max_seconds=0,
        throttle_limit=10,
        throttle_period_seconds=0,
        max_in_flight_per_user=2,
    )


@pytest.fixture
def outbox():
    return OutboxNotificationSender()


@pytest.fixture
def user():
    return User(email="asha@example.com", name="Asha")


@pytest.fixture
def account(user):
    return Account(
        user_id=user.id,
        name="Everyday",
        balance=Decimal("1000.00"),
        is_default=True,
    )


@pytest_asyncio.fixture
async def ledger(storage, user, account):
    """Storage seeded with one user and their default account."""
    await storage.save_user(user)
    await storage.save_account(account)
    return storage


def make_recurring(
    account: Account,
    amount="100.00",
    type=TransactionType.EXPENSE,
    interval=RecurringInterval.MONTHLY,
    **overrides,
) -> Transaction:
    """A recurring template on account; overrides go straight to the model."""
    fields = dict(
        user_id=account.user_id,
        account_id=account.id,
        type=type,
        amount=Decimal(amount),
        description="Rent",
        date=datetime(2024, 1, 1),
        category="housing",
        is_recurring=True,
        recurring_interval=interval,
    )
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture
def template(account):
    """Factory for recurring templates on the default account."""
    def factory(**overrides) -> Transaction:
        return make_recurring(account, **overrides)
    return factory
