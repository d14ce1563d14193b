"""
Ledger Data Models for Cashvault

These models are the snapshots that flow between storage and the
job logic. Storage owns the records; the decision functions read
these snapshots and return mutation intents, never touching
storage themselves.

DESIGN DECISION: Money is always Decimal. Recurring transactions are
applied many times over the life of an account, and binary floats
would drift.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class TransactionStatus(str, Enum):
    """
    Settlement status.

    Only COMPLETED recurring transactions are eligible to fire.
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecurringInterval(str, Enum):
    """How often a recurring transaction fires."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class AccountType(str, Enum):
    CURRENT = "CURRENT"
    SAVINGS = "SAVINGS"


# =============================================================================
# STORED ENTITIES
# =============================================================================

class User(BaseModel):
    """An application user, as far as the jobs need to know them."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: Optional[str] = Field(
        default=None,
        max_length=320,
        description="Where reports and alerts are sent"
    )
    name: Optional[str] = Field(default=None, max_length=200)


class Account(BaseModel):
    """A money account. The balance is mutated additively by recurring firings."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType = AccountType.CURRENT
    balance: Decimal = Field(default=Decimal("0"), decimal_places=2)
    is_default: bool = False


class Transaction(BaseModel):
    """
    A ledger row.

    When is_recurring is set the row doubles as a template: each time it
    becomes due, a plain copy is written to the ledger and the template's
    schedule advances.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    account_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., decimal_places=2, description="Sign comes from type; negative templates are skipped")
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=datetime.utcnow)
    category: str = Field(default="other", min_length=1, max_length=100)
    status: TransactionStatus = TransactionStatus.COMPLETED

    # Recurrence
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None
    next_recurring_date: Optional[datetime] = None
    last_processed: Optional[datetime] = None

    # Traceability of generated entries
    recurring_source_id: Optional[UUID] = Field(
        default=None,
        description="Template this entry was generated from"
    )
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Unique per firing; a repeated firing is rejected by storage"
    )

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects the account balance."""
        if self.type == TransactionType.EXPENSE:
            return -self.amount
        return self.amount


class Budget(BaseModel):
    """
    A monthly spending ceiling for a user's default account.

    The amount is deliberately unconstrained here; a zero or negative
    ceiling is a state the evaluator reports, not a parse failure.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    amount: Decimal
    last_alert_sent: Optional[datetime] = None


class BudgetCheckTarget(BaseModel):
    """A budget with everything the alert job needs to act on it."""

    budget: Budget
    user: User
    default_account: Optional[Account] = None

    @model_validator(mode='after')
    def validate_ownership(self) -> 'BudgetCheckTarget':
        if self.budget.user_id != self.user.id:
            raise ValueError("Budget does not belong to user")
        if self.default_account and self.default_account.user_id != self.user.id:
            raise ValueError("Default account does not belong to user")
        return self


# =============================================================================
# DECISIONS AND PAYLOADS
# =============================================================================

class RecurringFiring(BaseModel):
    """
    Mutation intent for one due recurring transaction.

    All three parts are applied in one storage transaction:
    insert new_entry, add balance_delta to the account, and stamp the
    template with processed_at / next_recurring_date.
    """

    transaction_id: UUID
    account_id: UUID
    new_entry: Transaction
    balance_delta: Decimal
    processed_at: datetime
    next_recurring_date: datetime


class BudgetAlertPayload(BaseModel):
    """Data rendered into a budget alert email. Figures are rounded to 0.1."""

    percentage_used: Decimal
    budget_amount: Decimal
    total_expenses: Decimal
    account_name: str


class BudgetAlertDecision(BaseModel):
    """Outcome of evaluating one budget."""

    budget_id: UUID
    should_alert: bool = False
    percentage_used: Optional[Decimal] = None
    payload: Optional[BudgetAlertPayload] = None
    alert_sent_at: Optional[datetime] = Field(
        default=None,
        description="Value to store in Budget.last_alert_sent once the alert is out"
    )
    skip_reason: Optional[str] = None


class MonthlyStats(BaseModel):
    """Income and expense totals for one calendar month."""

    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    transaction_count: int = Field(default=0, ge=0)

    @property
    def net_income(self) -> Decimal:
        return self.total_income - self.total_expenses


class MonthlyReportPayload(BaseModel):
    """Data rendered into the monthly report email."""

    month: str
    stats: MonthlyStats
    insights: list[str] = Field(default_factory=list)


class NotificationTemplate(str, Enum):
    BUDGET_ALERT = "budget-alert"
    MONTHLY_REPORT = "monthly-report"


class Notification(BaseModel):
    """A message for the notification sender. Delivery is not our concern."""

    recipient: str = Field(..., min_length=3)
    subject: str = Field(..., min_length=1, max_length=300)
    template: NotificationTemplate
    user_name: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class JobRunSummary(BaseModel):
    """Counters for one batch run of a job."""

    job: str
    correlation_id: UUID
    started_at: datetime = Field(default_factory=datetime.utcnow)
    triggered: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def succeeded(self) -> bool:
        return self.failed == 0
