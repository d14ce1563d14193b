"""
Budget Alert Rules

A budget alert fires when spending on the default account reaches the
threshold share of the budget, at most once per calendar month.

The cooldown compares month and year only. A budget alerted on the 1st
is "already alerted" until the 1st of the next month, and one alerted
on the 31st can alert again the next day.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from dateutil.relativedelta import relativedelta

from cashvault.core.clock import to_naive_utc
from cashvault.models.ledger import (
    Budget,
    BudgetAlertDecision,
    BudgetAlertPayload,
)


DEFAULT_THRESHOLD = Decimal("80")

_ONE_DECIMAL = Decimal("0.1")


def round_one_decimal(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)


def is_new_month(last_alert: datetime, now: datetime) -> bool:
    return last_alert.month != now.month or last_alert.year != now.year


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Return [start of now's month, start of the next month)."""
    now = to_naive_utc(now)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, start + relativedelta(months=1)


def percentage_used(
    period_expense_sum: Decimal,
    budget_amount: Decimal,
) -> Optional[Decimal]:
    """Spend as a percentage of the budget, or None when the budget is not positive."""
    if budget_amount is None or budget_amount <= 0:
        return None
    try:
        return Decimal(period_expense_sum) / Decimal(budget_amount) * 100
    except (InvalidOperation, ArithmeticError):
        return None


def evaluate_budget(
    budget: Budget,
    period_expense_sum: Decimal,
    now: datetime,
    account_name: str = "",
    threshold: Decimal = DEFAULT_THRESHOLD,
) -> BudgetAlertDecision:
    """
    Decide whether a budget alert should go out now.

    Never raises. When the alert fires, the decision carries the payload
    and alert_sent_at; the caller stores alert_sent_at as the budget's
    last_alert_sent once the message has been handed off.
    """
    now = to_naive_utc(now)
    used = percentage_used(period_expense_sum, budget.amount)
    if used is None:
        return BudgetAlertDecision(
            budget_id=budget.id,
            skip_reason="budget amount is not positive",
        )

    if used < threshold:
        return BudgetAlertDecision(budget_id=budget.id, percentage_used=used)

    if budget.last_alert_sent is not None and not is_new_month(budget.last_alert_sent, now):
        return BudgetAlertDecision(
            budget_id=budget.id,
            percentage_used=used,
            skip_reason="alert already sent this month",
        )

    return BudgetAlertDecision(
        budget_id=budget.id,
        should_alert=True,
        percentage_used=used,
        payload=BudgetAlertPayload(
            percentage_used=round_one_decimal(used),
            budget_amount=round_one_decimal(budget.amount),
            total_expenses=round_one_decimal(period_expense_sum),
            account_name=account_name,
        ),
        alert_sent_at=now,
    )
