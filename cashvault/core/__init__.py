"""
Job decision logic.

Everything in this package is pure: snapshots in, decisions out.
"""

from cashvault.core.budget_alerts import (
    evaluate_budget,
    is_new_month,
    month_bounds,
)
from cashvault.core.recurring import (
    calculate_next_recurring_date,
    compute_next_occurrence,
    idempotency_key,
    invalid_state_reason,
    is_due,
    select_due_transactions,
)
from cashvault.core.reports import (
    FALLBACK_INSIGHTS,
    get_monthly_stats,
    previous_month,
)

__all__ = [
    "FALLBACK_INSIGHTS",
    "calculate_next_recurring_date",
    "compute_next_occurrence",
    "evaluate_budget",
    "get_monthly_stats",
    "idempotency_key",
    "invalid_state_reason",
    "is_due",
    "is_new_month",
    "month_bounds",
    "previous_month",
    "select_due_transactions",
]
