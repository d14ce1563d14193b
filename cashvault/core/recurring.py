"""
Recurring Transaction Scheduling Rules

Pure functions: given a snapshot of a recurring transaction and the
current instant, decide whether it is due and what firing it produces.
Nothing here reads or writes storage, and nothing here raises for bad
data; an unusable record yields None plus a reason from
invalid_state_reason().

Next dates are computed from the firing instant, not from the previous
schedule, so a template that was missed for a while resumes one interval
after it finally fires.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from cashvault.core.clock import to_naive_utc
from cashvault.models.ledger import (
    RecurringFiring,
    RecurringInterval,
    Transaction,
    TransactionStatus,
)


DEFAULT_DESCRIPTION_SUFFIX = "(Recurring)"

_INTERVAL_STEPS = {
    RecurringInterval.DAILY: timedelta(days=1),
    RecurringInterval.WEEKLY: timedelta(days=7),
    RecurringInterval.MONTHLY: relativedelta(months=1),
    RecurringInterval.YEARLY: relativedelta(years=1),
}


def calculate_next_recurring_date(
    start: datetime,
    interval: RecurringInterval,
) -> datetime:
    """
    Add one interval to start.

    Months and years step the calendar field and let a day that does not
    exist in the target month overflow into the next one: Jan 31 + 1 month
    is Mar 2 in a leap year, Feb 29 + 1 year is Mar 1.
    """
    step = _INTERVAL_STEPS[RecurringInterval(interval)]
    result = start + step
    if isinstance(step, relativedelta) and result.day < start.day:
        # relativedelta clamped to the month end; push the missing days forward
        result += timedelta(days=start.day - result.day)
    return result


def is_due(transaction: Transaction, now: datetime) -> bool:
    """A never-processed template is always due; otherwise its date must have arrived."""
    now = to_naive_utc(now)
    if transaction.last_processed is None:
        return True
    if transaction.next_recurring_date is None:
        return False
    return transaction.next_recurring_date <= now


def is_eligible(transaction: Transaction) -> bool:
    """Only completed rows flagged as recurring take part in scheduling."""
    return (
        transaction.is_recurring
        and transaction.status == TransactionStatus.COMPLETED
    )


def select_due_transactions(
    all_recurring: Iterable[Transaction],
    now: datetime,
) -> list[Transaction]:
    """Filter to eligible templates that are due at now. Order is preserved."""
    return [
        t for t in all_recurring
        if is_eligible(t) and is_due(t, now)
    ]


def invalid_state_reason(transaction: Transaction) -> Optional[str]:
    """Explain why a template cannot fire, or None if it can."""
    if not transaction.is_recurring:
        return "transaction is not recurring"
    if transaction.recurring_interval is None:
        return "recurring interval is missing"
    if transaction.amount < 0:
        return "amount is negative"
    return None


def idempotency_key(transaction: Transaction) -> str:
    """
    Key identifying one scheduled firing of a template.

    Two workers that pick up the same firing produce the same key, and
    storage rejects the second insert.
    """
    if transaction.last_processed is None or transaction.next_recurring_date is None:
        scheduled = "initial"
    else:
        scheduled = transaction.next_recurring_date.isoformat()
    return f"{transaction.id}:{scheduled}"


def generated_description(
    description: Optional[str],
    suffix: str = DEFAULT_DESCRIPTION_SUFFIX,
) -> str:
    base = (description or "").strip()
    return f"{base} {suffix}" if base else suffix


def compute_next_occurrence(
    transaction: Transaction,
    now: datetime,
    description_suffix: str = DEFAULT_DESCRIPTION_SUFFIX,
) -> Optional[RecurringFiring]:
    """
    Build the firing for a due template.

    Returns None when the template is in an invalid state. The caller
    is expected to have checked is_due().
    """
    if invalid_state_reason(transaction) is not None:
        return None
    now = to_naive_utc(now)

    new_entry = Transaction(
        user_id=transaction.user_id,
        account_id=transaction.account_id,
        type=transaction.type,
        amount=transaction.amount,
        description=generated_description(transaction.description, description_suffix),
        date=now,
        category=transaction.category,
        status=TransactionStatus.COMPLETED,
        is_recurring=False,
        recurring_source_id=transaction.id,
        idempotency_key=idempotency_key(transaction),
    )

    return RecurringFiring(
        transaction_id=transaction.id,
        account_id=transaction.account_id,
        new_entry=new_entry,
        balance_delta=transaction.signed_amount,
        processed_at=now,
        next_recurring_date=calculate_next_recurring_date(
            now, transaction.recurring_interval
        ),
    )
