"""
Monthly Report Aggregation

Turns a month of ledger rows into the totals shown in the monthly
report email. Anything that is not an EXPENSE counts as income.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from dateutil.relativedelta import relativedelta

from cashvault.models.ledger import MonthlyStats, Transaction, TransactionType


FALLBACK_INSIGHTS = [
    "Your highest expense category this month might need attention.",
    "Consider setting up a budget for better financial management.",
    "Track your recurring expenses to identify potential savings.",
]


def previous_month(now: datetime) -> datetime:
    return now - relativedelta(months=1)


def month_name(moment: datetime) -> str:
    return moment.strftime("%B")


def build_report_subject(name: str) -> str:
    return f"Your Monthly Financial Report - {name}"


def get_monthly_stats(transactions: Iterable[Transaction]) -> MonthlyStats:
    total_income = Decimal("0")
    total_expenses = Decimal("0")
    by_category: dict[str, Decimal] = {}
    count = 0

    for t in transactions:
        count += 1
        if t.type == TransactionType.EXPENSE:
            total_expenses += t.amount
            by_category[t.category] = by_category.get(t.category, Decimal("0")) + t.amount
        else:
            total_income += t.amount

    return MonthlyStats(
        total_income=total_income,
        total_expenses=total_expenses,
        by_category=by_category,
        transaction_count=count,
    )
