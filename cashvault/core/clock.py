"""
Clock helpers.

Stored timestamps are naive UTC. Anything that arrives with a tzinfo is
converted at the edge so comparisons never mix the two.
"""

from datetime import datetime, timezone
from typing import Optional


def to_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """The given instant as naive UTC, or the current time."""
    if now is None:
        return datetime.utcnow()
    return to_naive_utc(now)
