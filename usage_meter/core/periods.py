"""
Reset period resolution.

Computes the half-open window [start, end) that defines "the current period"
for an account's reset policy. All boundaries are local midnights.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class ResetPolicy(Enum):
    """Recurrence rule governing when an account's usage restarts."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    NEVER = "never"


@dataclass(frozen=True)
class PeriodWindow:
    """Half-open time window [start, end) in local time."""
    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate the window has positive length."""
        if self.start >= self.end:
            raise ValueError("window start must be before window end")

    def contains(self, instant: datetime) -> bool:
        """Check whether an instant falls inside the window (start inclusive)."""
        return self.start <= to_local(instant) < self.end


def to_local(instant: datetime) -> datetime:
    """Return ``instant`` as a naive datetime in the local timezone.

    Naive datetimes are taken to be local already and are returned unchanged.
    """
    if instant.tzinfo is None:
        return instant
    return instant.astimezone().replace(tzinfo=None)


def _local_midnight(instant: datetime) -> datetime:
    return datetime(instant.year, instant.month, instant.day)


def resolve_window(policy: ResetPolicy, now: datetime) -> Optional[PeriodWindow]:
    """Resolve the current period window for a reset policy.

    Weeks start on Sunday. Months and years follow the calendar, so window
    length varies with month length and leap years.

    Args:
        policy: Reset policy of the account
        now: Reference instant (aware instants are converted to local time)

    Returns:
        PeriodWindow containing ``now``, or None for ``NEVER`` (unbounded)
    """
    local_now = to_local(now)

    if policy == ResetPolicy.NEVER:
        return None

    if policy == ResetPolicy.DAILY:
        start = _local_midnight(local_now)
        end = start + timedelta(days=1)
    elif policy == ResetPolicy.WEEKLY:
        # weekday() has Monday=0; shift so Sunday is day 0
        days_since_sunday = (local_now.weekday() + 1) % 7
        start = _local_midnight(local_now) - timedelta(days=days_since_sunday)
        end = start + timedelta(days=7)
    elif policy == ResetPolicy.MONTHLY:
        start = datetime(local_now.year, local_now.month, 1)
        if local_now.month == 12:
            end = datetime(local_now.year + 1, 1, 1)
        else:
            end = datetime(local_now.year, local_now.month + 1, 1)
    elif policy == ResetPolicy.YEARLY:
        start = datetime(local_now.year, 1, 1)
        end = datetime(local_now.year + 1, 1, 1)
    else:
        raise ValueError(f"Unknown reset policy: {policy}")

    return PeriodWindow(start=start, end=end)
