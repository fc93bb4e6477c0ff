"""
Usage activity feed.

Filtering, ordering, paging and summary statistics over usage logs.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

from .periods import to_local
from usage_meter.storage.models import Account, UsageEvent

T = TypeVar("T")

ITEMS_PER_PAGE = 12


class DateFilter(Enum):
    """How far back the activity feed reaches."""
    ALL = "all"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SortOrder(Enum):
    """Ordering of the activity feed."""
    NEWEST = "newest"
    OLDEST = "oldest"
    AMOUNT_HIGH = "amount_high"
    AMOUNT_LOW = "amount_low"


@dataclass(frozen=True)
class ActivityStats:
    """Summary of a set of usage logs."""
    total_usage: int
    total_logs: int
    unique_accounts: int
    avg_per_day: float


def _shift_months(instant: datetime, months: int) -> datetime:
    """Move ``instant`` by whole calendar months, clamping the day."""
    index = instant.year * 12 + instant.month - 1 + months
    year, month = divmod(index, 12)
    month += 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


def _cutoff(date_filter: DateFilter, now: datetime) -> Optional[datetime]:
    if date_filter == DateFilter.WEEK:
        return now - timedelta(days=7)
    if date_filter == DateFilter.MONTH:
        return _shift_months(now, -1)
    if date_filter == DateFilter.YEAR:
        return _shift_months(now, -12)
    return None


def filter_events(
    events: Iterable[UsageEvent],
    accounts: Iterable[Account],
    now: datetime,
    search: Optional[str] = None,
    account_id: Optional[str] = None,
    date_filter: DateFilter = DateFilter.ALL
) -> List[UsageEvent]:
    """Filter usage logs the way the activity feed presents them.

    Args:
        events: Usage logs to filter
        accounts: Accounts used to resolve titles and platforms for search
        now: Reference instant for the date filter
        search: Case-insensitive text matched against account title,
            account platform and log description
        account_id: Only keep logs of this account
        date_filter: Relative date range to keep

    Returns:
        Matching events in their original order
    """
    by_id: Dict[str, Account] = {account.id: account for account in accounts}
    local_now = to_local(now)
    needle = search.strip().lower() if search else ""
    cutoff = _cutoff(date_filter, local_now)

    result = []
    for event in events:
        if account_id is not None and event.account_id != account_id:
            continue

        if needle:
            account = by_id.get(event.account_id)
            haystacks = [event.description or ""]
            if account is not None:
                haystacks.extend([account.title, account.platform])
            if not any(needle in text.lower() for text in haystacks):
                continue

        local_ts = to_local(event.timestamp)
        if date_filter == DateFilter.TODAY and local_ts.date() != local_now.date():
            continue
        if cutoff is not None and local_ts < cutoff:
            continue

        result.append(event)
    return result


def sort_events(events: Iterable[UsageEvent], order: SortOrder) -> List[UsageEvent]:
    """Return the events sorted by the given order (stable)."""
    if order == SortOrder.NEWEST:
        return sorted(events, key=lambda e: to_local(e.timestamp), reverse=True)
    if order == SortOrder.OLDEST:
        return sorted(events, key=lambda e: to_local(e.timestamp))
    if order == SortOrder.AMOUNT_HIGH:
        return sorted(events, key=lambda e: e.amount, reverse=True)
    if order == SortOrder.AMOUNT_LOW:
        return sorted(events, key=lambda e: e.amount)
    raise ValueError(f"Unknown sort order: {order}")


def paginate(items: Sequence[T], page: int, per_page: int = ITEMS_PER_PAGE) -> List[T]:
    """Return one 1-based page of ``items``.

    Raises:
        ValueError: If page or per_page is not positive
    """
    if page < 1:
        raise ValueError("page must be >= 1")
    if per_page < 1:
        raise ValueError("per_page must be >= 1")
    start = (page - 1) * per_page
    return list(items[start:start + per_page])


def page_count(total: int, per_page: int = ITEMS_PER_PAGE) -> int:
    """Number of pages needed for ``total`` items."""
    return math.ceil(total / per_page)


def compute_activity_stats(events: Sequence[UsageEvent], now: datetime) -> ActivityStats:
    """Summarise usage logs.

    The daily average spreads the total over the days since the oldest log,
    counting at least one day.
    """
    if not events:
        return ActivityStats(total_usage=0, total_logs=0, unique_accounts=0, avg_per_day=0.0)

    total_usage = sum(event.amount for event in events)
    oldest = min(to_local(event.timestamp) for event in events)
    elapsed = (to_local(now) - oldest) / timedelta(days=1)
    days = max(1, math.ceil(elapsed))

    return ActivityStats(
        total_usage=total_usage,
        total_logs=len(events),
        unique_accounts=len({event.account_id for event in events}),
        avg_per_day=total_usage / days
    )
