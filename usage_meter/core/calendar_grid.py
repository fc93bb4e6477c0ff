"""
Calendar projection of usage events.

Buckets raw usage events by local calendar day for a month view laid out as
a 7-column grid starting on Sunday. Reset periods play no part here.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, List, Optional

from .periods import to_local
from usage_meter.storage.models import UsageEvent

# Size of the decoration pool the UI picks from
DECORATION_COUNT = 31


class CellKind(Enum):
    """Position of a cell relative to the displayed month."""
    LEADING = "leading"    # Trailing days of the previous month
    IN_MONTH = "in_month"
    TRAILING = "trailing"  # Filler days of the next month


@dataclass(frozen=True)
class DayCell:
    """One cell of the month grid."""
    kind: CellKind
    day: int
    date: Optional[date] = None
    events: List[UsageEvent] = field(default_factory=list)
    total_amount: int = 0
    is_today: bool = False
    decoration_index: Optional[int] = None

    @property
    def date_key(self) -> Optional[str]:
        """Date as ``YYYY-MM-DD`` for in-month cells."""
        return self.date.isoformat() if self.date else None

    @property
    def is_selectable(self) -> bool:
        """Only in-month days with at least one event can be selected."""
        return self.kind == CellKind.IN_MONTH and bool(self.events)


def format_date_key(year: int, month: int, day: int) -> str:
    """Format a calendar date as ``YYYY-MM-DD`` (month is 1-based)."""
    return f"{year:04d}-{month:02d}-{day:02d}"


def event_date_key(event: UsageEvent) -> str:
    """Local calendar date of an event as ``YYYY-MM-DD``."""
    local = to_local(event.timestamp)
    return format_date_key(local.year, local.month, local.day)


def events_for_date(date_key: str, events: Iterable[UsageEvent]) -> List[UsageEvent]:
    """Return the events whose local date matches ``date_key``.

    Raises:
        ValueError: If ``date_key`` is not a valid ``YYYY-MM-DD`` date
    """
    # Normalise and validate the key
    key = datetime.strptime(date_key, "%Y-%m-%d").date().isoformat()
    return [event for event in events if event_date_key(event) == key]


def decoration_index(day: int, month: int) -> int:
    """Deterministic decoration slot for a day of a month.

    Presentation only; it never affects aggregation.

    Args:
        day: Day of month (1-31)
        month: Month (1-12)
    """
    return (day * 7 + (month - 1) * 3) % DECORATION_COUNT


def first_weekday_offset(year: int, month: int) -> int:
    """Zero-based weekday of the 1st of the month with Sunday = 0."""
    return (date(year, month, 1).weekday() + 1) % 7


def project_month(
    year: int,
    month: int,
    events: Iterable[UsageEvent],
    today: Optional[date] = None
) -> List[DayCell]:
    """Project usage events onto a month grid.

    The grid holds ``ceil((offset + days_in_month) / 7) * 7`` cells in
    row-major order. Leading and trailing cells carry no aggregation.

    Args:
        year: Calendar year
        month: Month (1-12)
        events: Usage events to bucket (any accounts, any period)
        today: Optional date to flag with ``is_today``

    Returns:
        List of DayCell filling complete weeks

    Raises:
        ValueError: If month is outside 1-12
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")

    offset = first_weekday_offset(year, month)
    days_in_month = calendar.monthrange(year, month)[1]
    total_cells = -(-(offset + days_in_month) // 7) * 7
    trailing = total_cells - (offset + days_in_month)

    # Bucket events once by local date
    buckets = {}
    for event in events:
        local = to_local(event.timestamp)
        if local.year == year and local.month == month:
            buckets.setdefault(local.day, []).append(event)

    if month == 1:
        days_in_prev_month = calendar.monthrange(year - 1, 12)[1]
    else:
        days_in_prev_month = calendar.monthrange(year, month - 1)[1]

    cells = []
    for i in range(offset - 1, -1, -1):
        cells.append(DayCell(kind=CellKind.LEADING, day=days_in_prev_month - i))

    for day in range(1, days_in_month + 1):
        day_events = buckets.get(day, [])
        cell_date = date(year, month, day)
        cells.append(DayCell(
            kind=CellKind.IN_MONTH,
            day=day,
            date=cell_date,
            events=day_events,
            total_amount=sum(event.amount for event in day_events),
            is_today=today == cell_date,
            decoration_index=decoration_index(day, month)
        ))

    for day in range(1, trailing + 1):
        cells.append(DayCell(kind=CellKind.TRAILING, day=day))

    return cells
