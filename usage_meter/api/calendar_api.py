"""
Calendar API exposed to the UI layer.

Day-level view of usage logs, independent of any account's reset period.
"""

from datetime import datetime
from typing import Callable, List

from .usage_api import list_live_events
from usage_meter.core.calendar_grid import DayCell, events_for_date, project_month
from usage_meter.core.errors import ValidationError
from usage_meter.core.periods import to_local
from usage_meter.storage.interface import AccountStore, UsageEventStore
from usage_meter.storage.models import UsageEvent


class CalendarAPI:
    """Month grid and per-day usage logs for one owner."""

    def __init__(
        self,
        owner_id: str,
        accounts: AccountStore,
        events: UsageEventStore,
        clock: Callable[[], datetime] = datetime.now
    ):
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id is required and cannot be empty")

        self.owner_id = owner_id
        self.accounts = accounts
        self.events = events
        self.clock = clock

    def get_month_grid(self, year: int, month: int) -> List[DayCell]:
        """Month grid with per-day usage totals; today is flagged.

        Raises:
            ValidationError: If month is outside 1-12
        """
        if not 1 <= month <= 12:
            raise ValidationError(f"month must be between 1 and 12, got {month}")
        events = list_live_events(self.owner_id, self.accounts, self.events)
        return project_month(year, month, events, today=to_local(self.clock()).date())

    def get_events_for_date(self, date_key: str) -> List[UsageEvent]:
        """Usage logs whose local date is ``date_key`` (``YYYY-MM-DD``).

        Raises:
            ValidationError: If the date key is malformed
        """
        events = list_live_events(self.owner_id, self.accounts, self.events)
        try:
            return events_for_date(date_key, events)
        except ValueError:
            raise ValidationError(f"date must be formatted YYYY-MM-DD, got {date_key!r}")
