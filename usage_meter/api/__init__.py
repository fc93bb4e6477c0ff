"""
API for Usage Meter.

Provides the usage and calendar operations consumed by the UI layer.
"""

from .calendar_api import CalendarAPI
from .usage_api import ActivityPage, UsageAPI

__all__ = ["ActivityPage", "CalendarAPI", "UsageAPI"]
