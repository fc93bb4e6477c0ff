"""
Data models for storage layer.

Defines tracked accounts and the usage events logged against them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from usage_meter.core.periods import ResetPolicy


class UsageType(Enum):
    """What an account's usage counter measures."""
    CUSTOM = "custom"
    API_CALLS = "api_calls"
    TOKENS = "tokens"
    STORAGE = "storage"
    BANDWIDTH = "bandwidth"


@dataclass(frozen=True)
class Account:
    """Tracked account whose usage is metered against a recurring budget.

    ``current_usage`` is a cache. The source of truth is the sum of the
    account's usage events inside the active period window.
    """
    id: str
    owner_id: str
    title: str
    platform: str
    reset_policy: ResetPolicy
    created_at: datetime
    updated_at: datetime
    usage_type: UsageType = UsageType.CUSTOM
    usage_limit: Optional[int] = None
    current_usage: int = 0
    is_active: bool = True
    email_username: str = ""
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    folder_id: Optional[str] = None


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of consumption logged against an account.

    ``timestamp`` is the instant the usage happened, not when it was recorded.
    Only ``amount`` and ``description`` may change after creation.
    """
    id: str
    owner_id: str
    account_id: str
    amount: int
    timestamp: datetime
    description: Optional[str] = None
