"""
Usage API exposed to the UI layer.

Wraps the account and usage event stores for a single owner, recomputing
current usage from the event log on every read and after every usage write.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from usage_meter.core.activity import (
    ITEMS_PER_PAGE,
    ActivityStats,
    DateFilter,
    SortOrder,
    compute_activity_stats,
    filter_events,
    page_count,
    paginate,
    sort_events,
)
from usage_meter.core.aggregator import (
    compute_current_usage,
    get_usage_percentage,
    is_over_limit,
    recompute_accounts,
)
from usage_meter.core.errors import ValidationError
from usage_meter.core.periods import ResetPolicy
from usage_meter.storage.interface import AccountStore, UsageEventStore
from usage_meter.storage.models import Account, UsageEvent, UsageType

logger = logging.getLogger(__name__)

# Fields a caller may change through update_account
UPDATABLE_ACCOUNT_FIELDS = {
    "title",
    "platform",
    "email_username",
    "usage_type",
    "usage_limit",
    "reset_policy",
    "description",
    "tags",
    "is_active",
    "folder_id",
}


@dataclass(frozen=True)
class ActivityPage:
    """One page of the usage activity feed plus stats over the whole filter."""
    events: List[UsageEvent]
    stats: ActivityStats
    page: int
    total_pages: int


def validate_amount(amount: Any) -> int:
    """Return ``amount`` if it is a positive integer.

    Raises:
        ValidationError: For booleans, non-integers, zero and negatives
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"amount must be a positive integer, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"amount must be a positive integer, got {amount}")
    return amount


def _coerce_enum(enum_cls: Type[Enum], value: Any, name: str) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise ValidationError(f"{name} must be one of: {valid}")


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def _validate_limit(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"usage_limit must be a non-negative integer, got {value!r}")
    return value


def _validate_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(tag, str) for tag in value):
        raise ValidationError("tags must be a list of strings")
    return list(value)


def list_live_events(
    owner_id: str,
    accounts: AccountStore,
    events: UsageEventStore
) -> List[UsageEvent]:
    """List the owner's events, dropping those whose account was deleted."""
    account_ids = {account.id for account in accounts.list_accounts(owner_id)}
    return [event for event in events.list_events(owner_id) if event.account_id in account_ids]


class UsageAPI:
    """Account and usage operations for one owner.

    The recomputed account list is cached for ``cache_ttl_seconds`` and
    invalidated by every mutation made through this instance.
    """

    def __init__(
        self,
        owner_id: str,
        accounts: AccountStore,
        events: UsageEventStore,
        clock: Callable[[], datetime] = datetime.now,
        cache_ttl_seconds: float = 300.0,
        max_workers: int = 4
    ):
        """Initialize the API.

        Args:
            owner_id: Principal every store call is scoped to
            accounts: Account store
            events: Usage event store
            clock: Source of "now" for period windows and new events
            cache_ttl_seconds: Staleness window of the cached account list
            max_workers: Parallelism of batch usage recomputation
        """
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id is required and cannot be empty")

        self.owner_id = owner_id
        self.accounts = accounts
        self.events = events
        self.clock = clock
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.max_workers = max_workers
        self._cached_accounts: Optional[Tuple[datetime, List[Account]]] = None

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        title: str,
        platform: str,
        reset_policy: Any = ResetPolicy.MONTHLY,
        usage_type: Any = UsageType.CUSTOM,
        usage_limit: Optional[int] = None,
        email_username: str = "",
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        folder_id: Optional[str] = None
    ) -> Account:
        """Create an active account with zero usage.

        Raises:
            ValidationError: If a required field is missing or invalid
        """
        now = self.clock()
        account = Account(
            id=str(uuid.uuid4()),
            owner_id=self.owner_id,
            title=_require_text(title, "title"),
            platform=_require_text(platform, "platform"),
            reset_policy=_coerce_enum(ResetPolicy, reset_policy, "reset_policy"),
            usage_type=_coerce_enum(UsageType, usage_type, "usage_type"),
            usage_limit=_validate_limit(usage_limit),
            current_usage=0,
            is_active=True,
            email_username=email_username or "",
            description=description,
            tags=_validate_tags(tags),
            folder_id=folder_id,
            created_at=now,
            updated_at=now
        )
        self.accounts.insert_account(account)
        self._invalidate()
        logger.info("Created account %s (%s)", account.id, account.title)
        return account

    def update_account(self, account_id: str, **changes: Any) -> Account:
        """Update account fields and return the refreshed account.

        ``current_usage`` is derived from the usage log and cannot be set.

        Raises:
            ValidationError: If a field is unknown, immutable or invalid
            NotFoundError: If the account doesn't exist for this owner
        """
        unknown = set(changes) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")

        patch: Dict[str, Any] = dict(changes)
        if "title" in patch:
            patch["title"] = _require_text(patch["title"], "title")
        if "platform" in patch:
            patch["platform"] = _require_text(patch["platform"], "platform")
        if "reset_policy" in patch:
            patch["reset_policy"] = _coerce_enum(ResetPolicy, patch["reset_policy"], "reset_policy")
        if "usage_type" in patch:
            patch["usage_type"] = _coerce_enum(UsageType, patch["usage_type"], "usage_type")
        if "usage_limit" in patch:
            patch["usage_limit"] = _validate_limit(patch["usage_limit"])
        if "tags" in patch:
            patch["tags"] = _validate_tags(patch["tags"])
        if "is_active" in patch and not isinstance(patch["is_active"], bool):
            raise ValidationError("is_active must be a boolean")

        self.accounts.update_account(self.owner_id, account_id, patch, updated_at=self.clock())
        self._invalidate()
        logger.info("Updated account %s: %s", account_id, sorted(patch))

        # Reset policy or activation changes move the period window
        self._recompute(self.accounts.get_account(self.owner_id, account_id))
        return self.accounts.get_account(self.owner_id, account_id)

    def delete_account(self, account_id: str) -> None:
        """Delete an account. Its usage logs are orphaned, not removed.

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """
        self.accounts.delete_account(self.owner_id, account_id)
        self._invalidate()
        logger.info("Deleted account %s", account_id)

    def get_account(self, account_id: str) -> Account:
        """Fetch one account with its usage recomputed for the current period.

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """
        account = self.accounts.get_account(self.owner_id, account_id)
        return replace(account, current_usage=self._usage_or_cached(account, self.clock()))

    def list_accounts(self) -> List[Account]:
        """List the owner's accounts with usage recomputed, newest first.

        A failing event fetch for one account leaves that account at its
        cached usage and does not affect the others.
        """
        now = self.clock()
        if self._cached_accounts is not None:
            fetched_at, cached = self._cached_accounts
            if now - fetched_at < self.cache_ttl:
                logger.debug("Account list served from cache")
                return list(cached)

        logger.debug("Account list cache miss; recomputing usage")
        accounts = self.accounts.list_accounts(self.owner_id)
        refreshed = recompute_accounts(
            accounts,
            lambda account: self.events.list_events_for_account(self.owner_id, account.id),
            now,
            max_workers=self.max_workers
        )
        self._cached_accounts = (now, refreshed)
        return list(refreshed)

    def get_active_accounts(self) -> List[Account]:
        """Accounts whose usage is live-recomputed."""
        return [account for account in self.list_accounts() if account.is_active]

    def get_accounts_by_platform(self, platform: str) -> List[Account]:
        """Accounts on the given platform."""
        return [account for account in self.list_accounts() if account.platform == platform]

    def get_account_by_title(self, title: str) -> Optional[Account]:
        """First account with the given title, if any."""
        for account in self.list_accounts():
            if account.title == title:
                return account
        return None

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def log_usage(
        self,
        account_id: str,
        amount: int,
        description: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> UsageEvent:
        """Append a usage event and recompute the account's usage.

        Exceeding the usage limit never blocks logging.

        Args:
            account_id: Account the usage belongs to
            amount: Positive integer amount
            description: Optional note
            timestamp: When the usage happened (defaults to now)

        Returns:
            The appended event

        Raises:
            ValidationError: If amount is invalid or the account is inactive
            NotFoundError: If the account doesn't exist for this owner
        """
        validate_amount(amount)
        account = self.accounts.get_account(self.owner_id, account_id)
        if not account.is_active:
            raise ValidationError(f"Cannot log usage against inactive account {account_id}")

        event = UsageEvent(
            id=str(uuid.uuid4()),
            owner_id=self.owner_id,
            account_id=account_id,
            amount=amount,
            description=description,
            timestamp=timestamp if timestamp is not None else self.clock()
        )
        self.events.append_event(event)
        self._invalidate()
        logger.info("Logged %s usage for account %s", amount, account_id)

        self._recompute(account)
        return event

    def update_usage_log(
        self,
        event_id: str,
        amount: Optional[int] = None,
        description: Optional[str] = None
    ) -> UsageEvent:
        """Change the amount and/or description of a usage log.

        The timestamp and owning account never change.

        Raises:
            ValidationError: If the new amount is invalid
            NotFoundError: If the event doesn't exist for this owner, or its account
                has been deleted
        """
        patch: Dict[str, Any] = {}
        if amount is not None:
            patch["amount"] = validate_amount(amount)
        if description is not None:
            patch["description"] = description

        event = self.events.get_event(self.owner_id, event_id)
        account = self.accounts.get_account(self.owner_id, event.account_id)
        self.events.update_event(self.owner_id, event_id, patch)
        self._invalidate()
        logger.info("Updated usage log %s: %s", event_id, sorted(patch))

        self._recompute(account)
        return replace(event, **patch)

    def delete_usage_log(self, event_id: str) -> None:
        """Delete a usage log and recompute its account's usage.

        Raises:
            NotFoundError: If the event doesn't exist for this owner, or its account
                has been deleted
        """
        event = self.events.get_event(self.owner_id, event_id)
        account = self.accounts.get_account(self.owner_id, event.account_id)
        self.events.delete_event(self.owner_id, event_id)
        self._invalidate()
        logger.info("Deleted usage log %s", event_id)

        self._recompute(account)

    def list_usage_logs(self) -> List[UsageEvent]:
        """All usage logs of live accounts, newest first."""
        return sort_events(
            list_live_events(self.owner_id, self.accounts, self.events),
            SortOrder.NEWEST
        )

    def get_current_usage(self, account_id: str) -> int:
        """Current-period usage of one account.

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """
        account = self.accounts.get_account(self.owner_id, account_id)
        return self._usage_or_cached(account, self.clock())

    @staticmethod
    def get_usage_percentage(account: Account) -> float:
        """Percentage of the usage limit consumed (0 without a positive limit)."""
        return get_usage_percentage(account)

    @staticmethod
    def is_over_limit(account: Account) -> bool:
        """Whether the account should show the over-limit warning."""
        return is_over_limit(account)

    def get_activity(
        self,
        search: Optional[str] = None,
        account_id: Optional[str] = None,
        date_filter: Any = DateFilter.TODAY,
        sort: Any = SortOrder.NEWEST,
        page: int = 1,
        per_page: int = ITEMS_PER_PAGE
    ) -> ActivityPage:
        """Filtered, sorted and paged usage activity with summary stats.

        Raises:
            ValidationError: If a filter, sort order or page is invalid
        """
        date_filter = _coerce_enum(DateFilter, date_filter, "date_filter")
        sort = _coerce_enum(SortOrder, sort, "sort")
        if page < 1 or per_page < 1:
            raise ValidationError("page and per_page must be >= 1")

        now = self.clock()
        accounts = self.accounts.list_accounts(self.owner_id)
        live_ids = {account.id for account in accounts}
        events = [e for e in self.events.list_events(self.owner_id) if e.account_id in live_ids]

        filtered = sort_events(
            filter_events(
                events,
                accounts,
                now,
                search=search,
                account_id=account_id,
                date_filter=date_filter
            ),
            sort
        )
        return ActivityPage(
            events=paginate(filtered, page, per_page),
            stats=compute_activity_stats(filtered, now),
            page=page,
            total_pages=page_count(len(filtered), per_page)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _invalidate(self) -> None:
        self._cached_accounts = None

    def _usage_or_cached(self, account: Account, now: datetime) -> int:
        """Recompute usage, falling back to the cached value if the log can't be read."""
        if not account.is_active:
            return account.current_usage
        try:
            events = self.events.list_events_for_account(self.owner_id, account.id)
        except Exception:
            logger.warning(
                "Failed to fetch usage logs for account %s; keeping cached usage %s",
                account.id,
                account.current_usage,
                exc_info=True
            )
            return account.current_usage
        return compute_current_usage(account, events, now)

    def _recompute(self, account: Account) -> None:
        """Refresh the stored usage cache of one account after a write."""
        if not account.is_active:
            return
        now = self.clock()
        events = self.events.list_events_for_account(self.owner_id, account.id)
        usage = compute_current_usage(account, events, now)
        if usage != account.current_usage:
            self.accounts.update_account(
                self.owner_id, account.id, {"current_usage": usage}, updated_at=now
            )
            logger.debug("Account %s usage recomputed: %s", account.id, usage)
