"""
Tests for the Usage API against a real SQLite store.
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from usage_meter.api import UsageAPI
from usage_meter.core.activity import DateFilter
from usage_meter.core.errors import NotFoundError, ValidationError
from usage_meter.core.periods import ResetPolicy
from usage_meter.storage.models import UsageEvent, UsageType
from usage_meter.storage.repository import (
    AccountRepository,
    UsageEventRepository,
    initialize_schema,
)


class Clock:
    """Adjustable clock for deterministic tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class UsageAPITestCase:
    """Shared database and API setup."""

    def setup_method(self):
        """Set up a fresh database and API."""
        self.temp_dir = tempfile.mkdtemp()
        db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(db_path)
        self.account_store = AccountRepository(db_path)
        self.event_store = UsageEventRepository(db_path)
        self.clock = Clock(datetime(2024, 2, 15, 10, 0, 0))
        self.api = UsageAPI("user-1", self.account_store, self.event_store, clock=self.clock)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def create_account(self, **kwargs):
        """Create an account through the API."""
        defaults = dict(title="Work API key", platform="OpenAI", reset_policy="monthly")
        defaults.update(kwargs)
        return self.api.create_account(**defaults)


class TestAccounts(UsageAPITestCase):
    """Test account management."""

    def test_create_account_defaults(self):
        """New accounts are active with zero usage."""
        account = self.create_account(usage_limit=100, tags=["ai"])

        assert account.is_active is True
        assert account.current_usage == 0
        assert account.reset_policy == ResetPolicy.MONTHLY
        assert account.usage_type == UsageType.CUSTOM
        assert account.created_at == self.clock.now
        assert self.api.get_account(account.id) == account

    @pytest.mark.parametrize("kwargs,message", [
        ({"title": "  "}, "title is required"),
        ({"platform": ""}, "platform is required"),
        ({"reset_policy": "hourly"}, "reset_policy must be one of"),
        ({"usage_type": "minutes"}, "usage_type must be one of"),
        ({"usage_limit": -1}, "usage_limit"),
        ({"tags": "ai"}, "tags"),
    ])
    def test_create_account_validation(self, kwargs, message):
        """Missing or invalid fields are rejected before anything is stored."""
        with pytest.raises(ValidationError, match=message):
            self.create_account(**kwargs)
        assert self.api.list_accounts() == []

    def test_update_account(self):
        """Updates are validated and returned."""
        account = self.create_account()
        updated = self.api.update_account(account.id, title="Personal key", reset_policy="weekly")

        assert updated.title == "Personal key"
        assert updated.reset_policy == ResetPolicy.WEEKLY

    def test_update_account_stamps_clock_time(self):
        """updated_at comes from the injected clock."""
        account = self.create_account()
        self.clock.now = datetime(2024, 3, 1, 9, 30, 0)

        updated = self.api.update_account(account.id, title="Personal key")

        assert updated.updated_at == datetime(2024, 3, 1, 9, 30, 0)

    def test_update_cannot_set_current_usage(self):
        """Current usage is derived, never patched."""
        account = self.create_account()
        with pytest.raises(ValidationError, match="current_usage"):
            self.api.update_account(account.id, current_usage=500)

    def test_update_unknown_account(self):
        """Unknown accounts raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.api.update_account("missing", title="x")

    def test_delete_account_orphans_events(self):
        """Deleted accounts' logs drop out of the usage log list."""
        account = self.create_account()
        self.api.log_usage(account.id, 3)
        self.api.delete_account(account.id)

        assert self.api.list_accounts() == []
        assert self.api.list_usage_logs() == []
        assert len(self.event_store.list_events("user-1")) == 1

    def test_other_owner_is_not_found(self):
        """Accounts of another owner behave as missing."""
        account = self.create_account()
        other = UsageAPI("user-2", self.account_store, self.event_store, clock=self.clock)

        with pytest.raises(NotFoundError):
            other.get_current_usage(account.id)
        with pytest.raises(NotFoundError):
            other.log_usage(account.id, 1)
        assert other.list_accounts() == []

    def test_lookup_helpers(self):
        """Accounts can be found by title, platform and activity."""
        first = self.create_account(title="A", platform="GitHub")
        self.clock.now += timedelta(seconds=1)
        second = self.create_account(title="B", platform="OpenAI")
        self.api.update_account(second.id, is_active=False)

        assert self.api.get_account_by_title("A").id == first.id
        assert self.api.get_account_by_title("missing") is None
        assert [a.id for a in self.api.get_accounts_by_platform("OpenAI")] == [second.id]
        assert [a.id for a in self.api.get_active_accounts()] == [first.id]


class TestLogUsage(UsageAPITestCase):
    """Test usage logging."""

    def test_log_usage_updates_current_usage(self):
        """Logging appends an event and recomputes the cached usage."""
        account = self.create_account()
        event = self.api.log_usage(account.id, 5, "first batch")

        assert event.amount == 5
        assert event.timestamp == self.clock.now
        assert self.account_store.get_account("user-1", account.id).current_usage == 5
        assert self.api.get_current_usage(account.id) == 5

    @pytest.mark.parametrize("amount", [0, -5, 2.5, "3", True, None])
    def test_invalid_amount_rejected(self, amount):
        """Non-positive or non-integer amounts change nothing."""
        account = self.create_account()
        with pytest.raises(ValidationError, match="positive integer"):
            self.api.log_usage(account.id, amount)

        assert self.event_store.list_events("user-1") == []
        assert self.api.get_current_usage(account.id) == 0

    def test_unknown_account_rejected(self):
        """Logging against an unknown account raises NotFoundError."""
        with pytest.raises(NotFoundError):
            self.api.log_usage("missing", 1)

    def test_inactive_account_rejected(self):
        """Logging against an inactive account is a validation error."""
        account = self.create_account()
        self.api.update_account(account.id, is_active=False)

        with pytest.raises(ValidationError, match="inactive"):
            self.api.log_usage(account.id, 1)
        assert self.event_store.list_events("user-1") == []

    def test_limit_does_not_block_logging(self):
        """Exceeding the usage limit only flags the account."""
        account = self.create_account(usage_limit=10)
        self.api.log_usage(account.id, 8)
        self.api.log_usage(account.id, 8)

        refreshed = self.api.get_account(account.id)
        assert refreshed.current_usage == 16
        assert self.api.get_usage_percentage(refreshed) == 160.0
        assert self.api.is_over_limit(refreshed)

    def test_backdated_log_outside_window(self):
        """Usage logged for last month does not count this month."""
        account = self.create_account()
        self.api.log_usage(account.id, 7, timestamp=datetime(2024, 1, 31, 23, 59, 59))
        self.api.log_usage(account.id, 2, timestamp=datetime(2024, 2, 1, 0, 0, 0))

        assert self.api.get_current_usage(account.id) == 2

    def test_period_rollover_on_read(self):
        """Usage resets when the clock crosses into a new period."""
        account = self.create_account(reset_policy="daily")
        self.api.log_usage(account.id, 4)
        assert self.api.get_current_usage(account.id) == 4

        self.clock.now = datetime(2024, 2, 16, 0, 0, 0)
        assert self.api.get_current_usage(account.id) == 0

    def test_never_policy_is_cumulative(self):
        """Never-reset accounts count every log."""
        account = self.create_account(reset_policy="never")
        self.api.log_usage(account.id, 4, timestamp=datetime(2020, 1, 1))
        self.api.log_usage(account.id, 6)

        self.clock.now = datetime(2030, 1, 1)
        assert self.api.get_current_usage(account.id) == 10


class TestUsageLogMutation(UsageAPITestCase):
    """Test editing and deleting usage logs."""

    def test_update_usage_log_recomputes(self):
        """Editing an amount refreshes the cached usage."""
        account = self.create_account()
        event = self.api.log_usage(account.id, 5)

        updated = self.api.update_usage_log(event.id, amount=9, description="corrected")

        assert updated.amount == 9
        assert updated.description == "corrected"
        assert updated.timestamp == event.timestamp
        assert self.account_store.get_account("user-1", account.id).current_usage == 9

    def test_update_usage_log_validates_amount(self):
        """Edited amounts must still be positive integers."""
        account = self.create_account()
        event = self.api.log_usage(account.id, 5)

        with pytest.raises(ValidationError):
            self.api.update_usage_log(event.id, amount=0)
        assert self.event_store.get_event("user-1", event.id).amount == 5

    def test_delete_usage_log_recomputes(self):
        """Deleting a log refreshes the cached usage."""
        account = self.create_account()
        keep = self.api.log_usage(account.id, 2)
        drop = self.api.log_usage(account.id, 3)

        self.api.delete_usage_log(drop.id)

        assert self.account_store.get_account("user-1", account.id).current_usage == 2
        assert [e.id for e in self.api.list_usage_logs()] == [keep.id]

    def test_missing_log(self):
        """Unknown logs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.api.delete_usage_log("missing")
        with pytest.raises(NotFoundError):
            self.api.update_usage_log("missing", amount=1)

    def test_orphaned_log_cannot_change(self):
        """Logs of a deleted account are rejected without touching the store."""
        account = self.create_account()
        event = self.api.log_usage(account.id, 5)
        self.api.delete_account(account.id)

        with pytest.raises(NotFoundError, match="account"):
            self.api.update_usage_log(event.id, amount=99)
        with pytest.raises(NotFoundError, match="account"):
            self.api.delete_usage_log(event.id)

        assert self.event_store.get_event("user-1", event.id).amount == 5


class TestInactiveAccounts(UsageAPITestCase):
    """Test the frozen behaviour of inactive accounts."""

    def test_inactive_account_keeps_stale_usage(self):
        """Inactive accounts report their cache until reactivated."""
        account = self.create_account()
        self.api.update_account(account.id, is_active=False)
        self.account_store.update_account("user-1", account.id, {"current_usage": 42})
        self.event_store.append_event(UsageEvent(
            id="late",
            owner_id="user-1",
            account_id=account.id,
            amount=5,
            timestamp=self.clock.now
        ))

        assert self.api.get_current_usage(account.id) == 42
        assert self.api.list_accounts()[0].current_usage == 42

        reactivated = self.api.update_account(account.id, is_active=True)
        assert reactivated.current_usage == 5
        assert self.api.get_current_usage(account.id) == 5


class TestResilience(UsageAPITestCase):
    """Test degraded reads when the event store fails."""

    def test_failing_fetch_falls_back_per_account(self):
        """One account's failing fetch leaves the others recomputed."""
        healthy = self.create_account(title="Healthy")
        self.clock.now += timedelta(seconds=1)
        broken = self.create_account(title="Broken")
        self.api.log_usage(healthy.id, 3)
        self.api.log_usage(broken.id, 4)
        self.account_store.update_account("user-1", broken.id, {"current_usage": 40})

        original = self.event_store.list_events_for_account

        def flaky(owner_id, account_id):
            if account_id == broken.id:
                raise ConnectionError("store unavailable")
            return original(owner_id, account_id)

        with patch.object(self.event_store, "list_events_for_account", side_effect=flaky):
            by_title = {a.title: a.current_usage for a in self.api.list_accounts()}
            single = self.api.get_current_usage(broken.id)

        assert by_title == {"Healthy": 3, "Broken": 40}
        assert single == 40

    def test_mutation_failures_propagate(self):
        """Write failures are not swallowed."""
        account = self.create_account()
        with patch.object(self.event_store, "append_event", side_effect=ConnectionError("down")):
            with pytest.raises(ConnectionError):
                self.api.log_usage(account.id, 1)


class TestAccountListCache(UsageAPITestCase):
    """Test the staleness window of the account list."""

    def test_cache_served_within_ttl(self):
        """Direct store writes are not seen until the cache goes stale."""
        account = self.create_account()
        self.api.list_accounts()
        self.event_store.append_event(UsageEvent(
            id="direct",
            owner_id="user-1",
            account_id=account.id,
            amount=8,
            timestamp=self.clock.now
        ))

        assert self.api.list_accounts()[0].current_usage == 0

        self.clock.now += timedelta(seconds=301)
        assert self.api.list_accounts()[0].current_usage == 8

    def test_mutations_invalidate_cache(self):
        """Writes through the API are visible immediately."""
        account = self.create_account()
        assert self.api.list_accounts()[0].current_usage == 0

        self.api.log_usage(account.id, 6)
        assert self.api.list_accounts()[0].current_usage == 6


class TestActivity(UsageAPITestCase):
    """Test the activity feed."""

    def test_activity_page_and_stats(self):
        """Activity is filtered, paged and summarised."""
        account = self.create_account()
        for hours in range(5):
            self.api.log_usage(account.id, hours + 1, timestamp=self.clock.now - timedelta(hours=hours))

        result = self.api.get_activity(date_filter=DateFilter.TODAY, sort="amount_high", per_page=2)

        assert [e.amount for e in result.events] == [5, 4]
        assert result.total_pages == 3
        assert result.stats.total_usage == 15
        assert result.stats.total_logs == 5

    def test_activity_invalid_filter(self):
        """Unknown filters are validation errors."""
        with pytest.raises(ValidationError, match="date_filter"):
            self.api.get_activity(date_filter="decade")
