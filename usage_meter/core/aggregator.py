"""
Usage aggregation over the append-only event log.

Reconstructs each account's current-period usage from its usage events.
Aggregation is read-only over an already-fetched snapshot, so it is safe to
run for many accounts at once against the same events.

Evaluation rules, in order:
1. Inactive accounts are frozen - their cached usage is returned unchanged
2. ``never`` accounts sum every event they own (no windowing)
3. Everything else sums the events inside the resolved period window
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, List

from .periods import ResetPolicy, resolve_window
from usage_meter.storage.models import Account, UsageEvent

logger = logging.getLogger(__name__)


def compute_current_usage(
    account: Account,
    events: Iterable[UsageEvent],
    now: datetime
) -> int:
    """Compute an account's usage for the period containing ``now``.

    Events belonging to other accounts are ignored, so callers may pass the
    owner's full event log.

    Args:
        account: Account to evaluate
        events: Usage events (any subset of the log)
        now: Reference instant for the period window

    Returns:
        Sum of matching event amounts, or the cached value for inactive accounts
    """
    if not account.is_active:
        return account.current_usage

    owned = [event for event in events if event.account_id == account.id]

    if account.reset_policy == ResetPolicy.NEVER:
        return sum(event.amount for event in owned)

    window = resolve_window(account.reset_policy, now)
    return sum(event.amount for event in owned if window.contains(event.timestamp))


def recompute_accounts(
    accounts: List[Account],
    fetch_events: Callable[[Account], List[UsageEvent]],
    now: datetime,
    max_workers: int = 4
) -> List[Account]:
    """Recompute usage for a batch of accounts without failing the batch.

    Each account's events are fetched and aggregated independently. When
    fetching fails for one account the failure is logged and that account
    keeps its previously cached ``current_usage``; the others are unaffected.

    Args:
        accounts: Accounts to recompute
        fetch_events: Collaborator returning the usage events of one account
        now: Reference instant for the period windows
        max_workers: Maximum number of accounts evaluated concurrently

    Returns:
        Accounts in input order with ``current_usage`` refreshed
    """
    if not accounts:
        return []

    def _recompute_one(account: Account) -> Account:
        # Frozen accounts never need their events
        if not account.is_active:
            return account
        try:
            events = fetch_events(account)
        except Exception:
            logger.warning(
                "Failed to fetch usage logs for account %s; keeping cached usage %s",
                account.id,
                account.current_usage,
                exc_info=True
            )
            return account
        usage = compute_current_usage(account, events, now)
        return replace(account, current_usage=usage)

    workers = max(1, min(max_workers, len(accounts)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(_recompute_one, accounts))


def get_usage_percentage(account: Account) -> float:
    """Percentage of the usage limit consumed, or 0 when no positive limit is set."""
    if not account.usage_limit or account.usage_limit <= 0:
        return 0.0
    return (account.current_usage / account.usage_limit) * 100


def is_over_limit(account: Account) -> bool:
    """Display-only warning state: usage has passed the account's limit.

    Logging is never blocked by this; the limit is informational.
    """
    return get_usage_percentage(account) > 100
