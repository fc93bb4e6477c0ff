"""
Abstract storage interface.

The usage engine only talks to these two stores. Every call takes the owning
principal explicitly; a record owned by someone else behaves as missing.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import Account, UsageEvent


class AccountStore(ABC):
    """Storage operations for tracked accounts."""

    @abstractmethod
    def list_accounts(self, owner_id: str) -> List[Account]:
        """
        List the owner's accounts, newest first.
        """

    @abstractmethod
    def get_account(self, owner_id: str, account_id: str) -> Account:
        """
        Retrieve one account.

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """

    @abstractmethod
    def insert_account(self, account: Account) -> Account:
        """
        Persist a new account and return it.
        """

    @abstractmethod
    def update_account(
        self,
        owner_id: str,
        account_id: str,
        patch: Dict[str, Any],
        updated_at: Optional[datetime] = None
    ) -> None:
        """
        Apply a field patch to an account.

        Args:
            owner_id: Owning principal
            account_id: Account to update
            patch: Mapping of Account field names to new values
            updated_at: Modification time to record (defaults to now)

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """

    @abstractmethod
    def delete_account(self, owner_id: str, account_id: str) -> None:
        """
        Delete an account. Its usage events are left in place.

        Raises:
            NotFoundError: If the account doesn't exist for this owner
        """


class UsageEventStore(ABC):
    """Storage operations for the append-only usage log."""

    @abstractmethod
    def list_events(self, owner_id: str) -> List[UsageEvent]:
        """
        List all of the owner's usage events, newest first.
        """

    @abstractmethod
    def list_events_for_account(self, owner_id: str, account_id: str) -> List[UsageEvent]:
        """
        List the usage events of one account, newest first.
        """

    @abstractmethod
    def get_event(self, owner_id: str, event_id: str) -> UsageEvent:
        """
        Retrieve one usage event.

        Raises:
            NotFoundError: If the event doesn't exist for this owner
        """

    @abstractmethod
    def append_event(self, event: UsageEvent) -> UsageEvent:
        """
        Append a usage event to the log and return it.
        """

    @abstractmethod
    def update_event(self, owner_id: str, event_id: str, patch: Dict[str, Any]) -> None:
        """
        Change the amount and/or description of an event.

        Raises:
            NotFoundError: If the event doesn't exist for this owner
        """

    @abstractmethod
    def delete_event(self, owner_id: str, event_id: str) -> None:
        """
        Delete a usage event.

        Raises:
            NotFoundError: If the event doesn't exist for this owner
        """
