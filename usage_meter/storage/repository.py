"""
Repository pattern for data access.

SQLite implementations of the account store and the usage event store.
Every query is filtered by the owning principal.
"""

import json
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .interface import AccountStore, UsageEventStore
from .models import Account, UsageEvent, UsageType
from usage_meter.core.errors import NotFoundError
from usage_meter.core.periods import ResetPolicy

logger = logging.getLogger(__name__)

# Account field -> column for patchable fields
_ACCOUNT_COLUMNS = {
    "title": "title",
    "platform": "platform",
    "email_username": "email_username",
    "usage_type": "usage_type",
    "usage_limit": "usage_limit",
    "current_usage": "current_usage",
    "reset_policy": "reset_period",
    "description": "description",
    "tags": "tags",
    "is_active": "is_active",
    "folder_id": "folder_id",
}

_EVENT_COLUMNS = {
    "amount": "amount",
    "description": "description",
}

_EVENT_SELECT = """
    SELECT id, user_id, account_id, amount, description, timestamp
    FROM account_usage_log
"""


def _to_column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps(value)
    return value


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        owner_id=row["user_id"],
        title=row["title"],
        platform=row["platform"],
        email_username=row["email_username"],
        usage_type=UsageType(row["usage_type"]),
        usage_limit=row["usage_limit"],
        current_usage=row["current_usage"],
        reset_policy=ResetPolicy(row["reset_period"]),
        description=row["description"],
        tags=json.loads(row["tags"]),
        is_active=bool(row["is_active"]),
        folder_id=row["folder_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"])
    )


def _row_to_event(row: sqlite3.Row) -> UsageEvent:
    return UsageEvent(
        id=row["id"],
        owner_id=row["user_id"],
        account_id=row["account_id"],
        amount=row["amount"],
        description=row["description"],
        timestamp=datetime.fromisoformat(row["timestamp"])
    )


def _build_set_clause(patch: Dict[str, Any], columns: Dict[str, str]):
    unknown = set(patch) - set(columns)
    if unknown:
        raise ValueError(f"Unknown or immutable fields: {sorted(unknown)}")
    assignments = [f"{columns[key]} = ?" for key in patch]
    params = [_to_column_value(value) for value in patch.values()]
    return assignments, params


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the account and usage log tables if they don't exist.

    Usage log rows carry no foreign key to their account: deleting an account
    leaves its events orphaned rather than cascading.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                folder_id TEXT,
                title TEXT NOT NULL,
                platform TEXT NOT NULL,
                email_username TEXT NOT NULL DEFAULT '',
                usage_type TEXT NOT NULL,
                usage_limit INTEGER,
                current_usage INTEGER NOT NULL DEFAULT 0,
                reset_period TEXT NOT NULL,
                description TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account_usage_log (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                account_id TEXT NOT NULL,
                amount INTEGER NOT NULL,
                description TEXT,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_usage_log_account "
            "ON account_usage_log (account_id, timestamp)"
        )
        conn.commit()
    finally:
        conn.close()


class AccountRepository(AccountStore):
    """SQLite-backed account store."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def list_accounts(self, owner_id: str) -> List[Account]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT * FROM account WHERE user_id = ? ORDER BY created_at DESC",
                (owner_id,)
            )
            return [_row_to_account(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_account(self, owner_id: str, account_id: str) -> Account:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT * FROM account WHERE id = ? AND user_id = ?",
                (account_id, owner_id)
            )
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError("account", account_id)
            return _row_to_account(row)
        finally:
            conn.close()

    def insert_account(self, account: Account) -> Account:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO account
                (id, user_id, folder_id, title, platform, email_username,
                 usage_type, usage_limit, current_usage, reset_period,
                 description, tags, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                account.id,
                account.owner_id,
                account.folder_id,
                account.title,
                account.platform,
                account.email_username,
                account.usage_type.value,
                account.usage_limit,
                account.current_usage,
                account.reset_policy.value,
                account.description,
                json.dumps(account.tags),
                int(account.is_active),
                account.created_at.isoformat(),
                account.updated_at.isoformat()
            ))
            conn.commit()
        finally:
            conn.close()
        logger.debug("Inserted account %s for owner %s", account.id, account.owner_id)
        return account

    def update_account(
        self,
        owner_id: str,
        account_id: str,
        patch: Dict[str, Any],
        updated_at: Optional[datetime] = None
    ) -> None:
        if not patch:
            # Still enforce existence and ownership
            self.get_account(owner_id, account_id)
            return

        assignments, params = _build_set_clause(patch, _ACCOUNT_COLUMNS)
        assignments.append("updated_at = ?")
        params.append((updated_at or datetime.now()).isoformat())

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE account SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                params + [account_id, owner_id]
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("account", account_id)
            conn.commit()
        finally:
            conn.close()

    def delete_account(self, owner_id: str, account_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM account WHERE id = ? AND user_id = ?",
                (account_id, owner_id)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("account", account_id)
            conn.commit()
        finally:
            conn.close()


class UsageEventRepository(UsageEventStore):
    """SQLite-backed append-only usage log."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def list_events(self, owner_id: str) -> List[UsageEvent]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                _EVENT_SELECT + " WHERE user_id = ? ORDER BY timestamp DESC",
                (owner_id,)
            )
            return [_row_to_event(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_events_for_account(self, owner_id: str, account_id: str) -> List[UsageEvent]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                _EVENT_SELECT + " WHERE user_id = ? AND account_id = ? ORDER BY timestamp DESC",
                (owner_id, account_id)
            )
            return [_row_to_event(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_event(self, owner_id: str, event_id: str) -> UsageEvent:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                _EVENT_SELECT + " WHERE id = ? AND user_id = ?",
                (event_id, owner_id)
            )
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError("usage log", event_id)
            return _row_to_event(row)
        finally:
            conn.close()

    def append_event(self, event: UsageEvent) -> UsageEvent:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO account_usage_log
                (id, user_id, account_id, amount, description, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event.id,
                event.owner_id,
                event.account_id,
                event.amount,
                event.description,
                event.timestamp.isoformat()
            ))
            conn.commit()
        finally:
            conn.close()
        return event

    def update_event(self, owner_id: str, event_id: str, patch: Dict[str, Any]) -> None:
        if not patch:
            self.get_event(owner_id, event_id)
            return

        assignments, params = _build_set_clause(patch, _EVENT_COLUMNS)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE account_usage_log SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                params + [event_id, owner_id]
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("usage log", event_id)
            conn.commit()
        finally:
            conn.close()

    def delete_event(self, owner_id: str, event_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM account_usage_log WHERE id = ? AND user_id = ?",
                (event_id, owner_id)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("usage log", event_id)
            conn.commit()
        finally:
            conn.close()
