"""Persistent subscription store.

This module provides:
- SubscriptionStore: SQLite-based persistence for subscriptions
- SubscriptionNotFoundError, SubscriptionError: Store errors

Besides the subscriptions themselves, the store keeps a namespaced
key-value table that plugins use to remember how items map to the
records they created on their side.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import sqlite3
import string
import threading
from pathlib import Path
from typing import Any

from shelfsync.client.subscription import Subscription

logger = logging.getLogger(__name__)

ID_ALPHABET = string.digits + string.ascii_lowercase
ID_LENGTH = 10


class SubscriptionError(Exception):
    """Base exception for subscription store errors."""


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription does not exist."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(f"subscription not found: {subscription_id}")
        self.subscription_id = subscription_id


def generate_id() -> str:
    """Generate a random subscription id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


class SubscriptionStore:
    """SQLite-based subscription store."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS subscriptions (
                id TEXT PRIMARY KEY,
                url TEXT NOT NULL,
                key TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                versions TEXT NOT NULL DEFAULT '{}',
                plugins TEXT NOT NULL DEFAULT '[]',
                timestamp TEXT,
                created_at REAL NOT NULL DEFAULT (julianday('now'))
            );

            -- Plugin id mappings, namespaced by plugin and library
            CREATE TABLE IF NOT EXISTS mappings (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # === Subscriptions ===

    def exists(self, subscription_id: str) -> bool:
        """Check whether a subscription id is taken."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT 1 FROM subscriptions WHERE id = ?", (subscription_id,)
            )
            return cursor.fetchone() is not None

    def identify(self, subscription: Subscription) -> Subscription:
        """Assign a new unique id to a subscription.

        Raises:
            SubscriptionError: If the subscription already has an id.
        """
        if subscription.id:
            raise SubscriptionError(f"subscription already has an id: {subscription.id}")

        candidate = generate_id()
        while self.exists(candidate):
            logger.debug("id collision for %s, retrying", candidate)
            candidate = generate_id()

        subscription.id = candidate
        return subscription

    def save(self, subscription: Subscription) -> Subscription:
        """Insert or update a subscription; new subscriptions get an id."""
        if not subscription.id:
            self.identify(subscription)

        with self._lock:
            self._conn.execute(
                """
                INSERT INTO subscriptions (id, url, key, version, versions, plugins, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    url = excluded.url,
                    key = excluded.key,
                    version = excluded.version,
                    versions = excluded.versions,
                    plugins = excluded.plugins,
                    timestamp = excluded.timestamp
                """,
                (
                    subscription.id,
                    subscription.url,
                    subscription.key,
                    subscription.version,
                    json.dumps(subscription.versions),
                    json.dumps(subscription.plugins),
                    str(subscription.timestamp) if subscription.timestamp else None,
                ),
            )

        logger.debug("[%s] saved at version %d", subscription.id, subscription.version)
        return subscription.bind(self)

    def persist(self, subscription: Subscription) -> Subscription:
        """Write the version state of an existing subscription.

        Unlike save(), this never creates a row, so a subscription
        removed while it was being synchronized stays removed.

        Raises:
            SubscriptionNotFoundError: If the subscription no longer exists.
        """
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE subscriptions SET version = ?, versions = ?, timestamp = ?
                WHERE id = ?
                """,
                (
                    subscription.version,
                    json.dumps(subscription.versions),
                    str(subscription.timestamp) if subscription.timestamp else None,
                    subscription.id,
                ),
            )
            updated = cursor.rowcount

        if not updated:
            raise SubscriptionNotFoundError(str(subscription.id))

        logger.debug("[%s] persisted version %d", subscription.id, subscription.version)
        return subscription

    def load(self, subscription_id: str) -> Subscription:
        """Load a subscription by id.

        Raises:
            SubscriptionNotFoundError: If no such subscription exists.
        """
        with self._lock:
            cursor = self._conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            )
            row = cursor.fetchone()
        if row is None:
            raise SubscriptionNotFoundError(subscription_id)
        return self._from_row(row)

    def ids(self, offset: int = 0, limit: int = -1) -> list[str]:
        """List subscription ids in creation order."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT id FROM subscriptions ORDER BY created_at, id LIMIT ? OFFSET ?",
                (limit, offset),
            )
            return [row["id"] for row in cursor.fetchall()]

    def count(self) -> int:
        """Count all subscriptions."""
        with self._lock:
            cursor = self._conn.execute("SELECT COUNT(*) FROM subscriptions")
            return int(cursor.fetchone()[0])

    def all(self, offset: int = 0, limit: int = -1) -> list[Subscription]:
        """Load all subscriptions in creation order."""
        return [self.load(subscription_id) for subscription_id in self.ids(offset, limit)]

    def find(self, query: str | re.Pattern[str] | None = None) -> list[Subscription]:
        """Find subscriptions by id.

        Args:
            query: None for all subscriptions, a compiled pattern matched
                against ids, or a comma-separated list of id prefixes.

        Returns:
            Matching subscriptions in creation order.
        """
        if query is None:
            return self.all()

        ids = self.ids()

        if isinstance(query, re.Pattern):
            matches = [i for i in ids if query.search(i)]
        else:
            prefixes = [p.strip() for p in query.split(",") if p.strip()]
            matches = [i for i in ids if any(i.startswith(p) for p in prefixes)]

        return [self.load(subscription_id) for subscription_id in matches]

    def destroy(self, subscription: Subscription) -> Subscription:
        """Delete a subscription.

        Plugin mappings are kept; they are shared by all subscriptions
        of the same library.
        """
        with self._lock:
            self._conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription.id,))
        subscription.unbind()
        logger.info("[%s] subscription removed", subscription.id)
        return subscription

    def _from_row(self, row: sqlite3.Row) -> Subscription:
        data: dict[str, Any] = {
            "id": row["id"],
            "url": row["url"],
            "key": row["key"],
            "version": row["version"],
            "versions": json.loads(row["versions"] or "{}"),
            "plugins": json.loads(row["plugins"] or "[]"),
            "timestamp": row["timestamp"] or 0,
        }
        return Subscription(data).bind(self)

    # === Plugin mappings ===

    def lookup(self, namespace: str, key: str) -> str | None:
        """Get a mapped value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM mappings WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def remember(self, namespace: str, key: str, value: str) -> None:
        """Set a mapped value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO mappings (namespace, key, value) VALUES (?, ?, ?)",
                (namespace, key, value),
            )
