"""
Subscription registry.

A subscription target (``subscriptions`` row) is a (type_id, type) pair and is
shared by every user who follows it. Targets are created lazily on the first
subscribe and never deleted; membership lives in ``user_subscriptions``.

Invariants:
    - At most one target per (type_id, type)
    - At most one membership per (subscription_id, user_id)
    - subscribe is one BEGIN IMMEDIATE transaction, safe under races
    - Missing tables: writes raise NotInitializedError, reads return empty
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import AlreadySubscribedError, NotInitializedError, NotSubscribedError
from ..store.registry_store import RegistryStore, probe_tables
from ..timeutil import Clock, IdFactory, format_timestamp, new_id, utc_now
from .types import Subscription, SubscriptionType

logger = logging.getLogger(__name__)

_NOT_INITIALIZED = "Subscription tables not initialized"


class SubscriptionRegistry:
    """Manages user subscriptions to products, domains and contexts.

    Example:
        >>> subscriptions = SubscriptionRegistry(store, "acme")
        >>> await subscriptions.subscribe("u1", product_id, "P")
        >>> await subscriptions.is_subscribed("u1", product_id, "P")
        True
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_id,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self._clock = clock
        self._new_id = id_factory

    async def subscribe(
        self,
        user_id: str,
        type_id: str,
        subscription_type: SubscriptionType | str,
    ) -> str:
        """Subscribe a user to a product, domain or context.

        Args:
            user_id: Subscribing user
            type_id: Id of the product, domain or context
            subscription_type: P, D or C

        Returns:
            Id of the subscription target

        Raises:
            InvalidEnumError: If subscription_type is unknown
            AlreadySubscribedError: If the user already follows the target
            NotInitializedError: If the subscription tables are missing
        """
        subscription_type = SubscriptionType.parse(subscription_type)
        timestamp = format_timestamp(self._clock())

        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_subscriptions:
                raise NotInitializedError(_NOT_INITIALIZED, table="subscriptions")

            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO subscriptions (id, type_id, type, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self._new_id(), type_id, subscription_type.value, timestamp),
                )
                row = conn.execute(
                    "SELECT id FROM subscriptions WHERE type_id = ? AND type = ?",
                    (type_id, subscription_type.value),
                ).fetchone()
                subscription_id = row["id"]

                conn.execute(
                    """
                    INSERT INTO user_subscriptions (id, subscription_id, user_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self._new_id(), subscription_id, user_id, timestamp),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                raise AlreadySubscribedError(user_id, type_id, subscription_type.value) from None
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.info(
            "User subscribed",
            extra={
                "registry_id": self.registry_id,
                "user_id": user_id,
                "type_id": type_id,
                "type": subscription_type.value,
            },
        )
        return subscription_id

    async def unsubscribe(
        self,
        user_id: str,
        type_id: str,
        subscription_type: SubscriptionType | str,
    ) -> None:
        """Remove a user's subscription. The target row is kept.

        Raises:
            InvalidEnumError: If subscription_type is unknown
            NotSubscribedError: If nothing was removed
            NotInitializedError: If the subscription tables are missing
        """
        subscription_type = SubscriptionType.parse(subscription_type)

        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_subscriptions:
                raise NotInitializedError(_NOT_INITIALIZED, table="subscriptions")

            cursor = conn.execute(
                """
                DELETE FROM user_subscriptions
                WHERE user_id = ? AND subscription_id IN (
                    SELECT id FROM subscriptions WHERE type_id = ? AND type = ?
                )
                """,
                (user_id, type_id, subscription_type.value),
            )

        if cursor.rowcount == 0:
            raise NotSubscribedError(user_id, type_id, subscription_type.value)

        logger.info(
            "User unsubscribed",
            extra={
                "registry_id": self.registry_id,
                "user_id": user_id,
                "type_id": type_id,
                "type": subscription_type.value,
            },
        )

    async def is_subscribed(
        self,
        user_id: str,
        type_id: str,
        subscription_type: SubscriptionType | str,
    ) -> bool:
        subscription_type = SubscriptionType.parse(subscription_type)

        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_subscriptions:
                logger.debug("Subscription tables not initialized")
                return False

            row = conn.execute(
                """
                SELECT 1 FROM subscriptions s
                JOIN user_subscriptions us ON s.id = us.subscription_id
                WHERE us.user_id = ? AND s.type_id = ? AND s.type = ?
                LIMIT 1
                """,
                (user_id, type_id, subscription_type.value),
            ).fetchone()
        return row is not None

    async def list_subscriptions(self, user_id: str) -> list[Subscription]:
        """List a user's subscriptions, most recently subscribed first."""
        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_subscriptions:
                logger.debug("Subscription tables not initialized")
                return []

            rows = conn.execute(
                """
                SELECT s.id, s.type_id, s.type, s.created_at, us.created_at AS subscribed_at
                FROM subscriptions s
                JOIN user_subscriptions us ON s.id = us.subscription_id
                WHERE us.user_id = ?
                ORDER BY us.created_at DESC, us.rowid DESC
                """,
                (user_id,),
            ).fetchall()

        return [
            Subscription(
                id=row["id"],
                type_id=row["type_id"],
                type=SubscriptionType(row["type"]),
                created_at=row["created_at"],
                subscribed_at=row["subscribed_at"],
            )
            for row in rows
        ]

    async def list_subscribed_user_ids(
        self,
        type_id: str,
        subscription_type: SubscriptionType | str,
    ) -> list[str]:
        """Users following one target, in subscription order."""
        subscription_type = SubscriptionType.parse(subscription_type)

        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_subscriptions:
                return []

            rows = conn.execute(
                """
                SELECT us.user_id FROM subscriptions s
                JOIN user_subscriptions us ON s.id = us.subscription_id
                WHERE s.type_id = ? AND s.type = ?
                ORDER BY us.created_at, us.rowid
                """,
                (type_id, subscription_type.value),
            ).fetchall()
        return [row["user_id"] for row in rows]
