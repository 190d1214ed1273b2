"""
Per-user view state for change records.

A change is "unseen" by a user until a ``user_change_views`` row exists for
the pair. Marking is idempotent; view rows disappear with their change.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import NotInitializedError
from ..store.registry_store import RegistryStore, probe_tables
from ..timeutil import Clock, IdFactory, format_timestamp, new_id, utc_now
from .types import UserChangeView

logger = logging.getLogger(__name__)


class ViewStateTracker:
    """Records which changes each user has seen."""

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

    async def mark_seen(self, user_id: str, change_ids: Iterable[str]) -> int:
        """Mark changes as seen by a user.

        Duplicates, already-seen ids and ids of changes that no longer exist
        are skipped. All rows are written in one transaction.

        Args:
            user_id: Viewing user
            change_ids: Changes to mark

        Returns:
            Number of view rows created

        Raises:
            NotInitializedError: If the view-tracking table is missing
        """
        change_ids = list(dict.fromkeys(change_ids))
        timestamp = format_timestamp(self._clock())

        with self.store.connect(self.registry_id) as conn:
            probe = probe_tables(conn)
            if not probe.has_views:
                raise NotInitializedError(
                    "User change views table not initialized", table="user_change_views"
                )
            if not change_ids or not probe.has_change_log:
                return 0

            inserted = 0
            conn.execute("BEGIN IMMEDIATE")
            try:
                for change_id in change_ids:
                    cursor = conn.execute(
                        """
                        INSERT OR IGNORE INTO user_change_views (id, user_id, change_id, viewed_at)
                        SELECT ?, ?, id, ? FROM global_change_tracker WHERE id = ?
                        """,
                        (self._new_id(), user_id, timestamp, change_id),
                    )
                    inserted += cursor.rowcount
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            f"Marked {inserted} changes as seen",
            extra={"registry_id": self.registry_id, "user_id": user_id},
        )
        return inserted

    async def has_seen(self, user_id: str, change_id: str) -> bool:
        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_views:
                return False
            row = conn.execute(
                "SELECT 1 FROM user_change_views WHERE user_id = ? AND change_id = ?",
                (user_id, change_id),
            ).fetchone()
        return row is not None

    async def list_views(self, user_id: str) -> list[UserChangeView]:
        """View rows of a user, most recently viewed first."""
        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_views:
                return []
            rows = conn.execute(
                """
                SELECT id, user_id, change_id, viewed_at FROM user_change_views
                WHERE user_id = ?
                ORDER BY viewed_at DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()

        return [
            UserChangeView(
                id=row["id"],
                user_id=row["user_id"],
                change_id=row["change_id"],
                viewed_at=row["viewed_at"],
            )
            for row in rows
        ]

    async def unseen_change_ids(self, user_id: str, change_ids: Iterable[str]) -> list[str]:
        """Filter ``change_ids`` down to the ones the user has not seen, keeping order."""
        change_ids = list(change_ids)
        if not change_ids:
            return []

        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_views:
                return change_ids
            placeholders = ", ".join("?" for _ in change_ids)
            rows = conn.execute(
                f"""
                SELECT change_id FROM user_change_views
                WHERE user_id = ? AND change_id IN ({placeholders})
                """,
                (user_id, *change_ids),
            ).fetchall()

        seen = {row["change_id"] for row in rows}
        return [change_id for change_id in change_ids if change_id not in seen]
