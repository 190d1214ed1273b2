"""
Retention manager for the change log.

Cleanup runs synchronously after every recorded change; there is no
scheduler. The window is the shortest retention any user configured, but
never shorter than the floor: a user asking for 7 days must not make changes
disappear for users who expect 30.

Invariants:
    - window = max(floor_days, min(retention_days of all users))
    - No preference rows, or a NULL/zero minimum, means default_days
    - View rows are deleted together with their change record
    - Cleanup failures are logged and swallowed
"""

from __future__ import annotations

import logging
import sqlite3

from ..config import RetentionConfig
from ..store.registry_store import RegistryStore, TableProbe, probe_tables
from ..timeutil import Clock, cutoff_timestamp, utc_now

logger = logging.getLogger(__name__)


class RetentionManager:
    """Deletes change records that fall outside the retention window.

    Example:
        >>> manager = RetentionManager(store, "acme")
        >>> await manager.effective_retention_days()
        30
        >>> deleted = await manager.cleanup_old_changes()
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        config: RetentionConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self.config = config or RetentionConfig()
        self._clock = clock

    def _window_days(self, conn: sqlite3.Connection, probe: TableProbe) -> int:
        shortest = None
        if probe.has_preferences:
            row = conn.execute(
                "SELECT MIN(retention_days) AS min_retention FROM user_notification_preferences"
            ).fetchone()
            shortest = row["min_retention"] if row else None
        return max(shortest or self.config.default_days, self.config.floor_days)

    async def effective_retention_days(self) -> int:
        """Retention window currently governing cleanup, in days."""
        with self.store.connect(self.registry_id) as conn:
            return self._window_days(conn, probe_tables(conn))

    async def cleanup_old_changes(self) -> int:
        """Delete change records older than the retention window.

        Returns:
            Number of change records deleted (0 on any failure)
        """
        try:
            with self.store.connect(self.registry_id) as conn:
                probe = probe_tables(conn)
                if not probe.has_change_log:
                    logger.debug("Change log table does not exist, skipping cleanup")
                    return 0

                days = self._window_days(conn, probe)
                cutoff = cutoff_timestamp(self._clock(), days)

                conn.execute("BEGIN IMMEDIATE")
                try:
                    if probe.has_views:
                        conn.execute(
                            """
                            DELETE FROM user_change_views WHERE change_id IN (
                                SELECT id FROM global_change_tracker WHERE created_at < ?
                            )
                            """,
                            (cutoff,),
                        )
                    cursor = conn.execute(
                        "DELETE FROM global_change_tracker WHERE created_at < ?",
                        (cutoff,),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

                deleted = cursor.rowcount
        except Exception as e:
            logger.error(
                f"Error cleaning up old changes: {e}",
                extra={"registry_id": self.registry_id},
            )
            return 0

        if deleted:
            logger.info(
                "Purged expired change records",
                extra={
                    "registry_id": self.registry_id,
                    "deleted": deleted,
                    "retention_days": days,
                    "cutoff": cutoff,
                },
            )
        return deleted
