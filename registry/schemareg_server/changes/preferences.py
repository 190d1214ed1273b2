"""
Per-user notification preferences.

Reading never writes: a user without a row gets the defaults. Updates are
an upsert that keeps the original ``created_at``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..errors import NotInitializedError, ValidationError
from ..store.registry_store import RegistryStore, probe_tables
from ..timeutil import Clock, format_timestamp, utc_now
from .types import EmailDigestFrequency, NotificationPreferences

logger = logging.getLogger(__name__)


class PreferencesStore:
    """Read and upsert ``user_notification_preferences`` rows."""

    def __init__(self, store: RegistryStore, registry_id: str, clock: Clock = utc_now) -> None:
        self.store = store
        self.registry_id = registry_id
        self._clock = clock

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_preferences:
                logger.debug("Preferences table does not exist, using defaults")
                return NotificationPreferences()
            row = conn.execute(
                """
                SELECT retention_days, show_breaking_changes_only,
                       email_digest_frequency, real_time_notifications
                FROM user_notification_preferences WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()

        if row is None:
            return NotificationPreferences()

        defaults = NotificationPreferences()
        return NotificationPreferences(
            retention_days=row["retention_days"] or defaults.retention_days,
            show_breaking_changes_only=bool(row["show_breaking_changes_only"]),
            email_digest_frequency=EmailDigestFrequency.parse(
                row["email_digest_frequency"] or defaults.email_digest_frequency
            ),
            real_time_notifications=(
                defaults.real_time_notifications
                if row["real_time_notifications"] is None
                else bool(row["real_time_notifications"])
            ),
        )

    async def update_preferences(
        self,
        user_id: str,
        preferences: NotificationPreferences | Mapping[str, Any],
    ) -> NotificationPreferences:
        """Create or replace a user's preferences.

        Args:
            user_id: Owner of the preferences
            preferences: Full preferences, or a camelCase mapping
                (missing keys take their defaults)

        Returns:
            The stored preferences

        Raises:
            ValidationError: If retention_days is below one day
            InvalidEnumError: If the digest frequency is unknown
            NotInitializedError: If the preferences table is missing
        """
        if not isinstance(preferences, NotificationPreferences):
            preferences = NotificationPreferences.from_dict(preferences)
        if preferences.retention_days < 1:
            raise ValidationError(
                "retentionDays must be at least 1",
                field_name="retentionDays",
                errors=[f"got {preferences.retention_days}"],
            )

        timestamp = format_timestamp(self._clock())
        with self.store.connect(self.registry_id) as conn:
            if not probe_tables(conn).has_preferences:
                raise NotInitializedError(
                    "User notification preferences table not initialized",
                    table="user_notification_preferences",
                )
            conn.execute(
                """
                INSERT OR REPLACE INTO user_notification_preferences (
                    user_id, retention_days, show_breaking_changes_only,
                    email_digest_frequency, real_time_notifications,
                    created_at, updated_at
                ) VALUES (
                    ?, ?, ?, ?, ?,
                    COALESCE(
                        (SELECT created_at FROM user_notification_preferences WHERE user_id = ?),
                        ?
                    ),
                    ?
                )
                """,
                (
                    user_id,
                    preferences.retention_days,
                    int(preferences.show_breaking_changes_only),
                    preferences.email_digest_frequency.value,
                    int(preferences.real_time_notifications),
                    user_id,
                    timestamp,
                    timestamp,
                ),
            )

        logger.info(
            "Updated notification preferences",
            extra={"registry_id": self.registry_id, "user_id": user_id},
        )
        return preferences
