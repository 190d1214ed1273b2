"""
User directory lookups for change enrichment.

Authentication and sessions live elsewhere; the change feed only needs a
display name and e-mail address for the user who made a change. A missing
users table or an unknown user yields None and never fails the caller.
"""

from __future__ import annotations

import logging
import sqlite3

from ..timeutil import Clock, IdFactory, format_timestamp, new_id, utc_now
from .registry_store import RegistryStore, probe_tables

logger = logging.getLogger(__name__)


class UserDirectory:
    """Read/write access to the ``users`` table of one registry."""

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

    async def add_user(self, full_name: str, email_address: str, user_id: str | None = None) -> str:
        """Insert a user row and return its id."""
        user_id = user_id or self._new_id()
        timestamp = format_timestamp(self._clock())
        with self.store.connect(self.registry_id) as conn:
            conn.execute(
                """
                INSERT INTO users (id, full_name, email_address, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, full_name, email_address, timestamp, timestamp),
            )
        return user_id

    async def get_user_display_name(self, user_id: str) -> tuple[str, str] | None:
        """Return (full_name, email_address), or None when unavailable."""
        try:
            with self.store.connect(self.registry_id) as conn:
                if not probe_tables(conn).has_users:
                    return None
                row = conn.execute(
                    "SELECT full_name, email_address FROM users WHERE id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"User directory lookup failed: {e}", extra={"user_id": user_id})
            return None
        if row is None:
            return None
        return row["full_name"], row["email_address"]
