"""
Per-registry SQLite store for the schema registry.

This module manages the per-registry SQLite database that holds:
- The entity hierarchy (products, domains, contexts, schemas, schema_versions)
- The user directory (users)
- Subscriptions (subscriptions, user_subscriptions)
- The change log (global_change_tracker)
- Per-user view state (user_change_views)
- Per-user notification preferences (user_notification_preferences)

Tables are created in independent groups because a registry instance may be
mid-migration: any subset of them can be missing at any time. Every change
feed operation probes sqlite_master before touching a table and degrades
instead of failing when a read-path table is absent.

Invariants:
    - One SQLite file per registry instance
    - Writes are a single statement or a single BEGIN IMMEDIATE transaction
    - Table presence is probed per unit of work, never cached
    - user_change_views rows are removed with their change record

How to change safely:
    - Add columns with defaults for backward compatibility
    - Keep table groups independent so partial provisioning stays valid
    - Never rename tables probed by the change feed

Table schema:
    global_change_tracker:
        - id TEXT PRIMARY KEY (UUID)
        - entity_type TEXT (product|domain|context|schema|schema_version)
        - entity_id TEXT
        - entity_name TEXT
        - change_type TEXT (created|updated|deleted)
        - change_data TEXT (JSON)
        - changed_by_user_id TEXT NULL
        - created_at TEXT (YYYY-MM-DDTHH:MM:SSZ)

    subscriptions:
        - id TEXT PRIMARY KEY
        - type_id TEXT, type TEXT (P|D|C)
        - UNIQUE (type_id, type)

    user_subscriptions:
        - id TEXT PRIMARY KEY
        - subscription_id TEXT -> subscriptions(id)
        - user_id TEXT
        - UNIQUE (subscription_id, user_id)

    user_change_views:
        - id TEXT PRIMARY KEY
        - user_id TEXT
        - change_id TEXT -> global_change_tracker(id) ON DELETE CASCADE
        - UNIQUE (user_id, change_id)

    user_notification_preferences:
        - user_id TEXT PRIMARY KEY
        - retention_days INTEGER DEFAULT 30
        - show_breaking_changes_only, email_digest_frequency,
          real_time_notifications
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..errors import RegistryNotFoundError

logger = logging.getLogger(__name__)

CHANGE_LOG_TABLE = "global_change_tracker"
VIEWS_TABLE = "user_change_views"
PREFERENCES_TABLE = "user_notification_preferences"
SUBSCRIPTIONS_TABLE = "subscriptions"
USER_SUBSCRIPTIONS_TABLE = "user_subscriptions"
USERS_TABLE = "users"

_GROUP_SCHEMAS: dict[str, str] = {
    "hierarchy": """
        CREATE TABLE IF NOT EXISTS products (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS domains (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            product_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS contexts (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            namespace TEXT,
            description TEXT,
            domain_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (domain_id) REFERENCES domains(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS schemas (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            schema_type_category TEXT NOT NULL DEFAULT 'Entities',
            scope TEXT NOT NULL DEFAULT 'Public',
            context_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (context_id) REFERENCES contexts(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS schema_versions (
            id TEXT PRIMARY KEY,
            specification TEXT NOT NULL,
            semantic_version TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'Draft',
            schema_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (schema_id) REFERENCES schemas(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_domains_product_id ON domains(product_id);
        CREATE INDEX IF NOT EXISTS idx_contexts_domain_id ON contexts(domain_id);
        CREATE INDEX IF NOT EXISTS idx_schemas_context_id ON schemas(context_id);
        CREATE INDEX IF NOT EXISTS idx_schema_versions_schema_id ON schema_versions(schema_id);
    """,
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            full_name TEXT NOT NULL,
            email_address TEXT UNIQUE NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_users_email ON users(email_address);
    """,
    "subscriptions": """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id TEXT PRIMARY KEY,
            type_id TEXT NOT NULL,
            type TEXT NOT NULL CHECK (type IN ('P', 'D', 'C')),
            created_at TEXT NOT NULL,
            UNIQUE (type_id, type)
        );

        CREATE TABLE IF NOT EXISTS user_subscriptions (
            id TEXT PRIMARY KEY,
            subscription_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE,
            UNIQUE (subscription_id, user_id)
        );

        CREATE INDEX IF NOT EXISTS idx_subscriptions_type_id ON subscriptions(type_id);
        CREATE INDEX IF NOT EXISTS idx_user_subscriptions_subscription_id
            ON user_subscriptions(subscription_id);
        CREATE INDEX IF NOT EXISTS idx_user_subscriptions_user_id ON user_subscriptions(user_id);
    """,
    "change_log": """
        CREATE TABLE IF NOT EXISTS global_change_tracker (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL CHECK (entity_type IN
                ('product', 'domain', 'context', 'schema', 'schema_version')),
            entity_id TEXT NOT NULL,
            entity_name TEXT,
            change_type TEXT NOT NULL CHECK (change_type IN ('created', 'updated', 'deleted')),
            change_data TEXT NOT NULL,
            changed_by_user_id TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_entity_type_created
            ON global_change_tracker(entity_type, created_at);
        CREATE INDEX IF NOT EXISTS idx_entity_id_created
            ON global_change_tracker(entity_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_changed_by ON global_change_tracker(changed_by_user_id);
    """,
    "views": """
        CREATE TABLE IF NOT EXISTS user_change_views (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            change_id TEXT NOT NULL,
            viewed_at TEXT NOT NULL,
            UNIQUE (user_id, change_id),
            FOREIGN KEY (change_id) REFERENCES global_change_tracker(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_user_views ON user_change_views(user_id, viewed_at);
    """,
    "preferences": """
        CREATE TABLE IF NOT EXISTS user_notification_preferences (
            user_id TEXT PRIMARY KEY,
            retention_days INTEGER DEFAULT 30,
            show_breaking_changes_only INTEGER DEFAULT 0
                CHECK (show_breaking_changes_only IN (0, 1)),
            email_digest_frequency TEXT DEFAULT 'weekly'
                CHECK (email_digest_frequency IN ('never', 'daily', 'weekly')),
            real_time_notifications INTEGER DEFAULT 1
                CHECK (real_time_notifications IN (0, 1)),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """,
}

TABLE_GROUPS: tuple[str, ...] = tuple(_GROUP_SCHEMAS)


@dataclass(frozen=True)
class TableProbe:
    """Snapshot of which tables exist, taken once per unit of work."""

    tables: frozenset[str]

    def has(self, *names: str) -> bool:
        return all(name in self.tables for name in names)

    @property
    def has_change_log(self) -> bool:
        return CHANGE_LOG_TABLE in self.tables

    @property
    def has_views(self) -> bool:
        return VIEWS_TABLE in self.tables

    @property
    def has_preferences(self) -> bool:
        return PREFERENCES_TABLE in self.tables

    @property
    def has_subscriptions(self) -> bool:
        return self.has(SUBSCRIPTIONS_TABLE, USER_SUBSCRIPTIONS_TABLE)

    @property
    def has_users(self) -> bool:
        return USERS_TABLE in self.tables


def probe_tables(conn: sqlite3.Connection) -> TableProbe:
    """Read the catalog and return the tables currently present."""
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return TableProbe(frozenset(row[0] for row in cursor.fetchall()))


class RegistryStore:
    """SQLite connection manager for registry instances.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = RegistryStore("/var/lib/schemareg")
        >>> await store.initialize_registry("acme")
        >>> with store.connect("acme") as conn:
        ...     probe = probe_tables(conn)
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the registry store.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    def _get_db_path(self, registry_id: str) -> Path:
        """Get database file path for a registry."""
        # Sanitize registry_id to prevent path traversal
        safe_id = "".join(c for c in registry_id if c.isalnum() or c in "-_")
        return self.data_dir / f"registry_{safe_id}.db"

    @contextmanager
    def connect(self, registry_id: str, create: bool = True) -> Iterator[sqlite3.Connection]:
        """Open a connection to a registry database.

        Args:
            registry_id: Registry identifier
            create: Whether to create the database file if it does not exist

        Yields:
            SQLite connection in autocommit mode

        Raises:
            RegistryNotFoundError: If database doesn't exist and create=False
        """
        db_path = self._get_db_path(registry_id)

        if not create and not db_path.exists():
            raise RegistryNotFoundError(registry_id)

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    async def initialize_registry(
        self,
        registry_id: str,
        groups: Iterable[str] | None = None,
    ) -> None:
        """Create the registry database and the requested table groups.

        Args:
            registry_id: Registry identifier
            groups: Table groups to create (default: all of TABLE_GROUPS)

        Raises:
            ValueError: If an unknown group is requested
        """
        selected = list(TABLE_GROUPS if groups is None else groups)
        unknown = [g for g in selected if g not in _GROUP_SCHEMAS]
        if unknown:
            raise ValueError(f"Unknown table groups: {', '.join(unknown)}")

        async with self._lock:
            with self.connect(registry_id, create=True) as conn:
                for group in selected:
                    conn.executescript(_GROUP_SCHEMAS[group])
        logger.info(
            f"Initialized registry database: {registry_id}",
            extra={"registry_id": registry_id, "groups": selected},
        )

    async def registry_exists(self, registry_id: str) -> bool:
        """Check if registry database exists."""
        return self._get_db_path(registry_id).exists()

    async def probe(self, registry_id: str) -> TableProbe:
        """Return the tables currently present in a registry."""
        with self.connect(registry_id) as conn:
            return probe_tables(conn)

    def get_db_path(self, registry_id: str) -> Path:
        """Get the database file path for a registry."""
        return self._get_db_path(registry_id)
