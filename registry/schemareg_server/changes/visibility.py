"""
Hierarchy inheritance resolver: which changes a user gets to see.

A change to entity T is visible to user U when U holds a subscription whose
target is T itself (products, domains and contexts) or any ancestor of T at
the product, domain or context level. Levels are OR-ed: one matching
subscription is enough.

The rule is compiled into a single SQL predicate from PARENT_LINKS, the
child -> parent table of the hierarchy. Each ancestor hop becomes a nested
``IN`` subquery, so a schema version subscribed through its product reads:

    s.type = 'P' AND s.type_id IN (
        SELECT product_id FROM domains WHERE id IN (
            SELECT domain_id FROM contexts WHERE id IN (
                SELECT context_id FROM schemas WHERE id IN (
                    SELECT schema_id FROM schema_versions WHERE id = c.entity_id))))

Invariants:
    - Only unseen changes inside the user's retention window are counted
    - Table presence is probed on every call and never cached
    - Ancestor clauses whose hierarchy tables are missing are omitted
    - Ordering is created_at DESC, then later insertion first

How to change safely:
    - Add a hierarchy level by extending PARENT_LINKS, not the SQL
    - Keep summary and detail queries on the same filter builder
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from ..config import RetentionConfig, VisibilityConfig
from ..store.registry_store import RegistryStore, TableProbe, probe_tables
from ..timeutil import Clock, cutoff_timestamp, utc_now
from .breaking import is_breaking_change
from .types import (
    ChangeData,
    ChangesSummary,
    ChangeType,
    DetailedChange,
    EntityType,
    VisibilityMode,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParentLink:
    """Where to find the parent of an entity.

    Attributes:
        table: Table holding the child entity
        column: Column of ``table`` holding the parent id
        parent: Entity type of the parent
    """

    table: str
    column: str
    parent: EntityType


PARENT_LINKS: dict[EntityType, ParentLink] = {
    EntityType.DOMAIN: ParentLink("domains", "product_id", EntityType.PRODUCT),
    EntityType.CONTEXT: ParentLink("contexts", "domain_id", EntityType.DOMAIN),
    EntityType.SCHEMA: ParentLink("schemas", "context_id", EntityType.CONTEXT),
    EntityType.SCHEMA_VERSION: ParentLink("schema_versions", "schema_id", EntityType.SCHEMA),
}


def _ancestor_clauses(entity_type: EntityType, probe: TableProbe) -> list[str]:
    """Subscription match clauses for changes to ``entity_type``.

    Walks up PARENT_LINKS and emits one clause per subscribable level.
    The walk stops at the first hop whose table does not exist.
    """
    clauses = []
    current = entity_type
    id_sql = None  # None means "the changed entity itself"
    while True:
        level = current.subscription_type
        if level is not None:
            if id_sql is None:
                clauses.append(f"(s.type = '{level.value}' AND s.type_id = c.entity_id)")
            else:
                clauses.append(f"(s.type = '{level.value}' AND s.type_id IN ({id_sql}))")

        link = PARENT_LINKS.get(current)
        if link is None or not probe.has(link.table):
            break
        where = "id = c.entity_id" if id_sql is None else f"id IN ({id_sql})"
        id_sql = f"SELECT {link.column} FROM {link.table} WHERE {where}"
        current = link.parent
    return clauses


def build_visibility_predicate(
    probe: TableProbe,
    entity_types: list[EntityType] | None = None,
) -> str:
    """SQL predicate over ``global_change_tracker c`` with one ``?`` for the user id.

    Args:
        probe: Tables present in the registry
        entity_types: Restrict the generated clauses to these entity types

    Returns:
        An EXISTS predicate; FALSE-equivalent when no clause can match
    """
    per_type = []
    for entity_type in entity_types or list(EntityType):
        clauses = _ancestor_clauses(entity_type, probe)
        if clauses:
            per_type.append(
                f"(c.entity_type = '{entity_type.value}' AND ({' OR '.join(clauses)}))"
            )

    if not per_type:
        return "0"

    return (
        "EXISTS (SELECT 1 FROM subscriptions s "
        "JOIN user_subscriptions us ON s.id = us.subscription_id "
        f"WHERE us.user_id = ? AND ({' OR '.join(per_type)}))"
    )


@dataclass
class _ChangeFilter:
    where: list[str] = field(default_factory=list)
    params: list[Any] = field(default_factory=list)

    def add(self, clause: str, *params: Any) -> None:
        self.where.append(clause)
        self.params.extend(params)

    @property
    def sql(self) -> str:
        return " AND ".join(self.where) if self.where else "1"


class VisibilityResolver:
    """Computes per-user summaries and detail lists of visible, unseen changes.

    Example:
        >>> resolver = VisibilityResolver(store, "acme")
        >>> summary = await resolver.get_changes_summary("u1")
        >>> summary.to_dict()["totalChanges"]
        1
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        visibility_config: VisibilityConfig | None = None,
        retention_config: RetentionConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self.visibility_config = visibility_config or VisibilityConfig()
        self.retention_config = retention_config or RetentionConfig()
        self._clock = clock

    def visibility_mode(self, probe: TableProbe) -> VisibilityMode:
        if probe.has_subscriptions:
            return VisibilityMode.SUBSCRIPTIONS
        if self.visibility_config.legacy_show_all_without_subscriptions:
            return VisibilityMode.ALL_CHANGES
        return VisibilityMode.NONE

    def _user_retention_days(
        self, conn: sqlite3.Connection, probe: TableProbe, user_id: str
    ) -> int:
        if not probe.has_preferences:
            return self.retention_config.default_days
        row = conn.execute(
            "SELECT retention_days FROM user_notification_preferences WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return self.retention_config.default_days
        return row["retention_days"] or self.retention_config.default_days

    def _build_filter(
        self,
        conn: sqlite3.Connection,
        probe: TableProbe,
        mode: VisibilityMode,
        user_id: str,
        entity_type: EntityType | None = None,
    ) -> _ChangeFilter:
        change_filter = _ChangeFilter()

        if entity_type is not None:
            change_filter.add("c.entity_type = ?", entity_type.value)

        days = self._user_retention_days(conn, probe, user_id)
        change_filter.add("c.created_at >= ?", cutoff_timestamp(self._clock(), days))

        if probe.has_views:
            change_filter.add(
                "NOT EXISTS (SELECT 1 FROM user_change_views v "
                "WHERE v.change_id = c.id AND v.user_id = ?)",
                user_id,
            )

        if mode is VisibilityMode.SUBSCRIPTIONS:
            types = [entity_type] if entity_type is not None else None
            change_filter.add(build_visibility_predicate(probe, types), user_id)

        return change_filter

    async def get_changes_summary(self, user_id: str) -> ChangesSummary:
        """Count a user's visible, unseen changes by entity and change type."""
        with self.store.connect(self.registry_id) as conn:
            probe = probe_tables(conn)
            mode = self.visibility_mode(probe)
            summary = ChangesSummary(visibility_mode=mode)

            if not probe.has_change_log:
                logger.info(
                    "Change tracking table does not exist, returning empty summary",
                    extra={"registry_id": self.registry_id},
                )
                return summary
            if mode is VisibilityMode.NONE:
                logger.info(
                    "Subscription tables not initialized, hiding all changes",
                    extra={"registry_id": self.registry_id, "user_id": user_id},
                )
                return summary
            if mode is VisibilityMode.ALL_CHANGES:
                logger.info(
                    "Subscription tables not initialized, showing all changes",
                    extra={"registry_id": self.registry_id, "user_id": user_id},
                )

            change_filter = self._build_filter(conn, probe, mode, user_id)
            rows = conn.execute(
                f"""
                SELECT c.entity_type, c.change_type, COUNT(*) AS count
                FROM global_change_tracker c
                WHERE {change_filter.sql}
                GROUP BY c.entity_type, c.change_type
                """,
                change_filter.params,
            ).fetchall()

        for row in rows:
            summary.add(EntityType(row["entity_type"]), ChangeType(row["change_type"]), row["count"])
        return summary

    async def get_detailed_changes(
        self,
        user_id: str,
        entity_type: EntityType | str,
    ) -> list[DetailedChange]:
        """List a user's visible, unseen changes for one entity type, newest first.

        Raises:
            InvalidEnumError: If entity_type is unknown
        """
        entity_type = EntityType.parse(entity_type)

        with self.store.connect(self.registry_id) as conn:
            probe = probe_tables(conn)
            if not probe.has_change_log:
                logger.info(
                    "Change tracking table does not exist, returning empty changes",
                    extra={"registry_id": self.registry_id},
                )
                return []
            mode = self.visibility_mode(probe)
            if mode is VisibilityMode.NONE:
                return []

            change_filter = self._build_filter(conn, probe, mode, user_id, entity_type)
            if probe.has_users:
                user_columns = "u.full_name AS user_name, u.email_address AS user_email"
                user_join = "LEFT JOIN users u ON c.changed_by_user_id = u.id"
            else:
                user_columns = "NULL AS user_name, NULL AS user_email"
                user_join = ""

            rows = conn.execute(
                f"""
                SELECT c.id, c.entity_type, c.entity_id, c.entity_name, c.change_type,
                       c.change_data, c.changed_by_user_id, c.created_at, {user_columns}
                FROM global_change_tracker c
                {user_join}
                WHERE {change_filter.sql}
                ORDER BY c.created_at DESC, c.rowid DESC
                """,
                change_filter.params,
            ).fetchall()

        return [self._row_to_detailed_change(row) for row in rows]

    def _row_to_detailed_change(self, row: sqlite3.Row) -> DetailedChange:
        try:
            raw = json.loads(row["change_data"]) if row["change_data"] else {}
        except json.JSONDecodeError:
            logger.warning(
                "Unreadable change_data, treating as empty",
                extra={"registry_id": self.registry_id, "change_id": row["id"]},
            )
            raw = {}
        data = ChangeData.from_dict(raw if isinstance(raw, dict) else {})
        entity_type = EntityType(row["entity_type"])

        return DetailedChange(
            id=row["id"],
            entity_type=entity_type,
            entity_id=row["entity_id"],
            entity_name=row["entity_name"],
            change_type=ChangeType(row["change_type"]),
            change_data=data,
            changed_by_user_id=row["changed_by_user_id"],
            created_at=row["created_at"],
            changed_by_user_name=row["user_name"],
            changed_by_user_email=row["user_email"],
            is_breaking_change=is_breaking_change(entity_type, data),
        )
