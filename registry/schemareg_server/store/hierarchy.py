"""
Entity hierarchy store: products, domains, contexts, schemas and versions.

This is the thin collaborator that produces change records. Every create,
update and delete reports one change to the configured change sink. Business
rules beyond the parent links (naming, version ordering, status workflow)
belong to the registry API, not to this store.

Invariants:
    - Every mutation reports exactly one change, after the mutation succeeds
    - Change tracking failures are logged and never fail the mutation
    - Deleting a parent cascades to its children via foreign keys; only the
      parent deletion is reported
    - Schema version changes carry schemaName and schemaTypeCategory

How to change safely:
    - Add entity columns to _ENTITIES with a default in the table definition
    - Keep change payload keys camelCase; persisted history depends on them
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..changes.types import ChangeType, EntityType, RecordResult
from ..timeutil import Clock, IdFactory, format_timestamp, new_id, utc_now
from .registry_store import RegistryStore

logger = logging.getLogger(__name__)


@runtime_checkable
class ChangeSink(Protocol):
    """Anything that accepts change records (ChangeRecorder, ChangeFeed)."""

    @abstractmethod
    async def record_change(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        entity_name: str | None,
        change_type: ChangeType | str,
        change_data: Mapping[str, Any] | None = None,
        changed_by_user_id: str | None = None,
    ) -> RecordResult: ...


@dataclass(frozen=True)
class _EntityTable:
    table: str
    parent_column: str | None
    columns: tuple[str, ...]
    name_column: str = "name"


_ENTITIES: dict[EntityType, _EntityTable] = {
    EntityType.PRODUCT: _EntityTable("products", None, ("name", "description")),
    EntityType.DOMAIN: _EntityTable("domains", "product_id", ("name", "description")),
    EntityType.CONTEXT: _EntityTable(
        "contexts", "domain_id", ("name", "namespace", "description")
    ),
    EntityType.SCHEMA: _EntityTable(
        "schemas",
        "context_id",
        ("name", "description", "schema_type_category", "scope"),
    ),
    EntityType.SCHEMA_VERSION: _EntityTable(
        "schema_versions",
        "schema_id",
        ("specification", "semantic_version", "description", "status"),
        name_column="semantic_version",
    ),
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_payload(row: Mapping[str, Any]) -> dict[str, Any]:
    return {_camel(key): row[key] for key in row.keys()}


class EntityHierarchyStore:
    """CRUD for the registry hierarchy with change reporting.

    Example:
        >>> hierarchy = EntityHierarchyStore(store, "acme", change_sink=feed)
        >>> product = await hierarchy.create_product("Acme", user_id="u1")
        >>> domain = await hierarchy.create_domain(product["id"], "Billing")
        >>> await hierarchy.parent_product_of(domain["id"]) == product["id"]
        True
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        change_sink: ChangeSink | None = None,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_id,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self.change_sink = change_sink
        self._clock = clock
        self._new_id = id_factory

    # =========================================================================
    # Generic operations
    # =========================================================================

    async def get_entity(
        self, entity_type: EntityType | str, entity_id: str
    ) -> dict[str, Any] | None:
        """Return an entity as a camelCase mapping, or None."""
        spec = _ENTITIES[EntityType.parse(entity_type)]
        with self.store.connect(self.registry_id) as conn:
            row = conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?", (entity_id,)
            ).fetchone()
        return _to_payload(row) if row is not None else None

    async def create_entity(
        self,
        entity_type: EntityType | str,
        fields: Mapping[str, Any],
        parent_id: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Insert an entity and report a ``created`` change.

        Args:
            entity_type: Kind of entity
            fields: Column values (snake_case); unknown keys are ignored
            parent_id: Parent id, required for everything but products
            user_id: Acting user

        Returns:
            The stored entity as a camelCase mapping

        Raises:
            ValueError: If parent_id is missing for a child entity
            sqlite3.IntegrityError: If the parent does not exist
        """
        entity_type = EntityType.parse(entity_type)
        spec = _ENTITIES[entity_type]
        if spec.parent_column and not parent_id:
            raise ValueError(f"{entity_type.value} requires {spec.parent_column}")

        entity_id = fields.get("id") or self._new_id()
        timestamp = format_timestamp(self._clock())
        values = {column: fields[column] for column in spec.columns if column in fields}
        if spec.parent_column:
            values[spec.parent_column] = parent_id
        values.update({"id": entity_id, "created_at": timestamp, "updated_at": timestamp})

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self.store.connect(self.registry_id) as conn:
            conn.execute(
                f"INSERT INTO {spec.table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            row = conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?", (entity_id,)
            ).fetchone()

        entity = _to_payload(row)
        await self._report(entity_type, entity, ChangeType.CREATED, {"after": entity}, user_id)
        return entity

    async def update_entity(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        changes: Mapping[str, Any],
        user_id: str | None = None,
        change_details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Update an entity and report an ``updated`` change.

        Args:
            entity_type: Kind of entity
            entity_id: Entity to update
            changes: Column values to set (snake_case)
            user_id: Acting user
            change_details: Extra payload fields, such as removedFields

        Returns:
            The updated entity, or None if it does not exist
        """
        entity_type = EntityType.parse(entity_type)
        spec = _ENTITIES[entity_type]
        values = {column: changes[column] for column in spec.columns if column in changes}
        values["updated_at"] = format_timestamp(self._clock())
        assignments = ", ".join(f"{column} = ?" for column in values)

        with self.store.connect(self.registry_id) as conn:
            before = conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?", (entity_id,)
            ).fetchone()
            if before is None:
                return None
            conn.execute(
                f"UPDATE {spec.table} SET {assignments} WHERE id = ?",
                (*values.values(), entity_id),
            )
            after = conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?", (entity_id,)
            ).fetchone()

        entity = _to_payload(after)
        change_data = {"before": _to_payload(before), "after": entity, **(change_details or {})}
        await self._report(entity_type, entity, ChangeType.UPDATED, change_data, user_id)
        return entity

    async def delete_entity(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        user_id: str | None = None,
    ) -> bool:
        """Delete an entity and report a ``deleted`` change.

        Returns:
            True if a row was deleted
        """
        entity_type = EntityType.parse(entity_type)
        spec = _ENTITIES[entity_type]

        with self.store.connect(self.registry_id) as conn:
            before = conn.execute(
                f"SELECT * FROM {spec.table} WHERE id = ?", (entity_id,)
            ).fetchone()
            if before is None:
                return False
            conn.execute(f"DELETE FROM {spec.table} WHERE id = ?", (entity_id,))

        entity = _to_payload(before)
        name = entity.get(_camel(spec.name_column))
        await self._report(
            entity_type, entity, ChangeType.DELETED, {"before": entity}, user_id, name=name
        )
        return True

    # =========================================================================
    # Typed helpers
    # =========================================================================

    async def create_product(
        self, name: str, description: str | None = None, user_id: str | None = None
    ) -> dict[str, Any]:
        return await self.create_entity(
            EntityType.PRODUCT, {"name": name, "description": description}, user_id=user_id
        )

    async def create_domain(
        self,
        product_id: str,
        name: str,
        description: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.create_entity(
            EntityType.DOMAIN,
            {"name": name, "description": description},
            parent_id=product_id,
            user_id=user_id,
        )

    async def create_context(
        self,
        domain_id: str,
        name: str,
        namespace: str | None = None,
        description: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.create_entity(
            EntityType.CONTEXT,
            {"name": name, "namespace": namespace, "description": description},
            parent_id=domain_id,
            user_id=user_id,
        )

    async def create_schema(
        self,
        context_id: str,
        name: str,
        schema_type_category: str = "Entities",
        scope: str = "Public",
        description: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.create_entity(
            EntityType.SCHEMA,
            {
                "name": name,
                "description": description,
                "schema_type_category": schema_type_category,
                "scope": scope,
            },
            parent_id=context_id,
            user_id=user_id,
        )

    async def create_schema_version(
        self,
        schema_id: str,
        semantic_version: str,
        specification: str,
        status: str = "Draft",
        description: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.create_entity(
            EntityType.SCHEMA_VERSION,
            {
                "semantic_version": semantic_version,
                "specification": specification,
                "status": status,
                "description": description,
            },
            parent_id=schema_id,
            user_id=user_id,
        )

    # =========================================================================
    # Parent lookups
    # =========================================================================

    async def _parent_of(self, entity_type: EntityType, entity_id: str) -> str | None:
        spec = _ENTITIES[entity_type]
        with self.store.connect(self.registry_id) as conn:
            row = conn.execute(
                f"SELECT {spec.parent_column} AS parent_id FROM {spec.table} WHERE id = ?",
                (entity_id,),
            ).fetchone()
        return row["parent_id"] if row is not None else None

    async def parent_product_of(self, domain_id: str) -> str | None:
        return await self._parent_of(EntityType.DOMAIN, domain_id)

    async def parent_domain_of(self, context_id: str) -> str | None:
        return await self._parent_of(EntityType.CONTEXT, context_id)

    async def parent_context_of(self, schema_id: str) -> str | None:
        return await self._parent_of(EntityType.SCHEMA, schema_id)

    async def parent_schema_of(self, version_id: str) -> str | None:
        return await self._parent_of(EntityType.SCHEMA_VERSION, version_id)

    async def parent_of(self, entity_type: EntityType | str, entity_id: str) -> str | None:
        """Parent id of any non-product entity; None for products or unknown ids."""
        entity_type = EntityType.parse(entity_type)
        if _ENTITIES[entity_type].parent_column is None:
            return None
        return await self._parent_of(entity_type, entity_id)

    # =========================================================================
    # Change reporting
    # =========================================================================

    async def _report(
        self,
        entity_type: EntityType,
        entity: dict[str, Any],
        change_type: ChangeType,
        change_data: dict[str, Any],
        user_id: str | None,
        name: str | None = None,
    ) -> None:
        if self.change_sink is None:
            return

        try:
            if name is None:
                name = entity.get(_camel(_ENTITIES[entity_type].name_column))
            if entity_type is EntityType.SCHEMA_VERSION and change_type is not ChangeType.DELETED:
                schema = await self.get_entity(EntityType.SCHEMA, entity.get("schemaId"))
                if schema is not None:
                    change_data["schemaName"] = schema["name"]
                    change_data["schemaTypeCategory"] = schema["schemaTypeCategory"]
                    name = schema["name"] or name

            result = await self.change_sink.record_change(
                entity_type, entity["id"], name, change_type, change_data, user_id
            )
            if not result.success:
                logger.warning(
                    f"Change not recorded: {result.error}",
                    extra={
                        "registry_id": self.registry_id,
                        "entity_type": entity_type.value,
                        "entity_id": entity["id"],
                    },
                )
        except Exception as e:
            logger.error(
                f"Change tracking failed for {entity_type.value} {change_type.value}: {e}",
                extra={"registry_id": self.registry_id, "entity_id": entity["id"]},
            )
