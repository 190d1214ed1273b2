"""
Unit tests for the entity hierarchy store.

Tests cover:
- CRUD with change reporting
- Schema version enrichment
- Parent lookups
- Change tracking failures never failing the mutation
"""

import json

import pytest

from registry.schemareg_server.changes.recorder import ChangeRecorder
from registry.schemareg_server.store.hierarchy import ChangeSink, EntityHierarchyStore

REGISTRY = "acme"


def _changes(store):
    with store.connect(REGISTRY) as conn:
        rows = conn.execute("SELECT * FROM global_change_tracker ORDER BY rowid").fetchall()
    return [
        {
            "entity_type": row["entity_type"],
            "entity_id": row["entity_id"],
            "entity_name": row["entity_name"],
            "change_type": row["change_type"],
            "changed_by_user_id": row["changed_by_user_id"],
            "data": json.loads(row["change_data"]),
        }
        for row in rows
    ]


class ExplodingSink:
    async def record_change(self, *args, **kwargs):
        raise RuntimeError("change log unavailable")


class TestEntityHierarchyStore:
    """Tests for EntityHierarchyStore."""

    @pytest.fixture
    def hierarchy(self, store, clock):
        recorder = ChangeRecorder(store, REGISTRY, clock=clock)
        return EntityHierarchyStore(store, REGISTRY, change_sink=recorder, clock=clock)

    @pytest.mark.asyncio
    async def test_create_records_change(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)

        product = await hierarchy.create_product("Acme", "Root product", user_id="u1")

        assert product["name"] == "Acme"
        assert product["createdAt"] == "2025-03-01T12:00:00Z"
        changes = _changes(store)
        assert len(changes) == 1
        assert changes[0]["entity_type"] == "product"
        assert changes[0]["change_type"] == "created"
        assert changes[0]["entity_name"] == "Acme"
        assert changes[0]["changed_by_user_id"] == "u1"
        assert changes[0]["data"] == {"after": product}

    @pytest.mark.asyncio
    async def test_update_records_before_and_after(self, store, clock, hierarchy):
        await store.initialize_registry(REGISTRY)
        product = await hierarchy.create_product("Acme")
        domain = await hierarchy.create_domain(product["id"], "Bill")
        clock.advance(minutes=5)

        updated = await hierarchy.update_entity("domain", domain["id"], {"name": "Billing"})

        assert updated["name"] == "Billing"
        assert updated["updatedAt"] == "2025-03-01T12:05:00Z"
        change = _changes(store)[-1]
        assert change["change_type"] == "updated"
        assert change["entity_name"] == "Billing"
        assert change["data"]["before"]["name"] == "Bill"
        assert change["data"]["after"]["name"] == "Billing"
        assert change["data"]["after"]["productId"] == product["id"]

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)

        assert await hierarchy.update_entity("product", "missing", {"name": "x"}) is None
        assert _changes(store) == []

    @pytest.mark.asyncio
    async def test_delete_records_before(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)
        product = await hierarchy.create_product("Acme")

        assert await hierarchy.delete_entity("product", product["id"], user_id="u9") is True
        assert await hierarchy.delete_entity("product", product["id"]) is False

        change = _changes(store)[-1]
        assert change["change_type"] == "deleted"
        assert change["entity_name"] == "Acme"
        assert change["data"] == {"before": product}
        assert await hierarchy.get_entity("product", product["id"]) is None

    @pytest.mark.asyncio
    async def test_schema_version_enrichment(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)
        product = await hierarchy.create_product("Acme")
        domain = await hierarchy.create_domain(product["id"], "Billing")
        context = await hierarchy.create_context(domain["id"], "Invoices", namespace="billing")
        schema = await hierarchy.create_schema(context["id"], "Invoice", "Events")

        version = await hierarchy.create_schema_version(schema["id"], "1.0.0", "{}")
        await hierarchy.update_entity(
            "schema_version",
            version["id"],
            {"semantic_version": "2.0.0"},
            change_details={"removedFields": ["total"]},
        )
        await hierarchy.delete_entity("schema_version", version["id"])

        created, updated, deleted = _changes(store)[-3:]
        assert created["entity_name"] == "Invoice"
        assert created["data"]["schemaName"] == "Invoice"
        assert created["data"]["schemaTypeCategory"] == "Events"
        assert created["data"]["after"]["semanticVersion"] == "1.0.0"
        assert updated["data"]["removedFields"] == ["total"]
        assert updated["data"]["after"]["semanticVersion"] == "2.0.0"
        assert deleted["entity_name"] == "2.0.0"
        assert "schemaName" not in deleted["data"]

    @pytest.mark.asyncio
    async def test_parent_lookups(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)
        product = await hierarchy.create_product("Acme")
        domain = await hierarchy.create_domain(product["id"], "Billing")
        context = await hierarchy.create_context(domain["id"], "Invoices")
        schema = await hierarchy.create_schema(context["id"], "Invoice")
        version = await hierarchy.create_schema_version(schema["id"], "1.0.0", "{}")

        assert await hierarchy.parent_product_of(domain["id"]) == product["id"]
        assert await hierarchy.parent_domain_of(context["id"]) == domain["id"]
        assert await hierarchy.parent_context_of(schema["id"]) == context["id"]
        assert await hierarchy.parent_schema_of(version["id"]) == schema["id"]
        assert await hierarchy.parent_of("product", product["id"]) is None
        assert await hierarchy.parent_product_of("missing") is None

    @pytest.mark.asyncio
    async def test_child_requires_parent(self, store, hierarchy):
        await store.initialize_registry(REGISTRY)

        with pytest.raises(ValueError):
            await hierarchy.create_entity("domain", {"name": "Orphan"})

    @pytest.mark.asyncio
    async def test_mutation_completes_without_change_log(self, store, hierarchy):
        await store.initialize_registry(REGISTRY, groups=["hierarchy"])

        product = await hierarchy.create_product("Acme")

        assert await hierarchy.get_entity("product", product["id"]) == product

    @pytest.mark.asyncio
    async def test_sink_failures_are_absorbed(self, store, clock):
        await store.initialize_registry(REGISTRY)
        hierarchy = EntityHierarchyStore(store, REGISTRY, change_sink=ExplodingSink(), clock=clock)

        product = await hierarchy.create_product("Acme")
        await hierarchy.update_entity("product", product["id"], {"name": "Acme Corp"})
        assert await hierarchy.delete_entity("product", product["id"]) is True

    def test_recorder_is_a_change_sink(self, store):
        assert isinstance(ChangeRecorder(store, REGISTRY), ChangeSink)
