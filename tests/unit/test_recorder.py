"""
Unit tests for the change recorder.

Tests cover:
- Appending change records
- Soft failure without the change log
- Hard errors for malformed input
- Cleanup piggybacked on the write path
"""

import json

import pytest

from registry.schemareg_server.changes.recorder import ChangeRecorder
from registry.schemareg_server.config import RetentionConfig
from registry.schemareg_server.errors import InvalidEnumError, ValidationError

REGISTRY = "acme"


def _rows(store):
    with store.connect(REGISTRY) as conn:
        return conn.execute("SELECT * FROM global_change_tracker ORDER BY rowid").fetchall()


class TestChangeRecorder:
    """Tests for ChangeRecorder."""

    @pytest.fixture
    def recorder(self, store, clock):
        return ChangeRecorder(store, REGISTRY, clock=clock)

    @pytest.mark.asyncio
    async def test_record_change(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        result = await recorder.record_change(
            "domain",
            "dom-1",
            "Billing",
            "updated",
            {"before": {"name": "Bill"}, "after": {"name": "Billing"}},
            changed_by_user_id="u2",
        )

        assert result.success is True
        assert result.error is None
        rows = _rows(store)
        assert len(rows) == 1
        row = rows[0]
        assert row["id"] == result.change_id
        assert row["entity_type"] == "domain"
        assert row["entity_name"] == "Billing"
        assert row["change_type"] == "updated"
        assert row["changed_by_user_id"] == "u2"
        assert row["created_at"] == "2025-03-01T12:00:00Z"
        assert json.loads(row["change_data"]) == {
            "before": {"name": "Bill"},
            "after": {"name": "Billing"},
        }

    @pytest.mark.asyncio
    async def test_each_call_appends_one_row(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        first = await recorder.record_change("product", "p1", "Acme", "created", {"after": {}})
        second = await recorder.record_change("product", "p1", "Acme", "created", {"after": {}})

        assert first.change_id != second.change_id
        assert len(_rows(store)) == 2

    @pytest.mark.asyncio
    async def test_extra_fields_preserved(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        await recorder.record_change(
            "schema_version",
            "v1",
            "Invoice",
            "created",
            {"after": {"semanticVersion": "1.0.0"}, "schemaName": "Invoice", "custom": {"k": 1}},
        )

        data = json.loads(_rows(store)[0]["change_data"])
        assert data["schemaName"] == "Invoice"
        assert data["custom"] == {"k": 1}

    @pytest.mark.asyncio
    async def test_without_change_log(self, store, recorder):
        await store.initialize_registry(REGISTRY, groups=["hierarchy", "subscriptions"])

        result = await recorder.record_change("product", "p1", "Acme", "created", {"after": {}})

        assert result.success is False
        assert result.change_id is None
        assert result.error == "Change tracking table not initialized"

    @pytest.mark.asyncio
    async def test_invalid_enums(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        with pytest.raises(InvalidEnumError):
            await recorder.record_change("table", "t1", "x", "created", {})
        with pytest.raises(InvalidEnumError):
            await recorder.record_change("product", "p1", "x", "renamed", {})
        assert _rows(store) == []

    @pytest.mark.asyncio
    async def test_non_serializable_data(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        with pytest.raises(ValidationError):
            await recorder.record_change("product", "p1", "x", "created", {"after": {"s": {1, 2}}})
        assert _rows(store) == []

    @pytest.mark.asyncio
    async def test_non_mapping_data(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        with pytest.raises(ValidationError):
            await recorder.record_change("product", "p1", "x", "created", [1, 2])
        with pytest.raises(ValidationError):
            await recorder.record_change("product", "p1", "x", "created", "after")
        assert _rows(store) == []

    @pytest.mark.asyncio
    async def test_explicit_null_stored_verbatim(self, store, recorder):
        await store.initialize_registry(REGISTRY)

        await recorder.record_change("product", "p1", "Acme", "created", {"before": None, "after": {"n": 1}})

        assert json.loads(_rows(store)[0]["change_data"]) == {"before": None, "after": {"n": 1}}

    @pytest.mark.asyncio
    async def test_cleanup_on_write(self, store, clock):
        await store.initialize_registry(REGISTRY)
        recorder = ChangeRecorder(store, REGISTRY, clock=clock)

        old = await recorder.record_change("product", "p1", "Acme", "created", {"after": {}})
        clock.advance(days=31)
        new = await recorder.record_change("product", "p2", "Other", "created", {"after": {}})

        assert [row["id"] for row in _rows(store)] == [new.change_id]
        assert old.success is True

    @pytest.mark.asyncio
    async def test_cleanup_on_write_disabled(self, store, clock):
        await store.initialize_registry(REGISTRY)
        recorder = ChangeRecorder(
            store, REGISTRY, retention_config=RetentionConfig(cleanup_on_write=False), clock=clock
        )

        await recorder.record_change("product", "p1", "Acme", "created", {"after": {}})
        clock.advance(days=31)
        await recorder.record_change("product", "p2", "Other", "created", {"after": {}})

        assert len(_rows(store)) == 2
