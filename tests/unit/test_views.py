"""
Unit tests for the view state tracker.
"""

import pytest

from registry.schemareg_server.changes.recorder import ChangeRecorder
from registry.schemareg_server.changes.types import UserChangeView
from registry.schemareg_server.changes.views import ViewStateTracker
from registry.schemareg_server.errors import NotInitializedError

REGISTRY = "acme"


class TestViewStateTracker:
    """Tests for ViewStateTracker."""

    @pytest.fixture
    def views(self, store, clock):
        return ViewStateTracker(store, REGISTRY, clock=clock)

    @pytest.fixture
    def recorder(self, store, clock):
        return ChangeRecorder(store, REGISTRY, clock=clock)

    async def _record(self, recorder, count):
        ids = []
        for i in range(count):
            result = await recorder.record_change("product", f"p{i}", f"P{i}", "created", {"after": {}})
            ids.append(result.change_id)
        return ids

    @pytest.mark.asyncio
    async def test_mark_seen(self, store, views, recorder):
        await store.initialize_registry(REGISTRY)
        ids = await self._record(recorder, 2)

        assert await views.mark_seen("u1", ids) == 2
        assert await views.has_seen("u1", ids[0]) is True
        assert await views.has_seen("u2", ids[0]) is False

    @pytest.mark.asyncio
    async def test_mark_seen_idempotent(self, store, views, recorder):
        await store.initialize_registry(REGISTRY)
        ids = await self._record(recorder, 2)

        assert await views.mark_seen("u1", [ids[0], ids[0]]) == 1
        assert await views.mark_seen("u1", ids) == 1
        assert await views.mark_seen("u1", ids) == 0

        with store.connect(REGISTRY) as conn:
            count = conn.execute("SELECT COUNT(*) FROM user_change_views").fetchone()[0]
        assert count == 2

    @pytest.mark.asyncio
    async def test_unknown_ids_skipped(self, store, views, recorder):
        await store.initialize_registry(REGISTRY)
        ids = await self._record(recorder, 1)

        assert await views.mark_seen("u1", ["missing", ids[0]]) == 1

    @pytest.mark.asyncio
    async def test_empty_list(self, store, views):
        await store.initialize_registry(REGISTRY)
        assert await views.mark_seen("u1", []) == 0

    @pytest.mark.asyncio
    async def test_unseen_change_ids(self, store, views, recorder):
        await store.initialize_registry(REGISTRY)
        ids = await self._record(recorder, 3)
        await views.mark_seen("u1", [ids[1]])

        assert await views.unseen_change_ids("u1", ids) == [ids[0], ids[2]]
        assert await views.unseen_change_ids("u2", ids) == ids

    @pytest.mark.asyncio
    async def test_list_views(self, store, clock, views, recorder):
        await store.initialize_registry(REGISTRY)
        ids = await self._record(recorder, 2)
        await views.mark_seen("u1", [ids[0]])
        clock.advance(minutes=1)
        await views.mark_seen("u1", [ids[1]])

        listed = await views.list_views("u1")

        assert all(isinstance(view, UserChangeView) for view in listed)
        assert [view.change_id for view in listed] == [ids[1], ids[0]]
        assert listed[0].user_id == "u1"
        assert listed[0].viewed_at == "2025-03-01T12:01:00Z"
        assert await views.list_views("u2") == []

    @pytest.mark.asyncio
    async def test_without_views_table(self, store, views, recorder):
        await store.initialize_registry(REGISTRY, groups=["change_log"])
        ids = await self._record(recorder, 1)

        with pytest.raises(NotInitializedError) as exc_info:
            await views.mark_seen("u1", ids)
        assert exc_info.value.message == "User change views table not initialized"
        assert await views.has_seen("u1", ids[0]) is False
        assert await views.unseen_change_ids("u1", ids) == ids
        assert await views.list_views("u1") == []
