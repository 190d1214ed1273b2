"""
Unit tests for the subscription registry.

Tests cover:
- Subscribe / unsubscribe lifecycle
- Uniqueness of targets and memberships
- Behavior without subscription tables
"""

import sqlite3

import pytest

from registry.schemareg_server.changes.subscriptions import SubscriptionRegistry
from registry.schemareg_server.changes.types import SubscriptionType
from registry.schemareg_server.errors import (
    AlreadySubscribedError,
    InvalidEnumError,
    NotInitializedError,
    NotSubscribedError,
)

REGISTRY = "acme"


class TestSubscriptionRegistry:
    """Tests for SubscriptionRegistry."""

    @pytest.fixture
    def subscriptions(self, store, clock):
        return SubscriptionRegistry(store, REGISTRY, clock=clock)

    @pytest.mark.asyncio
    async def test_subscribe(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)

        subscription_id = await subscriptions.subscribe("u1", "prod-1", "P")

        assert subscription_id
        assert await subscriptions.is_subscribed("u1", "prod-1", "P") is True
        assert await subscriptions.is_subscribed("u1", "prod-1", "D") is False
        assert await subscriptions.is_subscribed("u2", "prod-1", "P") is False

    @pytest.mark.asyncio
    async def test_duplicate_subscribe_rejected(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)
        await subscriptions.subscribe("u1", "prod-1", SubscriptionType.PRODUCT)

        with pytest.raises(AlreadySubscribedError) as exc_info:
            await subscriptions.subscribe("u1", "prod-1", "P")
        assert exc_info.value.code == "ALREADY_SUBSCRIBED"

        with store.connect(REGISTRY) as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM user_subscriptions WHERE user_id = 'u1'"
            ).fetchone()[0]
        assert count == 1

    @pytest.mark.asyncio
    async def test_target_shared_between_users(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)

        first = await subscriptions.subscribe("u1", "dom-1", "D")
        second = await subscriptions.subscribe("u2", "dom-1", "D")

        assert first == second
        with store.connect(REGISTRY) as conn:
            targets = conn.execute("SELECT COUNT(*) FROM subscriptions").fetchone()[0]
        assert targets == 1
        assert await subscriptions.list_subscribed_user_ids("dom-1", "D") == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_unsubscribe_keeps_target(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)
        await subscriptions.subscribe("u1", "ctx-1", "C")

        await subscriptions.unsubscribe("u1", "ctx-1", "C")

        assert await subscriptions.is_subscribed("u1", "ctx-1", "C") is False
        with store.connect(REGISTRY) as conn:
            targets = conn.execute("SELECT COUNT(*) FROM subscriptions").fetchone()[0]
        assert targets == 1

        # Subscribing again reuses the target
        await subscriptions.subscribe("u1", "ctx-1", "C")
        assert await subscriptions.is_subscribed("u1", "ctx-1", "C") is True

    @pytest.mark.asyncio
    async def test_unsubscribe_not_subscribed(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)
        await subscriptions.subscribe("u2", "ctx-1", "C")

        with pytest.raises(NotSubscribedError):
            await subscriptions.unsubscribe("u1", "ctx-1", "C")
        with pytest.raises(NotSubscribedError) as exc_info:
            await subscriptions.unsubscribe("u1", "unknown", "P")
        assert exc_info.value.message == "User was not subscribed"

    @pytest.mark.asyncio
    async def test_list_subscriptions_newest_first(self, store, subscriptions, clock):
        await store.initialize_registry(REGISTRY)
        await subscriptions.subscribe("u1", "prod-1", "P")
        clock.advance(minutes=1)
        await subscriptions.subscribe("u1", "dom-1", "D")
        # Same second: later insertion wins
        await subscriptions.subscribe("u1", "ctx-1", "C")

        listed = await subscriptions.list_subscriptions("u1")

        assert [s.type_id for s in listed] == ["ctx-1", "dom-1", "prod-1"]
        assert listed[0].type is SubscriptionType.CONTEXT
        assert listed[-1].subscribed_at == "2025-03-01T12:00:00Z"

    @pytest.mark.asyncio
    async def test_invalid_type(self, store, subscriptions):
        await store.initialize_registry(REGISTRY)

        with pytest.raises(InvalidEnumError):
            await subscriptions.subscribe("u1", "x", "S")
        with pytest.raises(InvalidEnumError):
            await subscriptions.is_subscribed("u1", "x", "product")

    @pytest.mark.asyncio
    async def test_check_constraint_rejects_raw_insert(self, store):
        await store.initialize_registry(REGISTRY, groups=["subscriptions"])

        with store.connect(REGISTRY) as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO subscriptions (id, type_id, type, created_at) "
                    "VALUES ('s1', 'x', 'S', '2025-01-01T00:00:00Z')"
                )

    @pytest.mark.asyncio
    async def test_without_tables(self, store, subscriptions):
        await store.initialize_registry(REGISTRY, groups=["change_log"])

        with pytest.raises(NotInitializedError):
            await subscriptions.subscribe("u1", "prod-1", "P")
        with pytest.raises(NotInitializedError):
            await subscriptions.unsubscribe("u1", "prod-1", "P")
        assert await subscriptions.is_subscribed("u1", "prod-1", "P") is False
        assert await subscriptions.list_subscriptions("u1") == []
        assert await subscriptions.list_subscribed_user_ids("prod-1", "P") == []
