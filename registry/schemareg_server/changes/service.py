"""
Change feed facade for one registry instance.

ChangeFeed wires the recorder, subscription registry, visibility resolver,
view tracker, retention manager, preferences and notifier around a single
RegistryStore and registry id. It is also the change sink of its own
EntityHierarchyStore, so hierarchy mutations flow through record_change.

Invariants:
    - Notification intents are emitted only after a successful append
    - Notifier and audience failures are logged and never propagate
    - All components share one clock and one id factory

How to change safely:
    - Keep the facade free of SQL; queries belong to the components
    - Emit new intent types from the facade, not from the components
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..config import RetentionConfig, ServerConfig, VisibilityConfig
from ..store.directory import UserDirectory
from ..store.hierarchy import EntityHierarchyStore
from ..store.registry_store import RegistryStore
from ..timeutil import Clock, IdFactory, new_id, utc_now
from .notifier import (
    USER_SUBSCRIBED,
    USER_UNSUBSCRIBED,
    AudienceResolver,
    InMemoryNotifier,
    IntentFactory,
    NotificationIntent,
    Notifier,
)
from .preferences import PreferencesStore
from .recorder import ChangeRecorder
from .retention import RetentionManager
from .subscriptions import SubscriptionRegistry
from .types import (
    ChangeData,
    ChangesSummary,
    ChangeType,
    DetailedChange,
    EntityType,
    NotificationPreferences,
    RecordResult,
    Subscription,
    SubscriptionType,
)
from .views import ViewStateTracker
from .visibility import VisibilityResolver

logger = logging.getLogger(__name__)


class ChangeFeed:
    """Change notification and subscription engine for one registry.

    Example:
        >>> feed = ChangeFeed(RegistryStore("/tmp/reg"), "acme")
        >>> await feed.subscribe("u1", product_id, "P")
        >>> summary = await feed.get_changes_summary("u1")
        >>> changes = await feed.get_detailed_changes("u1", "domain")
        >>> await feed.mark_changes_as_seen("u1", [c.id for c in changes])
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        retention_config: RetentionConfig | None = None,
        visibility_config: VisibilityConfig | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_id,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self.retention_config = retention_config or RetentionConfig()
        self.visibility_config = visibility_config or VisibilityConfig()
        self.notifier = notifier or InMemoryNotifier()

        self.retention = RetentionManager(store, registry_id, self.retention_config, clock=clock)
        self.recorder = ChangeRecorder(
            store,
            registry_id,
            retention=self.retention,
            retention_config=self.retention_config,
            clock=clock,
            id_factory=id_factory,
        )
        self.subscriptions = SubscriptionRegistry(store, registry_id, clock, id_factory)
        self.views = ViewStateTracker(store, registry_id, clock, id_factory)
        self.visibility = VisibilityResolver(
            store, registry_id, self.visibility_config, self.retention_config, clock=clock
        )
        self.preferences = PreferencesStore(store, registry_id, clock=clock)
        self.users = UserDirectory(store, registry_id, clock, id_factory)
        self.hierarchy = EntityHierarchyStore(
            store, registry_id, change_sink=self, clock=clock, id_factory=id_factory
        )
        self.audience = AudienceResolver(self.hierarchy, self.subscriptions, self.preferences)
        self.intents = IntentFactory(clock=clock)

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        registry_id: str,
        notifier: Notifier | None = None,
    ) -> ChangeFeed:
        store = RegistryStore(
            data_dir=config.storage.data_dir,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            cache_size_pages=config.storage.cache_size_pages,
        )
        return cls(
            store,
            registry_id,
            retention_config=config.retention,
            visibility_config=config.visibility,
            notifier=notifier,
        )

    async def close(self) -> None:
        await self.notifier.close()

    # =========================================================================
    # Write path
    # =========================================================================

    async def record_change(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        entity_name: str | None,
        change_type: ChangeType | str,
        change_data: ChangeData | Mapping[str, Any] | None = None,
        changed_by_user_id: str | None = None,
    ) -> RecordResult:
        """Append a change record and notify its audience.

        Raises:
            InvalidEnumError: If entity_type or change_type is unknown
            ValidationError: If change_data is not JSON-serializable
        """
        entity_type = EntityType.parse(entity_type)
        change_type = ChangeType.parse(change_type)
        data = ChangeData.coerce(change_data)

        result = await self.recorder.record_change(
            entity_type, entity_id, entity_name, change_type, data, changed_by_user_id
        )
        if result.success:
            await self._notify_change(entity_type, entity_id, change_type, data)
        return result

    async def _notify_change(
        self,
        entity_type: EntityType,
        entity_id: str,
        change_type: ChangeType,
        data: ChangeData,
    ) -> None:
        payload = data.after if data.after is not None else data.before
        if not isinstance(payload, Mapping):
            payload = {"id": entity_id}
        try:
            recipients = await self.audience.resolve(entity_type, entity_id)
        except Exception as e:
            logger.warning(
                f"Could not resolve notification audience: {e}",
                extra={"registry_id": self.registry_id, "entity_id": entity_id},
            )
            recipients = []
        await self._emit(
            self.intents.for_change(entity_type, entity_id, change_type, dict(payload), recipients)
        )

    async def _emit(self, intent: NotificationIntent) -> None:
        try:
            await self.notifier.notify(intent)
        except Exception as e:
            logger.error(
                f"Notifier failed: {e}",
                extra={"registry_id": self.registry_id, "intent_type": intent.type},
            )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def subscribe(
        self, user_id: str, type_id: str, subscription_type: SubscriptionType | str
    ) -> str:
        subscription_type = SubscriptionType.parse(subscription_type)
        subscription_id = await self.subscriptions.subscribe(user_id, type_id, subscription_type)
        await self._emit(
            self.intents.for_subscription(
                USER_SUBSCRIBED, user_id, type_id, subscription_type, subscription_id
            )
        )
        return subscription_id

    async def unsubscribe(
        self, user_id: str, type_id: str, subscription_type: SubscriptionType | str
    ) -> None:
        subscription_type = SubscriptionType.parse(subscription_type)
        await self.subscriptions.unsubscribe(user_id, type_id, subscription_type)
        await self._emit(
            self.intents.for_subscription(
                USER_UNSUBSCRIBED, user_id, type_id, subscription_type
            )
        )

    async def is_subscribed(
        self, user_id: str, type_id: str, subscription_type: SubscriptionType | str
    ) -> bool:
        return await self.subscriptions.is_subscribed(user_id, type_id, subscription_type)

    async def list_subscriptions(self, user_id: str) -> list[Subscription]:
        return await self.subscriptions.list_subscriptions(user_id)

    # =========================================================================
    # Read path
    # =========================================================================

    async def get_changes_summary(self, user_id: str) -> ChangesSummary:
        return await self.visibility.get_changes_summary(user_id)

    async def get_detailed_changes(
        self, user_id: str, entity_type: EntityType | str
    ) -> list[DetailedChange]:
        return await self.visibility.get_detailed_changes(user_id, entity_type)

    async def mark_changes_as_seen(self, user_id: str, change_ids: Iterable[str]) -> int:
        return await self.views.mark_seen(user_id, change_ids)

    # =========================================================================
    # Retention and preferences
    # =========================================================================

    async def effective_retention_days(self) -> int:
        return await self.retention.effective_retention_days()

    async def cleanup_old_changes(self) -> int:
        return await self.retention.cleanup_old_changes()

    async def get_notification_preferences(self, user_id: str) -> NotificationPreferences:
        return await self.preferences.get_preferences(user_id)

    async def update_notification_preferences(
        self,
        user_id: str,
        preferences: NotificationPreferences | Mapping[str, Any],
    ) -> NotificationPreferences:
        return await self.preferences.update_preferences(user_id, preferences)
