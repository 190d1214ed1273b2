"""
Notification intents and best-effort delivery.

After a change is recorded (or a subscription changes) the change feed
builds a NotificationIntent and hands it to a Notifier. Delivery is
best-effort: a notifier never raises, and a lost notification never affects
the change log, which remains the source of truth for summaries.

Notifiers:
    - InMemoryNotifier: collects intents, used by tests and tooling
    - HttpPushNotifier: POSTs JSON to a real-time relay room

Invariants:
    - notify() never raises
    - Recipients are resolved with the same inheritance rule as visibility
    - Users with realTimeNotifications disabled are not recipients
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from ..config import PushConfig
from ..timeutil import Clock, format_timestamp, utc_now
from .types import ChangeType, EntityType, SubscriptionType

if TYPE_CHECKING:
    from ..store.hierarchy import EntityHierarchyStore
    from .preferences import PreferencesStore
    from .subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)

SOURCE = "durable-object"
SUBSCRIPTION_ENTITY = "subscription"
USER_SUBSCRIBED = "user_subscribed"
USER_UNSUBSCRIBED = "user_unsubscribed"


def change_intent_type(entity_type: EntityType, change_type: ChangeType) -> str:
    """Intent type for an entity change, e.g. ``domain_updated``."""
    return f"{entity_type.value}_{change_type.value}"


@dataclass(frozen=True)
class NotificationIntent:
    """A message for the real-time relay.

    Attributes:
        type: ``<entity>_<created|updated|deleted>``, ``user_subscribed``
            or ``user_unsubscribed``
        entity_id: Entity the intent is about
        entity_type: Entity kind
        data: Payload forwarded to clients
        timestamp: When the intent was created
        source: Producer identifier
        recipients: Users that should be told, empty when unknown
    """

    type: str
    entity_id: str
    entity_type: str
    data: dict[str, Any]
    timestamp: str
    source: str = SOURCE
    recipients: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "entityId": self.entity_id,
            "entityType": self.entity_type,
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
            "recipients": list(self.recipients),
        }


@runtime_checkable
class Notifier(Protocol):
    """Delivers notification intents."""

    @abstractmethod
    async def notify(self, intent: NotificationIntent) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class InMemoryNotifier:
    """Collects intents in a list."""

    def __init__(self) -> None:
        self.intents: list[NotificationIntent] = []

    async def notify(self, intent: NotificationIntent) -> None:
        self.intents.append(intent)

    async def close(self) -> None:
        pass

    def of_type(self, intent_type: str) -> list[NotificationIntent]:
        return [intent for intent in self.intents if intent.type == intent_type]

    def clear(self) -> None:
        self.intents.clear()


class HttpPushNotifier:
    """POSTs intents to ``{base}/parties/main/{tenant}-{registry}``.

    Example:
        >>> notifier = HttpPushNotifier(PushConfig(host="relay.example.com"))
        >>> await notifier.notify(intent)
        >>> await notifier.close()
    """

    def __init__(
        self,
        config: PushConfig,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.endpoint = config.endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds, transport=transport
        )
        self.delivered = 0
        self.failed = 0

    async def notify(self, intent: NotificationIntent) -> None:
        try:
            response = await self._client.post(self.endpoint, json=intent.to_dict())
        except httpx.HTTPError as e:
            self.failed += 1
            logger.error(
                f"Error notifying push relay: {e}",
                extra={"endpoint": self.endpoint, "intent_type": intent.type},
            )
            return

        if response.is_success:
            self.delivered += 1
        else:
            self.failed += 1
            logger.error(
                f"Failed to notify push relay: {response.status_code} {response.reason_phrase}",
                extra={"endpoint": self.endpoint, "intent_type": intent.type},
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class AudienceResolver:
    """Finds the users who should be told about a change.

    Walks from the changed entity up to its product and collects the
    subscribers of every product, domain and context on the way.
    """

    def __init__(
        self,
        hierarchy: EntityHierarchyStore,
        subscriptions: SubscriptionRegistry,
        preferences: PreferencesStore,
    ) -> None:
        self.hierarchy = hierarchy
        self.subscriptions = subscriptions
        self.preferences = preferences

    async def ancestry(
        self, entity_type: EntityType, entity_id: str
    ) -> list[tuple[EntityType, str]]:
        """The entity followed by its ancestors, nearest first."""
        chain = [(entity_type, entity_id)]
        parents = {
            EntityType.SCHEMA_VERSION: EntityType.SCHEMA,
            EntityType.SCHEMA: EntityType.CONTEXT,
            EntityType.CONTEXT: EntityType.DOMAIN,
            EntityType.DOMAIN: EntityType.PRODUCT,
        }
        current_type, current_id = entity_type, entity_id
        while current_type in parents:
            parent_id = await self.hierarchy.parent_of(current_type, current_id)
            if parent_id is None:
                break
            current_type, current_id = parents[current_type], parent_id
            chain.append((current_type, current_id))
        return chain

    async def resolve(self, entity_type: EntityType | str, entity_id: str) -> list[str]:
        entity_type = EntityType.parse(entity_type)
        recipients: dict[str, None] = {}
        for level_type, level_id in await self.ancestry(entity_type, entity_id):
            level = level_type.subscription_type
            if level is None:
                continue
            for user_id in await self.subscriptions.list_subscribed_user_ids(level_id, level):
                recipients.setdefault(user_id)

        audience = []
        for user_id in recipients:
            preferences = await self.preferences.get_preferences(user_id)
            if preferences.real_time_notifications:
                audience.append(user_id)
        return audience


@dataclass
class IntentFactory:
    """Builds timestamped intents."""

    clock: Clock = field(default=utc_now)

    def for_change(
        self,
        entity_type: EntityType,
        entity_id: str,
        change_type: ChangeType,
        data: dict[str, Any],
        recipients: list[str],
    ) -> NotificationIntent:
        return NotificationIntent(
            type=change_intent_type(entity_type, change_type),
            entity_id=entity_id,
            entity_type=entity_type.value,
            data=data,
            timestamp=format_timestamp(self.clock()),
            recipients=tuple(recipients),
        )

    def for_subscription(
        self,
        intent_type: str,
        user_id: str,
        type_id: str,
        subscription_type: SubscriptionType,
        subscription_id: str | None = None,
    ) -> NotificationIntent:
        data: dict[str, Any] = {"userId": user_id, "subscriptionType": subscription_type.value}
        if subscription_id is not None:
            data["subscriptionId"] = subscription_id
        return NotificationIntent(
            type=intent_type,
            entity_id=type_id,
            entity_type=SUBSCRIPTION_ENTITY,
            data=data,
            timestamp=format_timestamp(self.clock()),
            recipients=(user_id,),
        )
