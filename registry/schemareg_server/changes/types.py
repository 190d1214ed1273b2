"""
Value types for the change notification engine.

Enumerations are closed: every string coming from a caller goes through
``parse()`` and is rejected with InvalidEnumError before it reaches SQL.

Dict renderings (``to_dict``) use the keys the registry API has always
returned (``totalChanges``, ``schema_versions``, ``isBreakingChange``...),
so persisted ``change_data`` and API payloads stay compatible.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidEnumError, ValidationError


class _ParsableEnum(Enum):
    """Enum with a validating constructor for untrusted input."""

    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidEnumError(cls.__name__, value, [m.value for m in cls]) from None


class SubscriptionType(_ParsableEnum):
    """Subscribable levels of the hierarchy."""

    PRODUCT = "P"
    DOMAIN = "D"
    CONTEXT = "C"

    @property
    def entity_type(self) -> EntityType:
        return _LEVEL_ENTITY[self]


class EntityType(_ParsableEnum):
    """Entity kinds that produce change records."""

    PRODUCT = "product"
    DOMAIN = "domain"
    CONTEXT = "context"
    SCHEMA = "schema"
    SCHEMA_VERSION = "schema_version"

    @property
    def summary_key(self) -> str:
        """Plural key used in ChangesSummary payloads."""
        return _SUMMARY_KEYS[self]

    @property
    def subscription_type(self) -> SubscriptionType | None:
        """Level at which this entity can be subscribed to directly, if any."""
        return _ENTITY_LEVEL.get(self)


class ChangeType(_ParsableEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EmailDigestFrequency(_ParsableEnum):
    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"


class VisibilityMode(Enum):
    """How change visibility is decided for a query.

    SUBSCRIPTIONS applies the hierarchical subscription filter. ALL_CHANGES is
    the legacy behavior used while subscription tables are not provisioned:
    every change is shown to every user. NONE hides everything in that state.
    """

    SUBSCRIPTIONS = "subscriptions"
    ALL_CHANGES = "all_changes"
    NONE = "none"


_SUMMARY_KEYS = {
    EntityType.PRODUCT: "products",
    EntityType.DOMAIN: "domains",
    EntityType.CONTEXT: "contexts",
    EntityType.SCHEMA: "schemas",
    EntityType.SCHEMA_VERSION: "schema_versions",
}

_ENTITY_LEVEL = {
    EntityType.PRODUCT: SubscriptionType.PRODUCT,
    EntityType.DOMAIN: SubscriptionType.DOMAIN,
    EntityType.CONTEXT: SubscriptionType.CONTEXT,
}

_LEVEL_ENTITY = {level: entity for entity, level in _ENTITY_LEVEL.items()}

_CORE_KEYS = ("before", "after")


@dataclass
class ChangeData:
    """Structured change payload.

    Attributes:
        before: Entity state before the mutation (absent for creations)
        after: Entity state after the mutation (absent for deletions)
        extra: Enrichment fields kept verbatim (schemaName, removedFields, ...)
        explicit_nulls: Core keys the caller sent as null, kept on output
    """

    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    explicit_nulls: frozenset[str] = field(default_factory=frozenset, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ChangeData:
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"change_data must be an object, got {type(data).__name__}",
                field_name="change_data",
            )
        data = dict(data)
        nulls = frozenset(key for key in _CORE_KEYS if key in data and data[key] is None)
        return cls(
            before=data.pop("before", None),
            after=data.pop("after", None),
            extra=data,
            explicit_nulls=nulls,
        )

    @classmethod
    def coerce(cls, value: ChangeData | Mapping[str, Any] | None) -> ChangeData:
        if isinstance(value, ChangeData):
            return value
        return cls.from_dict(value)

    def get(self, key: str, default: Any = None) -> Any:
        if key in _CORE_KEYS:
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in _CORE_KEYS:
            value = getattr(self, key)
            if value is not None or key in self.explicit_nulls:
                result[key] = value
        result.update(self.extra)
        return result


@dataclass(frozen=True)
class ChangeRecord:
    """Immutable change log entry.

    Attributes:
        id: Change identifier (UUID)
        entity_type: Kind of entity that changed
        entity_id: Identifier of the entity that changed
        entity_name: Display name at the time of the change
        change_type: created, updated or deleted
        change_data: Before/after payload plus enrichment
        changed_by_user_id: Acting user, None for system changes
        created_at: Second-precision UTC timestamp string
    """

    id: str
    entity_type: EntityType
    entity_id: str
    entity_name: str | None
    change_type: ChangeType
    change_data: ChangeData
    changed_by_user_id: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "entityName": self.entity_name,
            "changeType": self.change_type.value,
            "changeData": self.change_data.to_dict(),
            "changedByUserId": self.changed_by_user_id,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class DetailedChange(ChangeRecord):
    """Change record enriched for display."""

    changed_by_user_name: str | None = None
    changed_by_user_email: str | None = None
    is_breaking_change: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "changedByUserName": self.changed_by_user_name,
                "changedByUserEmail": self.changed_by_user_email,
                "isBreakingChange": self.is_breaking_change,
            }
        )
        return result


@dataclass(frozen=True)
class Subscription:
    """A subscription target as seen by one user.

    Attributes:
        id: Subscription (target) identifier
        type_id: Product, Domain or Context id
        type: Subscription level
        created_at: When the target row was first created
        subscribed_at: When this user subscribed
    """

    id: str
    type_id: str
    type: SubscriptionType
    created_at: str
    subscribed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "typeId": self.type_id,
            "type": self.type.value,
            "createdAt": self.created_at,
            "subscribedAt": self.subscribed_at,
        }


@dataclass(frozen=True)
class UserChangeView:
    id: str
    user_id: str
    change_id: str
    viewed_at: str


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-user notification settings."""

    retention_days: int = 30
    show_breaking_changes_only: bool = False
    email_digest_frequency: EmailDigestFrequency = EmailDigestFrequency.WEEKLY
    real_time_notifications: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NotificationPreferences:
        defaults = cls()
        return cls(
            retention_days=int(data.get("retentionDays", defaults.retention_days)),
            show_breaking_changes_only=bool(
                data.get("showBreakingChangesOnly", defaults.show_breaking_changes_only)
            ),
            email_digest_frequency=EmailDigestFrequency.parse(
                data.get("emailDigestFrequency", defaults.email_digest_frequency)
            ),
            real_time_notifications=bool(
                data.get("realTimeNotifications", defaults.real_time_notifications)
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "retentionDays": self.retention_days,
            "showBreakingChangesOnly": self.show_breaking_changes_only,
            "emailDigestFrequency": self.email_digest_frequency.value,
            "realTimeNotifications": self.real_time_notifications,
        }


@dataclass
class EntityChangeCounts:
    new: int = 0
    updated: int = 0
    deleted: int = 0

    def add(self, change_type: ChangeType, count: int) -> None:
        if change_type is ChangeType.CREATED:
            self.new += count
        elif change_type is ChangeType.UPDATED:
            self.updated += count
        else:
            self.deleted += count

    def to_dict(self) -> dict[str, int]:
        return {"new": self.new, "updated": self.updated, "deleted": self.deleted}


@dataclass
class ChangesSummary:
    """Unseen change counts for one user, grouped by entity and change type."""

    products: EntityChangeCounts = field(default_factory=EntityChangeCounts)
    domains: EntityChangeCounts = field(default_factory=EntityChangeCounts)
    contexts: EntityChangeCounts = field(default_factory=EntityChangeCounts)
    schemas: EntityChangeCounts = field(default_factory=EntityChangeCounts)
    schema_versions: EntityChangeCounts = field(default_factory=EntityChangeCounts)
    total_changes: int = 0
    visibility_mode: VisibilityMode = VisibilityMode.SUBSCRIPTIONS

    def counts_for(self, entity_type: EntityType) -> EntityChangeCounts:
        return getattr(self, entity_type.summary_key)

    def add(self, entity_type: EntityType, change_type: ChangeType, count: int) -> None:
        self.counts_for(entity_type).add(change_type, count)
        self.total_changes += count

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            entity_type.summary_key: self.counts_for(entity_type).to_dict()
            for entity_type in EntityType
        }
        result["totalChanges"] = self.total_changes
        return result


@dataclass(frozen=True)
class RecordResult:
    """Outcome of recording a change.

    A failed result is a soft failure: the caller logs it and carries on
    with the entity mutation.
    """

    success: bool
    change_id: str | None = None
    error: str | None = None
