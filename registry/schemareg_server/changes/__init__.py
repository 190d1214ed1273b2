"""
Changes module - change log, subscriptions and per-user change views.

This module handles:
- Appending change records for every entity mutation
- Product/Domain/Context subscriptions with hierarchical inheritance
- Unseen-change summaries and detail lists per user
- Retention cleanup and breaking-change classification
- Notification preferences and best-effort push notifications

Invariants:
    - Change records are immutable; only retention removes them
    - Read paths degrade when tables are missing, they never fail
    - Visibility is decided by one SQL predicate per query

How to change safely:
    - Extend the hierarchy through visibility.PARENT_LINKS
    - Keep enum parsing at the component boundary
"""

from .types import (
    ChangeData,
    ChangeRecord,
    ChangesSummary,
    ChangeType,
    DetailedChange,
    EmailDigestFrequency,
    EntityChangeCounts,
    EntityType,
    NotificationPreferences,
    RecordResult,
    Subscription,
    SubscriptionType,
    UserChangeView,
    VisibilityMode,
)
from .breaking import is_breaking_change, major_version
from .retention import RetentionManager
from .recorder import ChangeRecorder
from .subscriptions import SubscriptionRegistry
from .views import ViewStateTracker
from .visibility import PARENT_LINKS, VisibilityResolver, build_visibility_predicate
from .preferences import PreferencesStore
from .notifier import (
    AudienceResolver,
    HttpPushNotifier,
    InMemoryNotifier,
    NotificationIntent,
    Notifier,
)
from .service import ChangeFeed

__all__ = [
    # Types
    "ChangeData",
    "ChangeRecord",
    "ChangesSummary",
    "ChangeType",
    "DetailedChange",
    "EmailDigestFrequency",
    "EntityChangeCounts",
    "EntityType",
    "NotificationPreferences",
    "RecordResult",
    "Subscription",
    "SubscriptionType",
    "UserChangeView",
    "VisibilityMode",
    # Components
    "is_breaking_change",
    "major_version",
    "RetentionManager",
    "ChangeRecorder",
    "SubscriptionRegistry",
    "ViewStateTracker",
    "PARENT_LINKS",
    "VisibilityResolver",
    "build_visibility_predicate",
    "PreferencesStore",
    # Notifications
    "AudienceResolver",
    "HttpPushNotifier",
    "InMemoryNotifier",
    "NotificationIntent",
    "Notifier",
    # Facade
    "ChangeFeed",
]
