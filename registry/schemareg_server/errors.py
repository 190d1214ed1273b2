"""
Error types for the change notification engine.

This module defines the exceptions returned to callers as hard errors:
- ChangeFeedError: Base exception
- ValidationError / InvalidEnumError: Malformed input
- AlreadySubscribedError / NotSubscribedError: Subscription state conflicts
- NotInitializedError: A write path needs a table that is not provisioned yet
- RegistryNotFoundError: The registry database does not exist

Soft failures (missing tables on read paths, change recording while the
change log is absent, retention cleanup) are logged and never raised.

Invariants:
    - All errors inherit from ChangeFeedError
    - Every error carries a stable code for programmatic handling
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class ChangeFeedError(Exception):
    """Base exception for all change feed errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CHANGE_FEED_ERROR"
        self.details = details or {}


class ValidationError(ChangeFeedError):
    """Input validation failed.

    Raised when:
    - Change data is not JSON-serializable
    - A preference value is out of range
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[list[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class InvalidEnumError(ValidationError):
    """A value is not a member of its closed enumeration.

    Raised for unknown entity types, change types, subscription types
    and digest frequencies.
    """

    def __init__(
        self,
        enum_name: str,
        value: Any,
        allowed: Iterable[str],
    ) -> None:
        allowed = list(allowed)
        super().__init__(
            f"Invalid {enum_name} '{value}'. Must be one of: {', '.join(allowed)}",
            field_name=enum_name,
            errors=[f"allowed: {allowed}"],
        )
        self.enum_name = enum_name
        self.value = value
        self.allowed = allowed


class AlreadySubscribedError(ChangeFeedError):
    """User already holds a subscription to the target."""

    def __init__(self, user_id: str, type_id: str, subscription_type: str) -> None:
        super().__init__(
            "User is already subscribed",
            code="ALREADY_SUBSCRIBED",
            details={"user_id": user_id, "type_id": type_id, "type": subscription_type},
        )


class NotSubscribedError(ChangeFeedError):
    """Unsubscribe removed nothing."""

    def __init__(self, user_id: str, type_id: str, subscription_type: str) -> None:
        super().__init__(
            "User was not subscribed",
            code="NOT_SUBSCRIBED",
            details={"user_id": user_id, "type_id": type_id, "type": subscription_type},
        )


class NotInitializedError(ChangeFeedError):
    """A table required by a write path does not exist yet.

    Raised when:
    - Marking changes as seen without the view-tracking table
    - Subscribing without the subscription tables
    - Updating preferences without the preferences table
    """

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, code="NOT_INITIALIZED", details={"table": table})
        self.table = table


class RegistryNotFoundError(ChangeFeedError):
    """Registry database does not exist."""

    def __init__(self, registry_id: str) -> None:
        super().__init__(
            f"Registry database not found: {registry_id}",
            code="REGISTRY_NOT_FOUND",
            details={"registry_id": registry_id},
        )
        self.registry_id = registry_id
