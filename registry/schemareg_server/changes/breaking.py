"""
Heuristic breaking-change classifier.

This is not a schema-diff engine: it trusts diff fields computed by whoever
recorded the change (removedFields, addedRequiredFields, changedFieldTypes)
and adds one rule of its own, a major semantic-version bump on a schema
version.

Invariants:
    - Pure function, no I/O
    - Only schema and schema_version changes can be breaking
    - Both ``before`` and ``after`` must be present; an empty mapping counts
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .types import ChangeData, EntityType

_DIFF_FIELDS = ("removedFields", "addedRequiredFields", "changedFieldTypes")


def major_version(version: Any) -> int:
    """First dot-separated segment of a semantic version, 0 if unparseable."""
    if not isinstance(version, str):
        return 0
    head = version.strip().split(".")[0]
    try:
        return int(head)
    except ValueError:
        return 0


def is_breaking_change(
    entity_type: EntityType | str,
    change_data: ChangeData | Mapping[str, Any] | None,
) -> bool:
    """Classify a recorded change as breaking or not.

    Args:
        entity_type: Kind of entity that changed
        change_data: Recorded payload with before/after and diff fields

    Returns:
        True if any breaking rule matches
    """
    entity_type = EntityType.parse(entity_type)
    if entity_type not in (EntityType.SCHEMA, EntityType.SCHEMA_VERSION):
        return False

    data = ChangeData.coerce(change_data)
    if data.before is None or data.after is None:
        return False

    for name in _DIFF_FIELDS:
        if data.extra.get(name):
            return True

    if entity_type is EntityType.SCHEMA_VERSION and isinstance(data.after, Mapping):
        after_version = data.after.get("semanticVersion")
        if after_version:
            before_version = "0.0.0"
            if isinstance(data.before, Mapping):
                before_version = data.before.get("semanticVersion") or "0.0.0"
            if major_version(after_version) > major_version(before_version):
                return True

    return False
