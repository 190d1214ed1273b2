"""
Change recorder: the append-only write path of the change log.

Every entity mutation in the registry ends with one call to
``ChangeRecorder.record_change``. The recorder validates its input, appends
exactly one row to ``global_change_tracker`` and then lets the retention
manager prune expired rows.

Invariants:
    - One row per call, no batching or merging
    - Ids are fresh UUIDv4 strings, timestamps second-precision UTC
    - A missing change log is a soft failure, never an exception
    - Cleanup runs after the append and never changes the result

How to change safely:
    - Keep malformed enum values and non-JSON payloads as hard errors
    - Keep storage failures soft so entity mutations always complete
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from typing import Any

from ..config import RetentionConfig
from ..errors import ValidationError
from ..store.registry_store import RegistryStore, probe_tables
from ..timeutil import Clock, IdFactory, format_timestamp, new_id, utc_now
from .retention import RetentionManager
from .types import ChangeData, ChangeType, EntityType, RecordResult

logger = logging.getLogger(__name__)

NOT_INITIALIZED_MESSAGE = "Change tracking table not initialized"


def serialize_change_data(change_data: ChangeData | Mapping[str, Any] | None) -> str:
    """Encode a change payload as JSON.

    Raises:
        ValidationError: If the payload is not JSON-serializable
    """
    data = ChangeData.coerce(change_data)
    try:
        return json.dumps(data.to_dict(), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"change_data is not JSON-serializable: {e}",
            field_name="change_data",
            errors=[str(e)],
        ) from e


class ChangeRecorder:
    """Appends change records for one registry.

    Example:
        >>> recorder = ChangeRecorder(store, "acme")
        >>> result = await recorder.record_change(
        ...     "domain", domain_id, "Billing", "updated",
        ...     {"before": {"name": "Bill"}, "after": {"name": "Billing"}},
        ... )
        >>> result.success
        True
    """

    def __init__(
        self,
        store: RegistryStore,
        registry_id: str,
        retention: RetentionManager | None = None,
        retention_config: RetentionConfig | None = None,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_id,
    ) -> None:
        self.store = store
        self.registry_id = registry_id
        self.retention_config = retention_config or RetentionConfig()
        self.retention = retention or RetentionManager(
            store, registry_id, self.retention_config, clock=clock
        )
        self._clock = clock
        self._new_id = id_factory

    async def record_change(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        entity_name: str | None,
        change_type: ChangeType | str,
        change_data: ChangeData | Mapping[str, Any] | None = None,
        changed_by_user_id: str | None = None,
    ) -> RecordResult:
        """Append one change record.

        Args:
            entity_type: Kind of entity that changed
            entity_id: Identifier of the entity
            entity_name: Display name at the time of the change
            change_type: created, updated or deleted
            change_data: Before/after payload plus enrichment fields
            changed_by_user_id: Acting user, None for system changes

        Returns:
            RecordResult; success=False when the change log is unavailable

        Raises:
            InvalidEnumError: If entity_type or change_type is unknown
            ValidationError: If change_data is not an object or not JSON-serializable
        """
        entity_type = EntityType.parse(entity_type)
        change_type = ChangeType.parse(change_type)
        data = ChangeData.coerce(change_data)
        payload = serialize_change_data(data)

        change_id = self._new_id()
        created_at = format_timestamp(self._clock())

        try:
            with self.store.connect(self.registry_id) as conn:
                if not probe_tables(conn).has_change_log:
                    logger.info(
                        "Change tracking table not initialized, skipping change record",
                        extra={
                            "registry_id": self.registry_id,
                            "entity_type": entity_type.value,
                            "entity_id": entity_id,
                        },
                    )
                    return RecordResult(success=False, error=NOT_INITIALIZED_MESSAGE)

                conn.execute(
                    """
                    INSERT INTO global_change_tracker (
                        id, entity_type, entity_id, entity_name, change_type,
                        change_data, changed_by_user_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        change_id,
                        entity_type.value,
                        entity_id,
                        entity_name,
                        change_type.value,
                        payload,
                        changed_by_user_id,
                        created_at,
                    ),
                )
        except sqlite3.Error as e:
            logger.error(
                f"Failed to record change: {e}",
                extra={
                    "registry_id": self.registry_id,
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                },
            )
            return RecordResult(success=False, error=str(e))

        logger.debug(
            f"Recorded {entity_type.value} {change_type.value}",
            extra={"registry_id": self.registry_id, "change_id": change_id},
        )

        if self.retention_config.cleanup_on_write:
            await self.retention.cleanup_old_changes()

        return RecordResult(success=True, change_id=change_id)
