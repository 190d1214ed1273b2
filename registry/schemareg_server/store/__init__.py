"""
Store module - per-registry SQLite storage.

This module handles:
- One SQLite database per registry instance, created in table groups
- Per-operation table probing for partially provisioned registries
- The entity hierarchy and the user directory used by the change feed
"""

from .registry_store import (
    TABLE_GROUPS,
    RegistryStore,
    TableProbe,
    probe_tables,
)
from .directory import UserDirectory
from .hierarchy import ChangeSink, EntityHierarchyStore

__all__ = [
    "TABLE_GROUPS",
    "RegistryStore",
    "TableProbe",
    "probe_tables",
    "UserDirectory",
    "ChangeSink",
    "EntityHierarchyStore",
]
