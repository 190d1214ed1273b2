"""
Schema Registry Server - change notification and subscription engine.

This package implements the change-tracking core of a hierarchical schema
registry (Product -> Domain -> Context -> Schema -> SchemaVersion):
- An append-only change log written for every entity mutation
- Subscriptions to Products, Domains and Contexts, inherited by descendants
- Per-user "seen" state and unseen-change summaries
- Retention-based cleanup piggybacked on the write path
- A heuristic breaking-change classifier

Architecture:
    ┌──────────────┐     ┌────────────────┐     ┌──────────────────────┐
    │ Entity CRUD  │────▶│ ChangeRecorder │────▶│ global_change_tracker│
    │ (hierarchy)  │     └───────┬────────┘     └──────────┬───────────┘
    └──────────────┘             │                         │
                                 ▼                         ▼
                        ┌────────────────┐     ┌──────────────────────┐
                        │ RetentionMgr   │     │ VisibilityResolver   │
                        └────────────────┘     │ + ViewStateTracker   │
                                               └──────────┬───────────┘
                                                          ▼
                                               summaries / detail lists

Invariants:
    - One SQLite file per registry instance
    - Change records are immutable and removed only by retention
    - Change-tracking failures never abort the entity mutation being recorded
    - Table presence is probed on every operation, never cached

How to change safely:
    - Keep read paths tolerant of missing tables
    - Keep the visibility predicate a single SQL expression
    - Never tighten the retention floor below the configured minimum
"""

from ._version import __version__
from .changes import ChangeFeed
from .config import ServerConfig
from .store import RegistryStore

__all__ = ["__version__", "ChangeFeed", "RegistryStore", "ServerConfig"]
