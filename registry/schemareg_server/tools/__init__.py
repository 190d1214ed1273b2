"""
CLI tools for schema registry administration.

This module provides command-line tools for:
- changes: Inspect and maintain a registry's change feed

Invariants:
    - Tools work offline (no running server required)
    - Operations are idempotent where possible
"""

from .changes_cli import ChangesCLI

__all__ = ["ChangesCLI"]
