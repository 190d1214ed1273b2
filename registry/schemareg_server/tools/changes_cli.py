"""
Change feed CLI for registry administration.

This tool inspects and maintains the change feed of one registry database:
- init: Create table groups (all by default)
- record: Append a change record
- summary / changes: Show a user's unseen changes
- mark-seen: Mark changes as seen
- subscribe / unsubscribe: Manage subscriptions
- retention / cleanup: Show the retention window, purge expired changes

Usage:
    schemareg-changes --data-dir /var/lib/schemareg --registry acme init
    schemareg-changes --registry acme subscribe --user u1 --type P --type-id <product>
    schemareg-changes --registry acme summary --user u1
    schemareg-changes --registry acme changes --user u1 --entity-type domain

Invariants:
    - Output is JSON on stdout
    - Hard errors print a JSON error on stderr and exit non-zero
    - Only init creates a registry database

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..changes import ChangeFeed
from ..config import RetentionConfig, ServerConfig, StorageConfig, VisibilityConfig
from ..errors import ChangeFeedError, RegistryNotFoundError, ValidationError
from ..store.registry_store import TABLE_GROUPS, RegistryStore

logger = logging.getLogger(__name__)


class ChangesCLI:
    """Runs change feed commands against one registry.

    Example:
        >>> cli = ChangesCLI(RegistryStore("/tmp/reg"), "acme")
        >>> await cli.init()
        >>> await cli.summary("u1")
        {'products': {...}, 'totalChanges': 0, 'visibilityMode': 'subscriptions'}
    """

    def __init__(self, store: RegistryStore, registry_id: str, config: ServerConfig | None = None):
        self.store = store
        self.registry_id = registry_id
        self.config = config or ServerConfig()

    async def _feed(self) -> ChangeFeed:
        if not await self.store.registry_exists(self.registry_id):
            raise RegistryNotFoundError(self.registry_id)
        return ChangeFeed(
            self.store,
            self.registry_id,
            retention_config=self.config.retention,
            visibility_config=self.config.visibility,
        )

    async def init(self, groups: list[str] | None = None) -> dict[str, Any]:
        await self.store.initialize_registry(self.registry_id, groups)
        probe = await self.store.probe(self.registry_id)
        return {
            "registryId": self.registry_id,
            "path": str(self.store.get_db_path(self.registry_id)),
            "tables": sorted(probe.tables),
        }

    async def record(
        self,
        entity_type: str,
        entity_id: str,
        entity_name: str | None,
        change_type: str,
        change_data: dict[str, Any],
        user_id: str | None,
    ) -> dict[str, Any]:
        feed = await self._feed()
        result = await feed.record_change(
            entity_type, entity_id, entity_name, change_type, change_data, user_id
        )
        return {"success": result.success, "changeId": result.change_id, "error": result.error}

    async def summary(self, user_id: str) -> dict[str, Any]:
        feed = await self._feed()
        summary = await feed.get_changes_summary(user_id)
        result = summary.to_dict()
        result["visibilityMode"] = summary.visibility_mode.value
        return result

    async def changes(self, user_id: str, entity_type: str) -> list[dict[str, Any]]:
        feed = await self._feed()
        return [change.to_dict() for change in await feed.get_detailed_changes(user_id, entity_type)]

    async def mark_seen(self, user_id: str, change_ids: list[str]) -> dict[str, Any]:
        feed = await self._feed()
        marked = await feed.mark_changes_as_seen(user_id, change_ids)
        return {"marked": marked}

    async def subscribe(self, user_id: str, subscription_type: str, type_id: str) -> dict[str, Any]:
        feed = await self._feed()
        subscription_id = await feed.subscribe(user_id, type_id, subscription_type)
        return {"subscriptionId": subscription_id}

    async def unsubscribe(self, user_id: str, subscription_type: str, type_id: str) -> dict[str, Any]:
        feed = await self._feed()
        await feed.unsubscribe(user_id, type_id, subscription_type)
        return {"unsubscribed": True}

    async def retention(self) -> dict[str, Any]:
        feed = await self._feed()
        return {"retentionDays": await feed.effective_retention_days()}

    async def cleanup(self) -> dict[str, Any]:
        feed = await self._feed()
        return {"deleted": await feed.cleanup_old_changes()}


def build_parser() -> argparse.ArgumentParser:
    storage = StorageConfig.from_env()
    parser = argparse.ArgumentParser(
        prog="schemareg-changes", description="Schema registry change feed tool"
    )
    parser.add_argument("--data-dir", default=storage.data_dir, help="Registry database directory")
    parser.add_argument("--registry", required=True, help="Registry id")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create registry tables")
    init_parser.add_argument(
        "--group",
        action="append",
        choices=TABLE_GROUPS,
        help="Table group to create (repeatable, default: all)",
    )

    record_parser = subparsers.add_parser("record", help="Append a change record")
    record_parser.add_argument("--entity-type", required=True)
    record_parser.add_argument("--entity-id", required=True)
    record_parser.add_argument("--entity-name")
    record_parser.add_argument("--change-type", required=True)
    record_parser.add_argument("--data", default="{}", help="Change data as JSON")
    record_parser.add_argument("--user", help="Acting user id")

    summary_parser = subparsers.add_parser("summary", help="Show unseen change counts")
    summary_parser.add_argument("--user", required=True)

    changes_parser = subparsers.add_parser("changes", help="List unseen changes")
    changes_parser.add_argument("--user", required=True)
    changes_parser.add_argument("--entity-type", required=True)

    seen_parser = subparsers.add_parser("mark-seen", help="Mark changes as seen")
    seen_parser.add_argument("--user", required=True)
    seen_parser.add_argument("change_ids", nargs="+")

    for name in ("subscribe", "unsubscribe"):
        sub_parser = subparsers.add_parser(name, help=f"{name.capitalize()} a user")
        sub_parser.add_argument("--user", required=True)
        sub_parser.add_argument("--type", required=True, help="P, D or C")
        sub_parser.add_argument("--type-id", required=True)

    subparsers.add_parser("retention", help="Show the effective retention window")
    subparsers.add_parser("cleanup", help="Purge changes outside the retention window")

    return parser


async def _run(args: argparse.Namespace) -> Any:
    config = ServerConfig(
        retention=RetentionConfig.from_env(),
        visibility=VisibilityConfig.from_env(),
    )
    store = RegistryStore(args.data_dir)
    cli = ChangesCLI(store, args.registry, config)

    if args.command == "init":
        return await cli.init(args.group)
    if args.command == "record":
        try:
            data = json.loads(args.data)
        except json.JSONDecodeError as e:
            raise ValidationError(f"--data is not valid JSON: {e}", field_name="data") from e
        return await cli.record(
            args.entity_type, args.entity_id, args.entity_name, args.change_type, data, args.user
        )
    if args.command == "summary":
        return await cli.summary(args.user)
    if args.command == "changes":
        return await cli.changes(args.user, args.entity_type)
    if args.command == "mark-seen":
        return await cli.mark_seen(args.user, args.change_ids)
    if args.command == "subscribe":
        return await cli.subscribe(args.user, args.type, args.type_id)
    if args.command == "unsubscribe":
        return await cli.unsubscribe(args.user, args.type, args.type_id)
    if args.command == "retention":
        return await cli.retention()
    return await cli.cleanup()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        output = asyncio.run(_run(args))
    except ChangeFeedError as e:
        logger.debug(f"Command {args.command} failed: {e.code}")
        print(json.dumps({"error": e.message, "code": e.code, "details": e.details}), file=sys.stderr)
        return 1
    print(json.dumps(output, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
