"""
Timestamp and identifier helpers shared by every change-tracking table.

All persisted timestamps are UTC ISO-8601 strings with second precision and
an explicit "Z" suffix (``2025-03-01T12:00:00Z``). Because the format is fixed
width, lexicographic comparison in SQL matches chronological order, which the
retention window and ``ORDER BY created_at`` rely on.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return truncate(datetime.now(tz=timezone.utc))


def truncate(moment: datetime) -> datetime:
    """Drop sub-second precision, normalizing naive values to UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


def format_timestamp(moment: datetime) -> str:
    return truncate(moment).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def cutoff_timestamp(now: datetime, days: int) -> str:
    """Timestamp ``days`` before ``now``; rows older than this are out of window."""
    return format_timestamp(now - timedelta(days=days))


def new_id() -> str:
    return str(uuid.uuid4())
