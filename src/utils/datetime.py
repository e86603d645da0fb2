# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the school directory backend.

All timestamps are stored in UTC and all Python datetimes are
timezone-aware, so naive/aware mixing never happens. Workflow rows,
audit entries and backups all take their timestamps from here.

Usage:
------
    from src.utils.datetime import utc_now

    # For SQLAlchemy model defaults
    created_at = mapped_column(DateTime(timezone=True), default=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def epoch_millis(dt: datetime | None = None) -> int:
    """Milliseconds since the Unix epoch.

    Args:
        dt: Datetime to convert, defaults to now.

    Returns:
        Integer milliseconds.
    """
    dt = ensure_utc(dt) or utc_now()
    return int(dt.timestamp() * 1000)


def filename_timestamp(dt: datetime | None = None) -> str:
    """ISO timestamp with ':' and '.' replaced, safe for ids and file names.

    Args:
        dt: Datetime to format, defaults to now.

    Returns:
        String such as ``2026-06-30T12-00-00-000000+00-00``.
    """
    dt = ensure_utc(dt) or utc_now()
    return dt.isoformat().replace(":", "-").replace(".", "-")
