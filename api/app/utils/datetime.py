"""Datetime helpers for calendar-month arithmetic and UTC normalization."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_tz_aware(dt: datetime | None) -> datetime | None:
    """Normalize DB-loaded timestamps to UTC to avoid naive/aware comparisons in SQLite tests."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def months_between(earlier: datetime, later: datetime) -> int:
    """Count calendar-month boundaries crossed, ignoring the day of month."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def utc_month_range(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC bounds of the calendar month containing ``now``."""
    now = ensure_tz_aware(now) or utcnow()
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end
