"""Day and ISO-week boundary helpers for activity stats."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo


def localize(now: datetime, default_tz: str) -> datetime:
    """Attach ``default_tz`` to a naive datetime; aware values are kept."""
    if now.tzinfo is None:
        return now.replace(tzinfo=ZoneInfo(default_tz))
    return now


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt (Sunday goes six days back)."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def start_of_day(now: datetime) -> datetime:
    """Local midnight of the day containing ``now`` (aware)."""
    tz: tzinfo | None = now.tzinfo
    return datetime.combine(now.date(), time.min, tzinfo=tz)


def get_week_start(now: datetime) -> datetime:
    """Monday 00:00 local time of the ISO week containing ``now`` (aware)."""
    return datetime.combine(get_monday(now), time.min, tzinfo=now.tzinfo)
