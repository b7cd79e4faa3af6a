"""Per-user activity stats: today, this ISO week, following count."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.config import get_settings
from showcase.db.models import Activity
from showcase.errors import StatsUnavailableError
from showcase.social import follow_service
from showcase.social.week_utils import get_week_start, localize, start_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityStatsSnapshot:
    today: int
    this_week: int
    following: int


async def _compute(db: AsyncSession, user_id: str, now: datetime) -> ActivityStatsSnapshot:
    day_start = start_of_day(now)
    week_start = get_week_start(now)

    # The week always starts on or before today, so one scan from Monday covers both windows.
    result = await db.execute(
        select(
            func.count(Activity.id).label("this_week"),
            func.count(case((Activity.created_at >= day_start, Activity.id))).label("today"),
        ).where(
            Activity.actor_id == user_id,
            Activity.created_at >= week_start,
        )
    )
    row = result.one()
    follow_stats = await follow_service.get_stats(db, user_id)
    return ActivityStatsSnapshot(
        today=row.today or 0,
        this_week=row.this_week or 0,
        following=follow_stats.following_count,
    )


async def get_activity_stats(
    db: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> ActivityStatsSnapshot:
    """Compute the stats snapshot for ``user_id`` at ``now``.

    ``now`` defaults to the current time; naive values are read in the
    configured ``stats_timezone``. Day and week boundaries are computed in
    ``now``'s timezone.

    Raises:
        StatsUnavailableError: The activity store timed out or failed. A
            failure is never reported as zero activity.
    """
    settings = get_settings()
    if now is None:
        now = datetime.now(ZoneInfo(settings.stats_timezone))
    now = localize(now, settings.stats_timezone)

    timeout = settings.stats_query_timeout_seconds
    try:
        return await asyncio.wait_for(_compute(db, user_id, now), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("Stats query for %s timed out after %.1fs", user_id, timeout)
        raise StatsUnavailableError("Stats temporarily unavailable, please retry") from e
    except SQLAlchemyError as e:
        logger.exception("Stats query for %s failed", user_id)
        raise StatsUnavailableError("Stats temporarily unavailable, please retry") from e
