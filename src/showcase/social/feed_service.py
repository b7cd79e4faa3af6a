"""Personalized activity feed composed from the follow graph.

Pages are keyed by the last seen (created_at, id) pair, never an offset, so
activities inserted while a client is paging neither reappear nor get
skipped on the next page.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.config import get_settings
from showcase.db.models import Activity
from showcase.errors import FeedUnavailableError, ValidationError
from showcase.social import follow_service
from showcase.social.activity_types import ActivityType
from showcase.social.cursors import after, before, decode_cursor, encode_cursor

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KNOWN_TYPES = frozenset(t.value for t in ActivityType)


@dataclass(frozen=True)
class FeedOptions:
    following_only: bool = True
    activity_types: Sequence[str] | None = None
    limit: int | None = None
    cursor: str | None = None


@dataclass
class FeedPage:
    activities: list[Activity] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None


def clamp_limit(limit: int | None) -> int:
    """Apply the default page size and the hard maximum."""
    settings = get_settings()
    if limit is None:
        return settings.feed_default_limit
    if limit < 1:
        msg = "limit must be at least 1"
        raise ValidationError(msg)
    return min(limit, settings.feed_max_limit)


def _check_types(activity_types: Sequence[str] | None) -> list[str] | None:
    if not activity_types:
        return None
    unknown = [t for t in activity_types if t not in _KNOWN_TYPES]
    if unknown:
        msg = f"Unknown activity types: {', '.join(unknown)}"
        raise ValidationError(msg)
    return list(activity_types)


async def _bounded(coro_fn: Callable[[], Awaitable[T]], what: str) -> T:
    """Run a feed query under the configured timeout."""
    timeout = get_settings().feed_query_timeout_seconds
    try:
        return await asyncio.wait_for(coro_fn(), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("%s timed out after %.1fs", what, timeout)
        raise FeedUnavailableError("Feed temporarily unavailable, please retry") from e
    except SQLAlchemyError as e:
        logger.exception("%s failed", what)
        raise FeedUnavailableError("Feed temporarily unavailable, please retry") from e


async def _base_query(
    db: AsyncSession, user_id: str, following_only: bool,
) -> Select[tuple[Activity]] | None:
    """Select public activities, restricted to followed actors in following mode.

    Returns None when the user follows nobody.
    """
    query = select(Activity).where(Activity.is_public.is_(True))
    if following_only:
        following = await follow_service.list_following(db, user_id)
        if not following:
            return None
        query = query.where(Activity.actor_id.in_(following))
    return query


async def compose_feed(db: AsyncSession, user_id: str, options: FeedOptions | None = None) -> FeedPage:
    """Build one page of the feed for ``user_id``.

    Raises:
        ValidationError: Bad limit, cursor or activity type.
        FeedUnavailableError: Database timeout or failure.
    """
    options = options or FeedOptions()
    limit = clamp_limit(options.limit)
    types = _check_types(options.activity_types)
    cursor = decode_cursor(options.cursor) if options.cursor else None

    async def _run() -> FeedPage:
        query = await _base_query(db, user_id, options.following_only)
        if query is None:
            return FeedPage()
        if types:
            query = query.where(Activity.type.in_(types))
        if cursor is not None:
            query = query.where(before(Activity.created_at, Activity.id, cursor))
        query = query.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit + 1)

        result = await db.execute(query)
        rows = list(result.scalars().all())
        has_more = len(rows) > limit
        items = rows[:limit]
        next_cursor = None
        if has_more and items:
            last = items[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return FeedPage(activities=items, has_more=has_more, next_cursor=next_cursor)

    return await _bounded(_run, "compose_feed")


async def changes_since(
    db: AsyncSession,
    user_id: str,
    cursor: str,
    *,
    following_only: bool = True,
    limit: int | None = None,
) -> FeedPage:
    """Activities strictly newer than ``cursor``, oldest first.

    Used by realtime clients to reconcile after a reconnect. ``next_cursor``
    points at the newest returned activity (or echoes the input when nothing
    is new) so clients can keep polling from it.
    """
    limit = clamp_limit(limit)
    position = decode_cursor(cursor)

    async def _run() -> FeedPage:
        query = await _base_query(db, user_id, following_only)
        if query is None:
            return FeedPage(next_cursor=cursor)
        query = (
            query.where(after(Activity.created_at, Activity.id, position))
            .order_by(Activity.created_at.asc(), Activity.id.asc())
            .limit(limit + 1)
        )
        result = await db.execute(query)
        rows = list(result.scalars().all())
        has_more = len(rows) > limit
        items = rows[:limit]
        next_cursor = encode_cursor(items[-1].created_at, items[-1].id) if items else cursor
        return FeedPage(activities=items, has_more=has_more, next_cursor=next_cursor)

    return await _bounded(_run, "feed changes_since")


def feed_head_cursor(page: FeedPage) -> str | None:
    """Cursor of the newest activity on a first page, for subsequent changes_since calls."""
    if not page.activities:
        return None
    newest = page.activities[0]
    return encode_cursor(newest.created_at, newest.id)
