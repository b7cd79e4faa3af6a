"""Follow graph with denormalized follower/following counters.

Edge mutations and counter updates run in the same transaction. Edge
uniqueness is enforced by the primary key (INSERT ... ON CONFLICT DO
NOTHING), and counters move only when a row was actually inserted or
deleted, so duplicate follow/unfollow calls can never drift the counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.db.models import FollowEdge, FollowStats, UserProfile
from showcase.db.upsert import insert_for
from showcase.errors import NotFoundError, SelfFollowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FollowResult:
    """Outcome of a follow/unfollow call."""

    changed: bool
    is_following: bool


@dataclass(frozen=True)
class FollowStatsView:
    user_id: str
    followers_count: int
    following_count: int
    updated_at: datetime | None = None


@dataclass(frozen=True)
class FollowStatus:
    is_following: bool
    is_followed_by: bool

    @property
    def mutual(self) -> bool:
        return self.is_following and self.is_followed_by


@dataclass(frozen=True)
class StatsDrift:
    """A counter row that disagreed with the edge table and was repaired."""

    user_id: str
    stored_followers: int
    stored_following: int
    actual_followers: int
    actual_following: int


async def _adjust_counts(
    db: AsyncSession,
    user_id: str,
    *,
    followers: int = 0,
    following: int = 0,
    now: datetime,
) -> None:
    """Atomically add deltas to a user's counters (creating the row if needed), floored at zero."""
    table = FollowStats.__table__
    new_followers = table.c.followers_count + followers
    new_following = table.c.following_count + following
    stmt = insert_for(db, table).values(
        user_id=user_id,
        followers_count=max(followers, 0),
        following_count=max(following, 0),
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.user_id],
        set_={
            "followers_count": case((new_followers < 0, 0), else_=new_followers),
            "following_count": case((new_following < 0, 0), else_=new_following),
            "updated_at": now,
        },
    )
    await db.execute(stmt)


async def follow(db: AsyncSession, follower_id: str, following_id: str) -> FollowResult:
    """Create the follower -> following edge (idempotent).

    Raises:
        SelfFollowError: When both ids are the same user.
        NotFoundError: When ``following_id`` has no profile.
    """
    if follower_id == following_id:
        raise SelfFollowError("Cannot follow yourself")
    if await db.get(UserProfile, following_id) is None:
        raise NotFoundError("User not found")

    now = datetime.now(timezone.utc)
    table = FollowEdge.__table__
    stmt = (
        insert_for(db, table)
        .values(follower_id=follower_id, following_id=following_id, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=[table.c.follower_id, table.c.following_id])
    )
    result = await db.execute(stmt)
    created = result.rowcount == 1

    if created:
        await _adjust_counts(db, follower_id, following=1, now=now)
        await _adjust_counts(db, following_id, followers=1, now=now)
        logger.info("User %s followed %s", follower_id, following_id)
    else:
        logger.debug("Follow %s -> %s already exists", follower_id, following_id)

    await db.flush()
    return FollowResult(changed=created, is_following=True)


async def unfollow(db: AsyncSession, follower_id: str, following_id: str) -> FollowResult:
    """Remove the follower -> following edge. Missing edges are a no-op."""
    result = await db.execute(
        delete(FollowEdge).where(
            FollowEdge.follower_id == follower_id,
            FollowEdge.following_id == following_id,
        )
    )
    removed = result.rowcount > 0

    if removed:
        now = datetime.now(timezone.utc)
        await _adjust_counts(db, follower_id, following=-1, now=now)
        await _adjust_counts(db, following_id, followers=-1, now=now)
        logger.info("User %s unfollowed %s", follower_id, following_id)

    await db.flush()
    return FollowResult(changed=removed, is_following=False)


async def list_following(db: AsyncSession, user_id: str) -> set[str]:
    """Ids of users that ``user_id`` follows."""
    result = await db.execute(
        select(FollowEdge.following_id).where(FollowEdge.follower_id == user_id)
    )
    return set(result.scalars().all())


async def list_followers(db: AsyncSession, user_id: str) -> set[str]:
    """Ids of users following ``user_id``."""
    result = await db.execute(
        select(FollowEdge.follower_id).where(FollowEdge.following_id == user_id)
    )
    return set(result.scalars().all())


async def is_following(db: AsyncSession, follower_id: str, following_id: str) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(FollowEdge)
        .where(FollowEdge.follower_id == follower_id, FollowEdge.following_id == following_id)
    )
    return result.scalar_one() > 0


async def get_follow_status(db: AsyncSession, viewer_id: str, other_id: str) -> FollowStatus:
    """Relationship between two users in both directions."""
    return FollowStatus(
        is_following=await is_following(db, viewer_id, other_id),
        is_followed_by=await is_following(db, other_id, viewer_id),
    )


async def get_stats(db: AsyncSession, user_id: str) -> FollowStatsView:
    """Follower/following counters; zeros when the user has no row yet."""
    result = await db.execute(
        select(
            FollowStats.followers_count,
            FollowStats.following_count,
            FollowStats.updated_at,
        ).where(FollowStats.user_id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        return FollowStatsView(user_id=user_id, followers_count=0, following_count=0)
    return FollowStatsView(
        user_id=user_id,
        followers_count=row.followers_count,
        following_count=row.following_count,
        updated_at=row.updated_at,
    )


async def reconcile_follow_stats(
    db: AsyncSession,
    user_ids: list[str] | None = None,
) -> list[StatsDrift]:
    """Recompute counters from a full edge scan and repair any drift.

    Returns the rows that were repaired (empty when everything agreed).
    """
    followers_q = select(FollowEdge.following_id, func.count()).group_by(FollowEdge.following_id)
    following_q = select(FollowEdge.follower_id, func.count()).group_by(FollowEdge.follower_id)
    stats_q = select(FollowStats.user_id, FollowStats.followers_count, FollowStats.following_count)
    if user_ids is not None:
        followers_q = followers_q.where(FollowEdge.following_id.in_(user_ids))
        following_q = following_q.where(FollowEdge.follower_id.in_(user_ids))
        stats_q = stats_q.where(FollowStats.user_id.in_(user_ids))

    actual_followers = {uid: n for uid, n in (await db.execute(followers_q)).all()}
    actual_following = {uid: n for uid, n in (await db.execute(following_q)).all()}
    stored = {uid: (fr, fg) for uid, fr, fg in (await db.execute(stats_q)).all()}

    candidates = set(actual_followers) | set(actual_following) | set(stored)
    drifts: list[StatsDrift] = []
    now = datetime.now(timezone.utc)
    table = FollowStats.__table__

    for uid in sorted(candidates):
        want = (actual_followers.get(uid, 0), actual_following.get(uid, 0))
        have = stored.get(uid)
        if have == want:
            continue
        if have is None and want == (0, 0):
            continue

        stmt = insert_for(db, table).values(
            user_id=uid, followers_count=want[0], following_count=want[1], updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={"followers_count": want[0], "following_count": want[1], "updated_at": now},
        )
        await db.execute(stmt)

        if have is not None:
            drift = StatsDrift(
                user_id=uid,
                stored_followers=have[0],
                stored_following=have[1],
                actual_followers=want[0],
                actual_following=want[1],
            )
            drifts.append(drift)
            logger.warning("Follow stats drift repaired: %s", drift)

    await db.flush()
    return drifts
