"""
Story visibility.

A story is active for story_ttl_hours after creation and archived from then
on. Nothing is stored for this: both the pure predicate and the query
filters derive it from created_at and the query time.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.config import settings
from socialhub.models import Follow, Story, User, story_likes, story_views, utcnow


def story_ttl() -> timedelta:
    return timedelta(hours=settings.story_ttl_hours)


def active_cutoff(now: Optional[datetime] = None) -> datetime:
    """Stories created after this instant are active."""
    return (now or utcnow()) - story_ttl()


def is_active(created_at: datetime, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return created_at <= now < created_at + story_ttl()


def is_archived(created_at: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) >= created_at + story_ttl()


async def active_stories_of(db: AsyncSession, author_id: str, now: Optional[datetime] = None) -> list[Story]:
    now = now or utcnow()
    rows = await db.execute(
        select(Story)
        .where(
            Story.author_id == author_id,
            Story.created_at > active_cutoff(now),
            Story.created_at <= now,
        )
        .order_by(Story.created_at.asc())
    )
    return list(rows.scalars().unique())


async def archived_stories_of(db: AsyncSession, author_id: str, now: Optional[datetime] = None) -> list[Story]:
    rows = await db.execute(
        select(Story)
        .where(Story.author_id == author_id, Story.created_at <= active_cutoff(now))
        .order_by(Story.created_at.desc())
    )
    return list(rows.scalars().unique())


async def liked_story_ids(db: AsyncSession, user_id: str, story_ids: list[str]) -> set[str]:
    if not story_ids:
        return set()
    rows = await db.execute(
        select(story_likes.c.story_id).where(
            story_likes.c.user_id == user_id, story_likes.c.story_id.in_(story_ids)
        )
    )
    return set(rows.scalars())


async def story_feed(db: AsyncSession, viewer_id: str, now: Optional[datetime] = None):
    """
    Followed users with at least one active story, paired with whether the
    viewer has seen all of them. Unviewed authors come first.
    """
    rows = await db.execute(
        select(User, Story.story_id)
        .join(Follow, Follow.following_id == User.user_id)
        .join(Story, Story.author_id == User.user_id)
        .where(Follow.follower_id == viewer_id, Story.created_at > active_cutoff(now))
        .order_by(User.created_at.desc())
    )
    by_author: dict[str, tuple[User, list[str]]] = {}
    for user, story_id in rows.all():
        by_author.setdefault(user.user_id, (user, []))[1].append(story_id)

    all_ids = [sid for _, ids in by_author.values() for sid in ids]
    viewed: set[str] = set()
    if all_ids:
        seen = await db.execute(
            select(story_views.c.story_id).where(
                story_views.c.user_id == viewer_id, story_views.c.story_id.in_(all_ids)
            )
        )
        viewed = set(seen.scalars())

    feed = [(user, all(sid in viewed for sid in ids)) for user, ids in by_author.values()]
    # Stable sort keeps the follow-graph order inside each group
    feed.sort(key=lambda entry: entry[1])
    return feed
