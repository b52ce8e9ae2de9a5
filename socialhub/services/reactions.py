"""
Toggle helpers for the user × content association tables (likes, saves,
story views) and for follow edges.

Each toggle reports whether the edge exists afterwards and whether this call
put it there, so callers notify only on the transition into the
liked/followed state. Two concurrent toggles by the same user can both see
no edge; the loser's insert hits the composite primary key inside a
savepoint and is reported as already present, without a second transition.
"""
from typing import NamedTuple

from sqlalchemy import Table, delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.models import Follow, User


class Toggle(NamedTuple):
    active: bool
    added: bool = False


async def has_edge(db: AsyncSession, table: Table, target_column: str, user_id: str, target_id: str) -> bool:
    target = table.c[target_column]
    row = await db.execute(
        select(table.c.user_id).where(table.c.user_id == user_id, target == target_id)
    )
    return row.first() is not None


async def _insert_edge(db: AsyncSession, table: Table, target_column: str, user_id: str, target_id: str) -> bool:
    try:
        async with db.begin_nested():
            await db.execute(insert(table).values({"user_id": user_id, target_column: target_id}))
    except IntegrityError:
        return False
    return True


async def toggle_edge(db: AsyncSession, table: Table, target_column: str, user_id: str, target_id: str) -> Toggle:
    """Add the edge if missing, remove it otherwise."""
    target = table.c[target_column]
    if await has_edge(db, table, target_column, user_id, target_id):
        await db.execute(delete(table).where(table.c.user_id == user_id, target == target_id))
        return Toggle(active=False)
    added = await _insert_edge(db, table, target_column, user_id, target_id)
    return Toggle(active=True, added=added)


async def ensure_edge(db: AsyncSession, table: Table, target_column: str, user_id: str, target_id: str) -> bool:
    """Add the edge if missing; True when it was added."""
    if await has_edge(db, table, target_column, user_id, target_id):
        return False
    return await _insert_edge(db, table, target_column, user_id, target_id)


async def members(db: AsyncSession, table: Table, target_column: str, target_id: str) -> list[str]:
    rows = await db.execute(select(table.c.user_id).where(table.c[target_column] == target_id))
    return list(rows.scalars())


async def toggle_follow(db: AsyncSession, follower_id: str, following_id: str) -> Toggle:
    edge = await db.get(Follow, (follower_id, following_id))
    if edge is not None:
        await db.delete(edge)
        return Toggle(active=False)
    try:
        async with db.begin_nested():
            db.add(Follow(follower_id=follower_id, following_id=following_id))
    except IntegrityError:
        return Toggle(active=True)
    return Toggle(active=True, added=True)


async def likers(db: AsyncSession, table: Table, target_column: str, target_id: str, viewer_id: str) -> list[User]:
    """Users on the edge table for one target: the viewer first, then people they follow."""
    rows = await db.execute(
        select(User)
        .join(table, table.c.user_id == User.user_id)
        .where(table.c[target_column] == target_id)
        .order_by(User.name)
    )
    users = list(rows.scalars())
    followed = set(
        (await db.execute(select(Follow.following_id).where(Follow.follower_id == viewer_id))).scalars()
    )

    def rank(user: User) -> int:
        if user.user_id == viewer_id:
            return 0
        return 1 if user.user_id in followed else 2

    return sorted(users, key=rank)
