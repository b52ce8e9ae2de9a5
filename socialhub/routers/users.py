"""
User endpoints:
  POST  /users                  — create a profile, returns an access token
  POST  /users/availability     — check an email or name is still free
  GET   /users/me               — the caller's profile
  PATCH /users/me               — update name, email, bio or image
  GET   /users/search?name=     — find users by name
  GET   /users/{id}             — a profile with graph counts and hasStory
  POST  /users/{id}/follow      — toggle following {id}
  GET   /users/{id}/followers   — list followers (optional ?name= filter)
  GET   /users/{id}/following   — list followings (optional ?name= filter)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, create_access_token, get_current_user
from socialhub.clients.media import MediaStore
from socialhub.database import get_db
from socialhub.dependencies import get_media, get_notifications
from socialhub.errors import NotFound, UpstreamFailure, ValidationError
from socialhub.models import Follow, NotificationType, Post, Story, User
from socialhub.schemas import (
    AvailabilityCheck,
    ProfileUpdate,
    StatusResponse,
    ToggleResponse,
    UserCreate,
    UserCreated,
    UserEnvelope,
    UserList,
    UserProfile,
    UserResponse,
    UserSummary,
)
from socialhub.services.notifications import NotificationEvent, NotificationWriter
from socialhub.services.reactions import toggle_follow
from socialhub.services.stories import active_cutoff

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

SEARCH_LIMIT = 10


async def _ensure_available(
    db: AsyncSession, email: Optional[str], name: Optional[str], exclude: Optional[str] = None
) -> None:
    """Reject an email or name another user already holds."""
    for column, value, label in ((User.email, email, "Email"), (User.name, name, "Name")):
        if not value:
            continue
        query = select(User.user_id).where(column == value)
        if exclude:
            query = query.where(User.user_id != exclude)
        if (await db.execute(query)).first():
            raise ValidationError(f"{label} already registered")


@router.post("/", response_model=UserCreated, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    await _ensure_available(db, body.email, body.name)

    user = User(email=body.email, name=body.name, image=body.image, bio=body.bio)
    db.add(user)
    await db.flush()  # materialise user_id and defaults

    logger.info("Created user %s (id=%s)", user.name, user.user_id)
    return UserCreated(user=UserResponse.model_validate(user), token=create_access_token(user.user_id))


@router.post("/availability", response_model=StatusResponse)
async def check_availability(body: AvailabilityCheck, db: AsyncSession = Depends(get_db)):
    """Sign-up pre-check; needs no identity."""
    if not body.email and not body.name:
        raise ValidationError()
    await _ensure_available(db, body.email, body.name)
    return StatusResponse(message="Available")


@router.get("/me", response_model=UserResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    return UserResponse.model_validate(await db.get(User, identity.id))


@router.patch("/me", response_model=UserEnvelope)
async def update_me(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
):
    """
    Update the caller's profile. A changed image is uploaded first; the old
    one is removed once the profile is stored.
    """
    with tracer.start_as_current_span("update_profile"):
        user = await db.get(User, identity.id)
        await _ensure_available(db, body.email, body.name, exclude=identity.id)

        old_image = user.image
        new_image = None
        if body.image and body.image != old_image:
            new_image = await media.upload(body.image)
            user.image = new_image
        if body.name is not None:
            user.name = body.name
        if body.email is not None:
            user.email = body.email
        if body.bio is not None:
            user.bio = body.bio

        try:
            await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Could not update profile of %s", identity.id)
            if new_image:
                await media.delete(new_image)
            raise UpstreamFailure("Failed to update profile") from exc

        if new_image and old_image and not await media.delete(old_image):
            logger.warning("Profile of %s updated but its old image could not be removed", identity.id)
        logger.info("Updated profile of %s", identity.id)
        return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/search", response_model=UserList)
async def search_users(
    name: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    """Case-insensitive name search, excluding the caller."""
    rows = await db.execute(
        select(User)
        .where(User.user_id != identity.id, func.lower(User.name).contains(name.lower()))
        .order_by(User.name)
        .limit(SEARCH_LIMIT)
    )
    users = list(rows.scalars())
    if not users:
        raise NotFound("User with name not found")
    return UserList(users=[UserSummary.model_validate(u) for u in users])


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    followers = await db.scalar(
        select(func.count()).select_from(Follow).where(Follow.following_id == user_id)
    )
    following = await db.scalar(
        select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
    )
    posts = await db.scalar(select(func.count()).select_from(Post).where(Post.author_id == user_id))
    active = await db.scalar(
        select(func.count())
        .select_from(Story)
        .where(Story.author_id == user_id, Story.created_at > active_cutoff())
    )
    return UserProfile(
        **UserResponse.model_validate(user).model_dump(),
        followers=followers or 0,
        following=following or 0,
        posts=posts or 0,
        has_story=bool(active),
    )


@router.post("/{user_id}/follow", response_model=ToggleResponse)
async def follow_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    """
    Toggle the caller → {user_id} edge. Only the transition into following
    notifies the followed user.
    """
    with tracer.start_as_current_span("toggle_follow"):
        if user_id == identity.id:
            raise ValidationError("Cannot follow yourself")
        if not await db.get(User, user_id):
            raise NotFound("User not found")

        toggled = await toggle_follow(db, identity.id, user_id)
        await db.commit()

        if toggled.added:
            await notifications.dispatch(
                NotificationEvent(
                    type=NotificationType.FOLLOW,
                    sender_id=identity.id,
                    receiver_id=user_id,
                    message=f"{identity.name} started following you",
                    redirect_to=f"/profile/{identity.id}",
                )
            )
        logger.info("%s %s %s", identity.id, "followed" if toggled.active else "unfollowed", user_id)
        return ToggleResponse(message="Follow" if toggled.active else "Unfollow", active=toggled.active)


async def _list_edges(db: AsyncSession, user_id: str, followers: bool, name: Optional[str]) -> list[User]:
    if not await db.get(User, user_id):
        raise NotFound("User not found")
    if followers:
        join_on, where = Follow.follower_id == User.user_id, Follow.following_id == user_id
    else:
        join_on, where = Follow.following_id == User.user_id, Follow.follower_id == user_id
    query = select(User).join(Follow, join_on).where(where).order_by(Follow.created_at.desc())
    if name:
        query = query.where(func.lower(User.name).contains(name.lower()))
    rows = await db.execute(query)
    return list(rows.scalars())


@router.get("/{user_id}/followers", response_model=UserList)
async def list_followers(
    user_id: str,
    name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    users = await _list_edges(db, user_id, followers=True, name=name)
    return UserList(users=[UserSummary.model_validate(u) for u in users])


@router.get("/{user_id}/following", response_model=UserList)
async def list_following(
    user_id: str,
    name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    users = await _list_edges(db, user_id, followers=False, name=name)
    return UserList(users=[UserSummary.model_validate(u) for u in users])
