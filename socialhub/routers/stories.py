"""
Story endpoints:
  POST   /stories                   — publish a story (image → media store)
  GET    /stories                   — followed users with active stories
  GET    /stories/users/{user_id}   — a user's active stories
  GET    /stories/archive           — the caller's archived stories
  GET    /stories/archive/{id}      — one archived story
  POST   /stories/{id}/view         — mark viewed
  GET    /stories/{id}/viewers      — viewers (author only)
  POST   /stories/{id}/like         — toggle like (notifies the author on like)
  DELETE /stories/{id}              — delete (author only)
"""
import logging

from fastapi import APIRouter, Depends
from opentelemetry import trace
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, get_current_user
from socialhub.clients.media import MediaStore
from socialhub.database import get_db
from socialhub.dependencies import get_media, get_notifications
from socialhub.errors import Forbidden, NotFound
from socialhub.models import NotificationType, Story, User, story_likes, story_views
from socialhub.schemas import (
    StatusResponse,
    StoryCreate,
    StoryEnvelope,
    StoryFeed,
    StoryFeedEntry,
    StoryList,
    StoryResponse,
    ToggleResponse,
    UserList,
    UserSummary,
)
from socialhub.services import stories as visibility
from socialhub.services.notifications import NotificationEvent, NotificationWriter
from socialhub.services.reactions import ensure_edge, toggle_edge

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def _story_response(story: Story, is_liked: bool = False) -> StoryResponse:
    return StoryResponse(
        id=story.story_id,
        author=UserSummary.model_validate(story.author),
        image=story.image,
        created_at=story.created_at,
        is_liked=is_liked,
    )


async def _get_story(db: AsyncSession, story_id: str) -> Story:
    story = await db.get(Story, story_id)
    if not story:
        raise NotFound("Story not found")
    return story


@router.post("/", response_model=StoryEnvelope)
async def add_story(
    body: StoryCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
):
    image = await media.upload(body.image)
    story = Story(author_id=identity.id, image=image)
    db.add(story)
    await db.flush()
    await db.refresh(story, ["author"])
    logger.info("Story created: %s by user %s", story.story_id, identity.id)
    return StoryEnvelope(story=_story_response(story))


@router.get("/", response_model=StoryFeed)
async def story_feed(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    feed = await visibility.story_feed(db, identity.id)
    return StoryFeed(
        stories=[
            StoryFeedEntry(**UserSummary.model_validate(user).model_dump(), is_viewed=viewed)
            for user, viewed in feed
        ]
    )


@router.get("/users/{user_id}", response_model=StoryList)
async def user_stories(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    if not await db.get(User, user_id):
        raise NotFound("User not found")
    stories = await visibility.active_stories_of(db, user_id)
    liked = await visibility.liked_story_ids(db, identity.id, [s.story_id for s in stories])
    return StoryList(stories=[_story_response(s, s.story_id in liked) for s in stories])


@router.get("/archive", response_model=StoryList)
async def archived_stories(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    stories = await visibility.archived_stories_of(db, identity.id)
    return StoryList(stories=[_story_response(s) for s in stories])


@router.get("/archive/{story_id}", response_model=StoryEnvelope)
async def archived_story(
    story_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    story = await _get_story(db, story_id)
    if story.author_id != identity.id or not visibility.is_archived(story.created_at):
        raise NotFound("Story not found")
    return StoryEnvelope(story=_story_response(story))


@router.post("/{story_id}/view", response_model=StatusResponse)
async def view_story(
    story_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    await _get_story(db, story_id)
    await ensure_edge(db, story_views, "story_id", identity.id, story_id)
    return StatusResponse(message="Story viewed successfully")


@router.get("/{story_id}/viewers", response_model=UserList)
async def story_viewers(
    story_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    story = await _get_story(db, story_id)
    if story.author_id != identity.id:
        raise Forbidden("You don't have permission to see this story's viewers")
    rows = await db.execute(
        select(User)
        .join(story_views, story_views.c.user_id == User.user_id)
        .where(story_views.c.story_id == story_id)
    )
    return UserList(users=[UserSummary.model_validate(u) for u in rows.scalars()])


@router.post("/{story_id}/like", response_model=ToggleResponse)
async def like_story(
    story_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    with tracer.start_as_current_span("toggle_story_like"):
        story = await _get_story(db, story_id)
        toggled = await toggle_edge(db, story_likes, "story_id", identity.id, story_id)
        await db.commit()

        if toggled.added:
            await notifications.dispatch(
                NotificationEvent(
                    type=NotificationType.LIKE,
                    sender_id=identity.id,
                    receiver_id=story.author_id,
                    message=f"{identity.name} liked your story",
                    redirect_to=f"/story/{story.author_id}",
                )
            )
        return ToggleResponse(
            message="Story liked successfully" if toggled.active else "Story unliked successfully",
            active=toggled.active,
        )


@router.delete("/{story_id}", response_model=StatusResponse)
async def delete_story(
    story_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
):
    story = await _get_story(db, story_id)
    if story.author_id != identity.id:
        raise Forbidden("You don't have permission to delete this story")

    image = story.image
    for table in (story_likes, story_views):
        await db.execute(delete(table).where(table.c.story_id == story_id))
    await db.delete(story)
    await db.commit()

    if not await media.delete(image):
        logger.warning("Story %s deleted but its media could not be removed", story_id)
    return StatusResponse(message="Story deleted successfully")
