"""
Post endpoints:
  POST   /posts                     — create a post (images → media store, tags notify)
  GET    /posts                     — newest-first paginated list
  GET    /posts/explore             — most-liked posts
  GET    /posts/users/{id}          — a user's posts
  GET    /posts/users/{id}/tagged   — posts a user is tagged in
  GET    /posts/saved               — the caller's saved posts
  GET    /posts/{id}                — fetch a single post
  PATCH  /posts/{id}                — edit content, tags and images (author only)
  GET    /posts/{id}/likes          — who liked the post
  POST   /posts/{id}/like           — toggle like (notifies the author on like)
  POST   /posts/{id}/save           — toggle save
  DELETE /posts/{id}                — delete (author only)
"""
import logging

from fastapi import APIRouter, Depends
from opentelemetry import trace
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, get_current_user
from socialhub.clients.media import MediaStore
from socialhub.config import settings
from socialhub.database import get_db
from socialhub.dependencies import get_media, get_notifications
from socialhub.errors import Forbidden, NotFound, UpstreamFailure
from socialhub.models import NotificationType, Post, User, post_likes, post_saves, post_tags
from socialhub.schemas import (
    LikesResponse,
    PostCreate,
    PostEnvelope,
    PostPage,
    PostResponse,
    PostUpdate,
    StatusResponse,
    ToggleResponse,
    UserList,
    UserSummary,
)
from socialhub.services.notifications import NotificationEvent, NotificationWriter
from socialhub.services.pagination import Page, page_params
from socialhub.services.reactions import likers, members, toggle_edge

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


async def _hydrate(db: AsyncSession, posts: list[Post]) -> list[PostResponse]:
    """Attach liked-by, saved-by and tagged users in three batched queries."""
    ids = [p.post_id for p in posts]
    if not ids:
        return []

    liked: dict[str, list[str]] = {pid: [] for pid in ids}
    saved: dict[str, list[str]] = {pid: [] for pid in ids}
    tagged: dict[str, list[UserSummary]] = {pid: [] for pid in ids}

    for table, bucket in ((post_likes, liked), (post_saves, saved)):
        rows = await db.execute(select(table.c.post_id, table.c.user_id).where(table.c.post_id.in_(ids)))
        for post_id, user_id in rows.all():
            bucket[post_id].append(user_id)

    rows = await db.execute(
        select(post_tags.c.post_id, User)
        .join(User, User.user_id == post_tags.c.user_id)
        .where(post_tags.c.post_id.in_(ids))
    )
    for post_id, user in rows.all():
        tagged[post_id].append(UserSummary.model_validate(user))

    return [
        PostResponse(
            id=p.post_id,
            author=UserSummary.model_validate(p.author),
            content=p.content,
            images=p.images or [],
            created_at=p.created_at,
            liked_by=liked[p.post_id],
            saved_by=saved[p.post_id],
            tags=tagged[p.post_id],
        )
        for p in posts
    ]


async def _get_post(db: AsyncSession, post_id: str) -> Post:
    post = await db.get(Post, post_id)
    if not post:
        raise NotFound("Post not found")
    return post


async def _check_tags(db: AsyncSession, tags: list[str]) -> list[str]:
    tags = list(dict.fromkeys(tags))
    if tags:
        found = await db.execute(select(User.user_id).where(User.user_id.in_(tags)))
        if set(tags) - set(found.scalars()):
            raise NotFound("Tagged user not found")
    return tags


async def _discard_uploads(media: MediaStore, uploaded: list[str]) -> None:
    """Remove media uploaded for a post that was never stored."""
    if uploaded and not await media.delete(uploaded):
        logger.warning("Orphaned media left in the store: %s", uploaded)


async def _notify_tagged(
    notifications: NotificationWriter, identity: Identity, post_id: str, tagged_ids: list[str]
) -> None:
    for tagged_id in tagged_ids:
        await notifications.dispatch(
            NotificationEvent(
                type=NotificationType.TAG,
                sender_id=identity.id,
                receiver_id=tagged_id,
                message=f"{identity.name} tagged you in a post",
                redirect_to=f"/?post={post_id}",
            )
        )


@router.post("/", response_model=PostEnvelope)
async def create_post(
    body: PostCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
    notifications: NotificationWriter = Depends(get_notifications),
):
    """
    1. Upload images to the media store.
    2. Persist the post and its tag edges (uploads are removed if this fails).
    3. Notify every tagged user (never the author).
    """
    with tracer.start_as_current_span("create_post") as span:
        tags = await _check_tags(db, body.tags)
        images = await media.upload_many(body.images)

        post = Post(author_id=identity.id, content=body.content, images=images)
        try:
            db.add(post)
            await db.flush()
            if tags:
                await db.execute(insert(post_tags), [{"user_id": t, "post_id": post.post_id} for t in tags])
            await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Could not store new post by %s", identity.id)
            await _discard_uploads(media, images)
            raise UpstreamFailure("Failed to store post") from exc
        span.set_attribute("post.id", post.post_id)

        await _notify_tagged(notifications, identity, post.post_id, tags)

        logger.info("Post created: %s by user %s", post.post_id, identity.id)
        await db.refresh(post, ["author"])
        return PostEnvelope(post=(await _hydrate(db, [post]))[0])


@router.get("/explore", response_model=PostPage)
async def explore_posts(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    """The most-liked posts, newest first among equals."""
    like_count = (
        select(func.count())
        .select_from(post_likes)
        .where(post_likes.c.post_id == Post.post_id)
        .scalar_subquery()
    )
    rows = await db.execute(
        select(Post)
        .order_by(like_count.desc(), Post.created_at.desc())
        .limit(settings.default_page_size)
    )
    return PostPage(posts=await _hydrate(db, list(rows.scalars().unique())))


@router.get("/", response_model=PostPage)
async def list_posts(
    page: Page = Depends(page_params),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    rows = await db.execute(
        select(Post).order_by(Post.created_at.desc()).offset(page.offset).limit(page.limit)
    )
    total = await db.scalar(select(func.count()).select_from(Post))
    posts = list(rows.scalars().unique())
    return PostPage(posts=await _hydrate(db, posts), next_page=page.next_page(total or 0))


@router.get("/saved", response_model=PostPage)
async def saved_posts(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    rows = await db.execute(
        select(Post)
        .join(post_saves, post_saves.c.post_id == Post.post_id)
        .where(post_saves.c.user_id == identity.id)
        .order_by(Post.created_at.desc())
    )
    return PostPage(posts=await _hydrate(db, list(rows.scalars().unique())))


@router.get("/users/{user_id}", response_model=PostPage)
async def user_posts(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    if not await db.get(User, user_id):
        raise NotFound("User not found")
    rows = await db.execute(
        select(Post).where(Post.author_id == user_id).order_by(Post.created_at.desc())
    )
    return PostPage(posts=await _hydrate(db, list(rows.scalars().unique())))


@router.get("/users/{user_id}/tagged", response_model=PostPage)
async def tagged_posts(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    if not await db.get(User, user_id):
        raise NotFound("User not found")
    rows = await db.execute(
        select(Post)
        .join(post_tags, post_tags.c.post_id == Post.post_id)
        .where(post_tags.c.user_id == user_id)
        .order_by(Post.created_at.desc())
    )
    return PostPage(posts=await _hydrate(db, list(rows.scalars().unique())))


@router.get("/{post_id}", response_model=PostEnvelope)
async def get_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    post = await _get_post(db, post_id)
    return PostEnvelope(post=(await _hydrate(db, [post]))[0])


@router.patch("/{post_id}", response_model=PostEnvelope)
async def update_post(
    post_id: str,
    body: PostUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
    notifications: NotificationWriter = Depends(get_notifications),
):
    """
    Edit content, tags and images (author only).

    Submitted image URLs already on the post are kept; anything else is a new
    payload for the media store. Dropped media is removed only after the edit
    is stored, and only newly tagged users are notified.
    """
    with tracer.start_as_current_span("update_post"):
        post = await _get_post(db, post_id)
        if post.author_id != identity.id:
            raise Forbidden("You don't have permission to update this post")

        added: list[str] = []
        removed: set[str] = set()
        if body.tags is not None:
            tags = await _check_tags(db, body.tags)
            current = set(await members(db, post_tags, "post_id", post_id))
            added = [t for t in tags if t not in current]
            removed = current - set(tags)

        old_images = list(post.images or [])
        uploaded: list[str] = []
        dropped: list[str] = []
        if body.images is not None and body.images != old_images:
            uploaded = await media.upload_many([i for i in body.images if i not in old_images])
            fresh = iter(uploaded)
            post.images = [i if i in old_images else next(fresh) for i in body.images]
            dropped = [i for i in old_images if i not in body.images]

        if body.content is not None:
            post.content = body.content

        try:
            if removed:
                await db.execute(
                    delete(post_tags).where(post_tags.c.post_id == post_id, post_tags.c.user_id.in_(removed))
                )
            if added:
                await db.execute(insert(post_tags), [{"user_id": t, "post_id": post_id} for t in added])
            await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Could not update post %s", post_id)
            await _discard_uploads(media, uploaded)
            raise UpstreamFailure("Failed to update post") from exc

        if dropped and not await media.delete(dropped):
            logger.warning("Post %s updated but its old media could not be removed", post_id)
        await _notify_tagged(notifications, identity, post_id, added)

        logger.info("Post updated: %s by user %s", post_id, identity.id)
        return PostEnvelope(post=(await _hydrate(db, [post]))[0])


@router.get("/{post_id}/likes", response_model=UserList)
async def post_likers(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    """Who liked the post: the caller first, then people the caller follows."""
    await _get_post(db, post_id)
    users = await likers(db, post_likes, "post_id", post_id, identity.id)
    return UserList(users=[UserSummary.model_validate(u) for u in users])


@router.post("/{post_id}/like", response_model=LikesResponse)
async def like_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    """Toggle the caller's like. Only the transition into liked notifies."""
    with tracer.start_as_current_span("toggle_post_like"):
        post = await _get_post(db, post_id)
        toggled = await toggle_edge(db, post_likes, "post_id", identity.id, post_id)
        likes = await members(db, post_likes, "post_id", post_id)
        await db.commit()

        if toggled.added:
            await notifications.dispatch(
                NotificationEvent(
                    type=NotificationType.LIKE,
                    sender_id=identity.id,
                    receiver_id=post.author_id,
                    message=f"{identity.name} liked your post",
                    redirect_to=f"/?post={post_id}",
                )
            )
        return LikesResponse(
            message="Post liked successfully" if toggled.active else "Post unliked successfully",
            likes=likes,
        )


@router.post("/{post_id}/save", response_model=ToggleResponse)
async def save_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    await _get_post(db, post_id)
    saved = (await toggle_edge(db, post_saves, "post_id", identity.id, post_id)).active
    return ToggleResponse(
        message="Post saved successfully" if saved else "Post unsaved successfully",
        active=saved,
    )


@router.delete("/{post_id}", response_model=StatusResponse)
async def delete_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    media: MediaStore = Depends(get_media),
):
    post = await _get_post(db, post_id)
    if post.author_id != identity.id:
        raise Forbidden("You don't have permission to delete this post")

    images = list(post.images or [])
    for table in (post_likes, post_saves, post_tags):
        await db.execute(delete(table).where(table.c.post_id == post_id))
    await db.delete(post)
    await db.commit()

    if images and not await media.delete(images):
        logger.warning("Post %s deleted but its media could not be removed", post_id)
    return StatusResponse(message="Post deleted")
