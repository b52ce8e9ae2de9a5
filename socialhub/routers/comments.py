"""
Comment endpoints:
  POST   /posts/{post_id}/comments  — add a comment (notifies the post author)
  GET    /posts/{post_id}/comments  — paginated, most-liked then newest first
  POST   /comments/{id}/like        — toggle like (notifies the comment author)
  GET    /comments/{id}/likes       — who liked the comment
  PATCH  /comments/{id}             — edit (author only)
  DELETE /comments/{id}             — delete (author only)
"""
import logging

from fastapi import APIRouter, Depends
from opentelemetry import trace
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.auth import Identity, get_current_user
from socialhub.database import get_db
from socialhub.dependencies import get_notifications
from socialhub.errors import Forbidden, NotFound
from socialhub.models import Comment, NotificationType, Post, comment_likes
from socialhub.schemas import (
    CommentCreate,
    CommentEnvelope,
    CommentPage,
    CommentResponse,
    LikesResponse,
    StatusResponse,
    UserList,
    UserSummary,
)
from socialhub.services.notifications import NotificationEvent, NotificationWriter
from socialhub.services.pagination import Page, page_params
from socialhub.services.reactions import likers, members, toggle_edge

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def _comment_response(comment: Comment, likes: list[str]) -> CommentResponse:
    return CommentResponse(
        id=comment.comment_id,
        post_id=comment.post_id,
        author=UserSummary.model_validate(comment.author),
        content=comment.content,
        created_at=comment.created_at,
        likes=likes,
    )


async def _get_comment(db: AsyncSession, comment_id: str) -> Comment:
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    return comment


@router.post("/posts/{post_id}/comments", response_model=CommentEnvelope)
async def add_comment(
    post_id: str,
    body: CommentCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    with tracer.start_as_current_span("add_comment"):
        post = await db.get(Post, post_id)
        if not post:
            raise NotFound("Post not found")

        comment = Comment(post_id=post_id, author_id=identity.id, content=body.content)
        db.add(comment)
        await db.commit()

        await notifications.dispatch(
            NotificationEvent(
                type=NotificationType.COMMENT,
                sender_id=identity.id,
                receiver_id=post.author_id,
                message=f"{identity.name} commented on your post: {body.content}",
                redirect_to=f"/?post={post_id}&c={comment.comment_id}",
            )
        )

        await db.refresh(comment, ["author"])
        return CommentEnvelope(comment=_comment_response(comment, []))


@router.get("/posts/{post_id}/comments", response_model=CommentPage)
async def list_comments(
    post_id: str,
    page: Page = Depends(page_params),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    like_count = (
        select(func.count())
        .select_from(comment_likes)
        .where(comment_likes.c.comment_id == Comment.comment_id)
        .scalar_subquery()
    )
    rows = await db.execute(
        select(Comment)
        .where(Comment.post_id == post_id)
        .order_by(like_count.desc(), Comment.created_at.desc())
        .offset(page.offset)
        .limit(page.limit)
    )
    comments = list(rows.scalars().unique())
    total = await db.scalar(select(func.count()).select_from(Comment).where(Comment.post_id == post_id))

    likes: dict[str, list[str]] = {c.comment_id: [] for c in comments}
    if likes:
        edges = await db.execute(
            select(comment_likes.c.comment_id, comment_likes.c.user_id).where(
                comment_likes.c.comment_id.in_(list(likes))
            )
        )
        for comment_id, user_id in edges.all():
            likes[comment_id].append(user_id)

    return CommentPage(
        comments=[_comment_response(c, likes[c.comment_id]) for c in comments],
        next_page=page.next_page(total or 0),
    )


@router.post("/comments/{comment_id}/like", response_model=LikesResponse)
async def like_comment(
    comment_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
    notifications: NotificationWriter = Depends(get_notifications),
):
    with tracer.start_as_current_span("toggle_comment_like"):
        comment = await _get_comment(db, comment_id)
        toggled = await toggle_edge(db, comment_likes, "comment_id", identity.id, comment_id)
        likes = await members(db, comment_likes, "comment_id", comment_id)
        await db.commit()

        if toggled.added:
            await notifications.dispatch(
                NotificationEvent(
                    type=NotificationType.LIKED_COMMENT,
                    sender_id=identity.id,
                    receiver_id=comment.author_id,
                    message=f"{identity.name} liked your comment",
                    redirect_to=f"/?post={comment.post_id}&c={comment_id}",
                )
            )
        return LikesResponse(
            message="Comment liked successfully" if toggled.active else "Comment unliked successfully",
            likes=likes,
        )


@router.get("/comments/{comment_id}/likes", response_model=UserList)
async def comment_likers(
    comment_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    await _get_comment(db, comment_id)
    users = await likers(db, comment_likes, "comment_id", comment_id, identity.id)
    return UserList(users=[UserSummary.model_validate(u) for u in users])


@router.patch("/comments/{comment_id}", response_model=StatusResponse)
async def update_comment(
    comment_id: str,
    body: CommentCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    comment = await _get_comment(db, comment_id)
    if comment.author_id != identity.id:
        raise Forbidden("You don't have permission to update this comment")
    comment.content = body.content
    return StatusResponse(message="Comment updated successfully")


@router.delete("/comments/{comment_id}", response_model=StatusResponse)
async def delete_comment(
    comment_id: str,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    comment = await _get_comment(db, comment_id)
    if comment.author_id != identity.id:
        raise Forbidden("You don't have permission to delete this comment")
    await db.execute(delete(comment_likes).where(comment_likes.c.comment_id == comment_id))
    await db.delete(comment)
    return StatusResponse(message="Comment deleted")
