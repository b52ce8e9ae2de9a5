"""
SQLAlchemy ORM models.

Tables:
  users          — profiles (identity is resolved from these rows)
  follows        — directed social graph edges (follower → following)
  posts          — post metadata (media bytes live in the media store)
  comments       — comments on posts
  stories        — 24h stories; active/archived is derived from created_at
  conversations  — one row per unordered user pair, stored normalised
  messages       — direct messages inside a conversation
  notifications  — durable notification feed per receiver

Association tables hold the many-to-many "liked by", "saved by", "tagged"
and "viewed by" relations.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialhub.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _user_fk(name: str) -> Column:
    return Column(
        name, String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )


post_likes = Table(
    "post_likes",
    Base.metadata,
    _user_fk("user_id"),
    Column("post_id", String(36), ForeignKey("posts.post_id", ondelete="CASCADE"), primary_key=True),
)

post_saves = Table(
    "post_saves",
    Base.metadata,
    _user_fk("user_id"),
    Column("post_id", String(36), ForeignKey("posts.post_id", ondelete="CASCADE"), primary_key=True),
)

post_tags = Table(
    "post_tags",
    Base.metadata,
    _user_fk("user_id"),
    Column("post_id", String(36), ForeignKey("posts.post_id", ondelete="CASCADE"), primary_key=True),
)

comment_likes = Table(
    "comment_likes",
    Base.metadata,
    _user_fk("user_id"),
    Column(
        "comment_id", String(36), ForeignKey("comments.comment_id", ondelete="CASCADE"), primary_key=True
    ),
)

story_likes = Table(
    "story_likes",
    Base.metadata,
    _user_fk("user_id"),
    Column("story_id", String(36), ForeignKey("stories.story_id", ondelete="CASCADE"), primary_key=True),
)

story_views = Table(
    "story_views",
    Base.metadata,
    _user_fk("user_id"),
    Column("story_id", String(36), ForeignKey("stories.story_id", ondelete="CASCADE"), primary_key=True),
)


class NotificationType(str, enum.Enum):
    POST = "post"
    COMMENT = "comment"
    LIKE = "like"
    FOLLOW = "follow"
    LIKED_COMMENT = "likedComment"
    TAG = "tag"


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(500))
    bio: Mapped[Optional[str]] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String(20), default="user", nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Follow(Base):
    __tablename__ = "follows"

    # Composite key: at most one edge per ordered pair
    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    following_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_follows_following", "following_id"),)


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_posts_author", "author_id"),
        Index("idx_posts_created", "created_at"),
    )


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")

    __table_args__ = (Index("idx_comments_post", "post_id"),)


class Story(Base):
    __tablename__ = "stories"

    story_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    image: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")

    __table_args__ = (Index("idx_stories_author_created", "author_id", "created_at"),)


class Conversation(Base):
    __tablename__ = "conversations"

    conversation_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # Normalised pair: first_user_id < second_user_id
    first_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    second_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    last_message: Mapped[Optional[str]] = mapped_column(Text)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    first_user = relationship("User", foreign_keys=[first_user_id], lazy="joined")
    second_user = relationship("User", foreign_keys=[second_user_id], lazy="joined")

    __table_args__ = (
        UniqueConstraint("first_user_id", "second_user_id", name="uq_conversation_pair"),
        Index("idx_conversations_second", "second_user_id"),
    )

    def other_party(self, user_id: str):
        return self.second_user if self.first_user_id == user_id else self.first_user

    def has_party(self, user_id: str) -> bool:
        return user_id in (self.first_user_id, self.second_user_id)


class Message(Base):
    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.conversation_id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    sender = relationship("User", lazy="joined")

    __table_args__ = (
        # Unread lookups filter on (conversation, sender, is_read)
        Index("idx_messages_unread", "conversation_id", "sender_id", "is_read"),
        Index("idx_messages_created", "conversation_id", "created_at"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    notification_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    receiver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    redirect_to: Mapped[Optional[str]] = mapped_column(String(500))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id], lazy="joined")

    __table_args__ = (Index("idx_notifications_receiver", "receiver_id", "is_read"),)
