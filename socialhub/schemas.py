"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Wire names are camelCase (firstUserId, isRead, lastMessageAt, ...); Python
attribute names stay snake_case and are filled from ORM rows by name.
"""
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _id_field(attribute: str):
    # Rows carry table-specific primary keys; the wire always says "id"
    return Field(validation_alias=AliasChoices(attribute, "id"), serialization_alias="id")


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(APIModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=3, max_length=100)
    image: Optional[str] = None
    bio: Optional[str] = None


class UserSummary(APIModel):
    """Public profile fields shown next to content."""
    id: str = _id_field("user_id")
    name: str
    image: Optional[str] = None
    is_verified: bool = False


class UserResponse(UserSummary):
    email: str
    bio: Optional[str] = None
    role: str
    created_at: datetime


class UserProfile(UserResponse):
    followers: int
    following: int
    posts: int
    has_story: bool


class UserCreated(APIModel):
    success: bool = True
    user: UserResponse
    token: str


class ToggleResponse(APIModel):
    success: bool = True
    message: str
    active: bool


class UserList(APIModel):
    success: bool = True
    users: list[UserSummary]


class ProfileUpdate(APIModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    email: Optional[str] = Field(None, min_length=3, max_length=255)
    bio: Optional[str] = None
    # An unchanged image URL, or a new base64 payload for the media store
    image: Optional[str] = None


class UserEnvelope(APIModel):
    success: bool = True
    user: UserResponse


class AvailabilityCheck(APIModel):
    email: Optional[str] = None
    name: Optional[str] = None


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(APIModel):
    content: str = Field(..., min_length=1)
    # Base64-encoded image payloads, stored in the media store
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class PostUpdate(APIModel):
    """Fields left out stay as they are."""
    content: Optional[str] = Field(None, min_length=1)
    # The current URLs keep the media; anything else replaces it
    images: Optional[list[str]] = None
    tags: Optional[list[str]] = None


class PostResponse(APIModel):
    id: str = _id_field("post_id")
    author: UserSummary
    content: Optional[str]
    images: list[str]
    created_at: datetime
    liked_by: list[str] = Field(default_factory=list)
    saved_by: list[str] = Field(default_factory=list)
    tags: list[UserSummary] = Field(default_factory=list)


class PostPage(APIModel):
    success: bool = True
    posts: list[PostResponse]
    next_page: Optional[int] = None


class PostEnvelope(APIModel):
    success: bool = True
    post: PostResponse


class LikesResponse(APIModel):
    success: bool = True
    message: str
    likes: list[str]


# ──────────────────────────── Comments ────────────────────────────────────

class CommentCreate(APIModel):
    content: str = Field(..., min_length=1)


class CommentResponse(APIModel):
    id: str = _id_field("comment_id")
    post_id: str
    author: UserSummary
    content: str
    created_at: datetime
    likes: list[str] = Field(default_factory=list)


class CommentEnvelope(APIModel):
    success: bool = True
    comment: CommentResponse


class CommentPage(APIModel):
    success: bool = True
    comments: list[CommentResponse]
    next_page: Optional[int] = None


# ──────────────────────────── Stories ─────────────────────────────────────

class StoryCreate(APIModel):
    image: str = Field(..., min_length=1)


class StoryResponse(APIModel):
    id: str = _id_field("story_id")
    author: UserSummary
    image: str
    created_at: datetime
    is_liked: bool = False


class StoryList(APIModel):
    success: bool = True
    stories: list[StoryResponse]


class StoryEnvelope(APIModel):
    success: bool = True
    story: StoryResponse


class StoryFeedEntry(UserSummary):
    is_viewed: bool


class StoryFeed(APIModel):
    success: bool = True
    stories: list[StoryFeedEntry]


# ──────────────────────────── Messages ────────────────────────────────────

class MessageCreate(APIModel):
    message: str = Field(..., min_length=1)


class MessageResponse(APIModel):
    id: str = _id_field("message_id")
    conversation_id: Optional[str] = None
    sender_id: str
    message: str
    is_read: bool
    created_at: datetime
    updated_at: datetime
    sender: Optional[UserSummary] = None


class MessageEnvelope(APIModel):
    success: bool = True
    message: MessageResponse


class ConversationSummary(APIModel):
    id: str
    conversation_with: UserSummary
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    has_unread: bool


class ConversationList(APIModel):
    success: bool = True
    conversations: list[ConversationSummary]


class ConversationDetail(APIModel):
    id: str
    messages: list[MessageResponse]


class ConversationEnvelope(APIModel):
    success: bool = True
    conversation: ConversationDetail
    next_page: Optional[int] = None


class CountResponse(APIModel):
    count: int


class StatusResponse(APIModel):
    success: bool = True
    message: str


# ──────────────────────────── Notifications ───────────────────────────────

class NotificationRecord(APIModel):
    """The persisted row, as pushed over the real-time channel."""
    id: str = _id_field("notification_id")
    type: str
    sender_id: str
    receiver_id: str
    message: Optional[str] = None
    redirect_to: Optional[str] = None
    is_read: bool
    created_at: datetime


class NotificationResponse(NotificationRecord):
    sender: Optional[UserSummary] = None


class NotificationPage(APIModel):
    success: bool = True
    notifications: list[NotificationResponse]
    next_page: Optional[int] = None
