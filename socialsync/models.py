"""Data models for socialsync.

Pydantic validation models for rows returned by the backend and for the
view-ready records assembled from them.

Models are organized into three sections:
1. Table rows (one model per remote table)
2. View records (rows enriched with related data)
3. Session and realtime payloads
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from socialsync.config import MemberRole, NotificationType
from socialsync.utils import parse_datetime


class Row(BaseModel):
    """Base for remote rows: unknown columns ignored, timestamps in UTC."""

    model_config = ConfigDict(extra="ignore")

    @field_validator(
        "created_at", "updated_at", "joined_at", mode="before", check_fields=False
    )
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


# =============================================================================
# Section 1: Table Rows
# =============================================================================


class Profile(Row):
    """Public profile of an account (``profiles``).

    Attributes:
        id: Row ID
        user_id: Owning auth user ID
        username: Unique handle
        name: Display name
        bio: Free-form biography
        work: Workplace/occupation line
        avatar_url: Public avatar image URL
        cover_url: Public cover image URL
    """

    id: str = ""
    user_id: str
    username: str
    name: str
    bio: Optional[str] = None
    work: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def placeholder(cls, user_id: str) -> "Profile":
        """Stand-in for an author whose profile row could not be loaded."""
        return cls(user_id=user_id, username="unknown", name="Unknown User")

    @property
    def initial(self) -> str:
        return self.name[:1].upper() if self.name else "U"


class Post(Row):
    """A post (``posts``)."""

    id: str
    user_id: str
    content: str
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PostLike(Row):
    """A like joining a user to a post (``post_likes``)."""

    id: str = ""
    post_id: str
    user_id: str
    created_at: Optional[datetime] = None


class PostComment(Row):
    """A comment on a post (``post_comments``).

    ``parent_comment_id`` points at the comment being replied to; ``replies``
    is filled in client-side when the flat list is assembled into a tree.
    """

    id: str
    post_id: str
    user_id: str
    content: str
    parent_comment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    profile: Optional[Profile] = None
    replies: list["PostComment"] = Field(default_factory=list)


class Hashtag(Row):
    """A hashtag, unique by lower-cased name (``hashtags``)."""

    id: str
    name: str
    created_at: Optional[datetime] = None


class PostHashtag(Row):
    """Association of a post with a hashtag (``post_hashtags``)."""

    id: str = ""
    post_id: str
    hashtag_id: str
    created_at: Optional[datetime] = None


class Follow(Row):
    """Directed follow edge (``follows``)."""

    id: str = ""
    follower_id: str
    following_id: str
    created_at: Optional[datetime] = None


class Conversation(Row):
    """Two-party conversation (``conversations``)."""

    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConversationParticipant(Row):
    """Membership of a user in a conversation."""

    id: str = ""
    conversation_id: str
    user_id: str
    joined_at: Optional[datetime] = None


class Message(Row):
    """Direct message; may reference a shared post."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    shared_post_id: Optional[str] = None
    created_at: Optional[datetime] = None
    profile: Optional[Profile] = None


class GroupChat(Row):
    """N-party group chat (``group_chats``)."""

    id: str
    name: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GroupChatMember(Row):
    """Membership of a user in a group chat."""

    id: str = ""
    group_chat_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: Optional[datetime] = None
    profile: Optional[Profile] = None


class GroupChatMessage(Row):
    """Group chat message; may reference a shared post."""

    id: str
    group_chat_id: str
    sender_id: str
    content: str
    shared_post_id: Optional[str] = None
    created_at: Optional[datetime] = None
    profile: Optional[Profile] = None


class Notification(Row):
    """Notification addressed to ``user_id`` about something ``actor_id`` did."""

    id: str
    user_id: str
    type: NotificationType
    actor_id: Optional[str] = None
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    message: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None
    actor: Optional[Profile] = None


# =============================================================================
# Section 2: View Records
# =============================================================================


class FeedPost(Post):
    """Post enriched for display: author, counts and the viewer's own state."""

    profile: Profile
    likes_count: int = 0
    comments_count: int = 0
    is_liked: bool = False
    is_bookmarked: bool = False


class ConversationWithDetails(Conversation):
    """Conversation with participant profiles and the latest message."""

    participants: list[Profile] = Field(default_factory=list)
    last_message: Optional[Message] = None
    unread_count: int = 0


class GroupChatWithDetails(GroupChat):
    """Group chat with member profiles and the latest message."""

    members: list[Profile] = Field(default_factory=list)
    member_count: int = 0
    last_message: Optional[GroupChatMessage] = None


class ShareTarget(BaseModel):
    """A conversation a post can be shared into, labelled by the other person."""

    conversation_id: str
    participant: Profile


# =============================================================================
# Section 3: Session and Realtime Payloads
# =============================================================================


class AuthUser(BaseModel):
    """Authenticated account as reported by the auth API."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


class Session(BaseModel):
    """Access/refresh token pair for the signed-in user."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: Optional[AuthUser] = None


class ChangePayload(BaseModel):
    """A single row change delivered by the realtime feed.

    Attributes:
        schema_name: Database schema (``public``)
        table: Table name
        event_type: ``INSERT``, ``UPDATE`` or ``DELETE``
        new: Row after the change (empty for deletes)
        old: Row before the change (keys only, unless replica identity is full)
        commit_timestamp: When the change was committed
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_name: str = Field("public", alias="schema")
    table: str
    event_type: str = Field(alias="eventType")
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None

    @field_validator("commit_timestamp", mode="before")
    @classmethod
    def _coerce_commit_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


__all__ = [
    "Profile",
    "Post",
    "PostLike",
    "PostComment",
    "Hashtag",
    "PostHashtag",
    "Follow",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "GroupChat",
    "GroupChatMember",
    "GroupChatMessage",
    "Notification",
    "FeedPost",
    "ConversationWithDetails",
    "GroupChatWithDetails",
    "ShareTarget",
    "AuthUser",
    "Session",
    "ChangePayload",
]
