"""socialsync - async client for a hosted social network backend.

This package wraps a hosted backend-as-a-service (table API, object storage,
password auth, realtime change feed) in one data-access object per view:
feed, comments, profiles, inbox, notifications, search, hashtags, follows and
uploads.

Example:
    >>> from socialsync import AsyncBackendClient, FeedView
    >>> import asyncio
    >>>
    >>> async def main():
    ...     async with AsyncBackendClient() as backend:
    ...         await backend.sign_in_with_password("ada@example.com", "secret")
    ...         feed = FeedView(backend)
    ...         await feed.fetch_page()
    ...         for post in feed.posts:
    ...             print(post.profile.username, post.content)
    >>>
    >>> asyncio.run(main())
"""

from socialsync.backend import AsyncBackendClient
from socialsync.comments import CommentThread, build_comment_tree
from socialsync.config import settings
from socialsync.feed import FeedView
from socialsync.follows import FollowGraph
from socialsync.hashtags import HashtagView, extract_hashtags
from socialsync.messaging import Inbox
from socialsync.models import (
    FeedPost,
    Message,
    Notification,
    Post,
    PostComment,
    Profile,
)
from socialsync.notifications import NotificationCenter
from socialsync.profiles import ProfileView
from socialsync.search import SearchView
from socialsync.uploads import Uploader

__version__ = "0.1.0"

__all__ = [
    # Main components
    "AsyncBackendClient",
    "FeedView",
    "CommentThread",
    "ProfileView",
    "FollowGraph",
    "HashtagView",
    "Inbox",
    "NotificationCenter",
    "SearchView",
    "Uploader",
    # Helpers
    "build_comment_tree",
    "extract_hashtags",
    # Configuration
    "settings",
    # Pydantic models
    "Post",
    "FeedPost",
    "Profile",
    "PostComment",
    "Message",
    "Notification",
]
