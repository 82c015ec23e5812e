"""People and post search.

Blank queries clear the matching results without touching the backend.
"""

import asyncio

from socialsync.config import settings
from socialsync.enrichment import enrich_posts
from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import FeedPost, Post, Profile
from socialsync.query import Filter

USER_SEARCH_COLUMNS = ("name", "username", "bio")


def contains_pattern(query: str) -> str:
    """Case-insensitive substring pattern for ``ilike``."""
    return f"%{query.strip()}%"


class SearchView:
    """Search state for users and posts.

    State:
        users: Matching profiles
        posts: Matching posts, newest first, enriched
        loading: True while any search is running
    """

    def __init__(self, backend: IBackendClient, limit: int | None = None):
        self.backend = backend
        self.limit = limit or settings.search_limit
        self.users: list[Profile] = []
        self.posts: list[FeedPost] = []
        self.loading = False

    async def search_users(self, query: str) -> list[Profile]:
        """Profiles whose name, username or bio contains ``query``."""
        if not query.strip():
            self.users = []
            return self.users

        pattern = contains_pattern(query)
        self.loading = True
        try:
            result = await self.backend.execute(
                self.backend.table("profiles")
                .select("*")
                .or_(*(Filter(column, "ilike", pattern) for column in USER_SEARCH_COLUMNS))
                .limit(self.limit)
            )
            self.users = [Profile.model_validate(row) for row in result.data]
        except SocialSyncError:
            logger.exception(f"Error searching users for {query!r}")
        finally:
            self.loading = False
        return self.users

    async def search_posts(self, query: str) -> list[FeedPost]:
        """Posts whose content contains ``query``, newest first."""
        if not query.strip():
            self.posts = []
            return self.posts

        self.loading = True
        try:
            result = await self.backend.execute(
                self.backend.table("posts")
                .select("*")
                .ilike("content", contains_pattern(query))
                .order("created_at", ascending=False)
                .limit(self.limit)
            )
            posts = [Post.model_validate(row) for row in result.data]
            self.posts = await enrich_posts(self.backend, posts, self.backend.current_user_id)
        except SocialSyncError:
            logger.exception(f"Error searching posts for {query!r}")
            self.posts = []
        finally:
            self.loading = False
        return self.posts

    async def search(self, query: str) -> tuple[list[Profile], list[FeedPost]]:
        """Search users and posts concurrently."""
        users, posts = await asyncio.gather(self.search_users(query), self.search_posts(query))
        self.loading = False
        return users, posts

    def clear(self) -> None:
        self.users = []
        self.posts = []


__all__ = ["SearchView", "contains_pattern", "USER_SEARCH_COLUMNS"]
