"""Profile page: a user's profile, posts and follow counts."""

import asyncio
from typing import Any

from socialsync.enrichment import enrich_posts
from socialsync.errors import SocialSyncError
from socialsync.follows import FollowGraph
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import FeedPost, Post, Profile
from socialsync.repository import Repository
from socialsync.utils import utc_now_iso

EDITABLE_FIELDS = frozenset({"name", "username", "bio", "work", "avatar_url", "cover_url"})


class ProfileView:
    """Everything shown on one user's profile page.

    State:
        profile: Loaded profile, None if the username is unknown
        posts: The user's posts, newest first, enriched
        followers_count: Number of followers
        following_count: Number of users followed
        loading: True while loading
    """

    def __init__(self, backend: IBackendClient):
        self.backend = backend
        self.profiles = Repository[Profile](backend, "profiles", Profile)
        self.graph = FollowGraph(backend)
        self.profile: Profile | None = None
        self.posts: list[FeedPost] = []
        self.followers_count = 0
        self.following_count = 0
        self.loading = False

    @property
    def is_own_profile(self) -> bool:
        return bool(self.profile and self.profile.user_id == self.backend.current_user_id)

    async def fetch_profile(self, user_id: str) -> Profile | None:
        return await self.profiles.first_by(user_id=user_id)

    async def load(self, username: str) -> Profile | None:
        """Load profile by username, then posts and follow counts.

        Unknown usernames and fetch errors leave the page empty.
        """
        self.loading = True
        self.profile = None
        self.posts = []
        self.followers_count = self.following_count = 0
        try:
            profile = await self.profiles.first_by(username=username)
            if profile is None:
                logger.info(f"No profile named {username!r}")
                return None
            self.profile = profile

            posts = await Repository[Post](self.backend, "posts", Post).find_by(
                user_id=profile.user_id, order_by="created_at", ascending=False
            )
            self.posts, self.followers_count, self.following_count = await asyncio.gather(
                enrich_posts(
                    self.backend, posts, self.backend.current_user_id, known_profile=profile
                ),
                self.graph.followers_count(profile.user_id),
                self.graph.following_count(profile.user_id),
            )
        except SocialSyncError:
            logger.exception(f"Error loading profile {username!r}")
        finally:
            self.loading = False
        return self.profile

    async def update_profile(self, **fields: Any) -> Profile:
        """Update the viewer's own profile.

        Args:
            **fields: Any of name, username, bio, work, avatar_url, cover_url

        Raises:
            ValueError: For fields that cannot be edited
            NotAuthenticatedError: If nobody is signed in
            BackendError: If the update fails (e.g. username taken)
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update profile fields: {', '.join(sorted(unknown))}")
        viewer_id = self.backend.require_user()

        rows = await self.profiles.update_where(
            {**fields, "updated_at": utc_now_iso()}, user_id=viewer_id
        )
        if not rows:
            raise SocialSyncError(f"No profile found for user {viewer_id}")
        updated = rows[0]
        if self.profile and self.profile.user_id == viewer_id:
            self.profile = updated
        logger.info(f"Updated profile fields: {', '.join(sorted(fields))}")
        return updated


__all__ = ["ProfileView", "EDITABLE_FIELDS"]
