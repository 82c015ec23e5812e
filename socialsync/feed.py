"""Paginated home feed.

``FeedView`` holds the posts shown so far and pages through the ``posts``
table newest-first. A busy flag keeps a second fetch from starting while one
is in flight, so scrolling quickly can never load the same page twice.

Likes are reconciled with the backend before the local copy changes: the
insert/delete runs first, and only when it succeeds are ``is_liked`` and
``likes_count`` flipped together.

Example:
    >>> feed = FeedView(backend)
    >>> await feed.fetch_page()
    >>> while feed.has_more:
    ...     await feed.load_more()
    >>> await feed.toggle_like(feed.posts[0].id)
"""

from socialsync.comments import fetch_comments
from socialsync.config import settings
from socialsync.enrichment import enrich_posts
from socialsync.errors import SocialSyncError
from socialsync.hashtags import save_hashtags
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import FeedPost, Post, PostComment, PostLike
from socialsync.repository import Repository
from socialsync.telemetry import add_span_attributes, get_tracer

tracer = get_tracer(__name__)


def apply_like_toggle(post: FeedPost) -> FeedPost:
    """Flip ``is_liked`` and move ``likes_count`` by one in the same direction."""
    if post.is_liked:
        return post.model_copy(update={"is_liked": False, "likes_count": post.likes_count - 1})
    return post.model_copy(update={"is_liked": True, "likes_count": post.likes_count + 1})


class FeedView:
    """Newest-first feed with page-at-a-time loading.

    Args:
        backend: Backend client
        page_size: Posts per page (defaults to settings.page_size)

    State:
        posts: Posts loaded so far
        loading: True while a page is being fetched
        has_more: False once a short or empty page was seen, or after an error
        page: Index of the last page requested
    """

    def __init__(self, backend: IBackendClient, page_size: int | None = None):
        self.backend = backend
        self.page_size = page_size or settings.page_size
        self.posts: list[FeedPost] = []
        self.loading = False
        self.has_more = True
        self.page = 0
        self.bookmarks: set[str] = set()
        self._fetching = False
        self._refresh_pending = False

    def find(self, post_id: str) -> FeedPost | None:
        return next((p for p in self.posts if p.id == post_id), None)

    def _replace(self, updated: FeedPost) -> None:
        self.posts = [updated if p.id == updated.id else p for p in self.posts]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def fetch_page(self, page: int = 0, append: bool = False) -> list[FeedPost]:
        """Fetch one page and replace or extend ``posts``.

        Returns immediately, without a request, while another fetch is in
        flight. Errors are logged and end pagination.
        """
        if self._fetching:
            logger.debug(f"Feed fetch for page {page} skipped: another fetch in flight")
            return self.posts

        self._fetching = True
        self.loading = True
        start = page * self.page_size

        with tracer.start_as_current_span("feed.fetch_page") as span:
            add_span_attributes(span, {"page": page, "page_size": self.page_size, "append": append})
            try:
                result = await self.backend.execute(
                    self.backend.table("posts")
                    .select("*")
                    .order("created_at", ascending=False)
                    .range(start, start + self.page_size - 1)
                )
                rows = [Post.model_validate(row) for row in result.data]

                if rows:
                    enriched = await enrich_posts(self.backend, rows, self.backend.current_user_id)
                    enriched = [
                        p.model_copy(update={"is_bookmarked": True}) if p.id in self.bookmarks else p
                        for p in enriched
                    ]
                    self.posts = self.posts + enriched if append else enriched
                self.has_more = len(rows) == self.page_size
                logger.debug(f"Feed page {page}: {len(rows)} posts (has_more={self.has_more})")
            except SocialSyncError:
                logger.exception("Error fetching posts")
                self.has_more = False
            finally:
                self.loading = False
                self._fetching = False

        if self._refresh_pending:
            self._refresh_pending = False
            return await self.refresh()
        return self.posts

    async def load_more(self) -> list[FeedPost]:
        """Fetch the next page if there is one and nothing is in flight."""
        if not self.loading and self.has_more and not self._fetching:
            self.page += 1
            await self.fetch_page(self.page, append=True)
        return self.posts

    async def refresh(self) -> list[FeedPost]:
        """Start over from the first page.

        While another fetch is in flight the refresh is deferred until that
        fetch completes, so its result cannot land on a reset page counter.
        """
        if self._fetching:
            self._refresh_pending = True
            return self.posts
        self.page = 0
        self.has_more = True
        return await self.fetch_page(0, append=False)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_post(self, content: str, image_url: str | None = None) -> Post:
        """Publish a post, link its hashtags, then refresh the feed.

        The steps are not atomic: if linking hashtags fails the post stays
        published and the error is only logged.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            BackendError: If the insert fails
        """
        viewer_id = self.backend.require_user()
        post = await Repository[Post](self.backend, "posts", Post).create(
            {"user_id": viewer_id, "content": content, "image_url": image_url}
        )
        try:
            await save_hashtags(self.backend, post.id, content)
        except SocialSyncError:
            logger.exception(f"Error saving hashtags for post {post.id}")
        await self.refresh()
        return post

    async def delete_post(self, post_id: str) -> None:
        """Delete a post remotely, then drop it locally."""
        await Repository[Post](self.backend, "posts", Post).delete_where(id=post_id)
        self.posts = [p for p in self.posts if p.id != post_id]

    async def toggle_like(self, post_id: str) -> FeedPost | None:
        """Like or unlike a post.

        No-op (returns None) for an anonymous viewer or a post not in the
        feed. The local copy changes only after the backend accepted the
        change; a failure propagates and leaves it as it was.
        """
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return None
        post = self.find(post_id)
        if post is None:
            return None

        if post.is_liked:
            await Repository[PostLike](self.backend, "post_likes", PostLike).delete_where(
                post_id=post_id, user_id=viewer_id
            )
        else:
            await self.backend.execute(
                self.backend.table("post_likes").insert(
                    {"post_id": post_id, "user_id": viewer_id}, returning=False
                )
            )

        updated = apply_like_toggle(post)
        self._replace(updated)
        return updated

    def toggle_bookmark(self, post_id: str) -> FeedPost | None:
        """Flip the bookmark flag. Bookmarks only live in this view."""
        post = self.find(post_id)
        if post is None:
            return None
        if post.is_bookmarked:
            self.bookmarks.discard(post_id)
        else:
            self.bookmarks.add(post_id)
        updated = post.model_copy(update={"is_bookmarked": not post.is_bookmarked})
        self._replace(updated)
        return updated

    async def add_comment(
        self, post_id: str, content: str, parent_id: str | None = None
    ) -> PostComment:
        """Comment on a post and bump its local comment count.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            BackendError: If the insert fails
        """
        viewer_id = self.backend.require_user()
        comment = await Repository[PostComment](self.backend, "post_comments", PostComment).create(
            {
                "post_id": post_id,
                "user_id": viewer_id,
                "content": content,
                "parent_comment_id": parent_id,
            }
        )
        post = self.find(post_id)
        if post is not None:
            self._replace(post.model_copy(update={"comments_count": post.comments_count + 1}))
        return comment

    async def get_comments(self, post_id: str) -> list[PostComment]:
        """Flat comments with author profiles, oldest first; [] on error."""
        try:
            return await fetch_comments(self.backend, post_id)
        except SocialSyncError:
            logger.exception(f"Error fetching comments for post {post_id}")
            return []


__all__ = ["FeedView", "apply_like_toggle"]
