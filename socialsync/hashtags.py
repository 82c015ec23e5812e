"""Hashtag extraction, persistence and the per-tag post listing."""

import re

from socialsync.enrichment import enrich_posts
from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import FeedPost, Hashtag, Post, PostHashtag
from socialsync.repository import Repository
from socialsync.utils import unique

HASHTAG_PATTERN = re.compile(r"#(\w+)")
_SPLIT_PATTERN = re.compile(r"(#\w+)")


def extract_hashtags(content: str) -> list[str]:
    """Get the distinct hashtags in ``content``, lower-cased, first-seen order.

    Example:
        >>> extract_hashtags("Hi #Foo #foo and #bar")
        ['foo', 'bar']
    """
    return unique(tag.lower() for tag in HASHTAG_PATTERN.findall(content))


def split_hashtags(content: str) -> list[tuple[str, str | None]]:
    """Split content into ``(text, tag)`` segments for rendering links.

    ``tag`` is the lower-cased hashtag for ``#word`` segments (linked to
    ``/hashtag/<tag>``) and None for plain text. Empty segments are dropped.

    Example:
        >>> split_hashtags("Loving #Python!")
        [('Loving ', None), ('#Python', 'python'), ('!', None)]
    """
    return [
        (part, part[1:].lower() if part.startswith("#") else None)
        for part in _SPLIT_PATTERN.split(content)
        if part
    ]


def hashtag_link(tag: str) -> str:
    return f"/hashtag/{tag.lower()}"


async def save_hashtags(backend: IBackendClient, post_id: str, content: str) -> list[str]:
    """Create missing hashtags and link them to ``post_id``.

    One tag at a time: look the tag up, insert it if missing, then upsert the
    post link. Not atomic; a failure leaves earlier tags linked.

    Returns:
        Tags that were linked
    """
    tags = extract_hashtags(content)
    hashtags = Repository[Hashtag](backend, "hashtags", Hashtag)
    linked: list[str] = []

    for name in tags:
        tag = await hashtags.first_by(name=name)
        if tag is None:
            tag = await hashtags.create({"name": name})
        await backend.execute(
            backend.table("post_hashtags").upsert(
                {"post_id": post_id, "hashtag_id": tag.id},
                on_conflict="post_id,hashtag_id",
                returning=False,
            )
        )
        linked.append(name)

    if linked:
        logger.debug(f"Linked {len(linked)} hashtags to post {post_id}")
    return linked


class HashtagView:
    """Posts carrying one hashtag, newest first.

    State:
        tag: Normalized tag being shown
        hashtag: The hashtag row, None if no post ever used the tag
        posts: Enriched posts
        loading: True while a load is running
    """

    def __init__(self, backend: IBackendClient):
        self.backend = backend
        self.tag: str | None = None
        self.hashtag: Hashtag | None = None
        self.posts: list[FeedPost] = []
        self.loading = False

    @property
    def post_count(self) -> int:
        return len(self.posts)

    async def load(self, tag: str) -> list[FeedPost]:
        """Resolve tag → post IDs → posts → enrichment.

        Fetch errors are logged and leave an empty listing.
        """
        self.tag = tag.lstrip("#").lower()
        self.hashtag = None
        self.posts = []
        self.loading = True
        try:
            hashtag = await Repository[Hashtag](self.backend, "hashtags", Hashtag).first_by(
                name=self.tag
            )
            if hashtag is None:
                return self.posts
            self.hashtag = hashtag

            links = await Repository[PostHashtag](self.backend, "post_hashtags", PostHashtag).find_by(
                hashtag_id=hashtag.id
            )
            post_ids = unique(link.post_id for link in links)
            posts = await Repository[Post](self.backend, "posts", Post).find_in(
                "id", post_ids, order_by="created_at", ascending=False
            )
            self.posts = await enrich_posts(self.backend, posts, self.backend.current_user_id)
        except SocialSyncError:
            logger.exception(f"Error fetching posts for #{self.tag}")
            self.posts = []
        finally:
            self.loading = False
        return self.posts


__all__ = [
    "HASHTAG_PATTERN",
    "extract_hashtags",
    "split_hashtags",
    "hashtag_link",
    "save_hashtags",
    "HashtagView",
]
