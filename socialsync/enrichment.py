"""Post enrichment: join posts with authors, counts and the viewer's likes.

Posts come back from the table API as bare rows. Before display each one needs
its author profile, like and comment counts, and whether the viewer liked it.
The four lookups are independent, so they run concurrently; the merge is a
keyed join and does not depend on the order results arrive in.
"""

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from socialsync.interfaces import IBackendClient
from socialsync.models import FeedPost, Post, Profile
from socialsync.query import QueryResult
from socialsync.utils import count_by, index_by, unique


def merge_post_details(
    posts: Sequence[Post],
    profiles: Iterable[Profile],
    like_rows: Iterable[Mapping[str, Any]],
    comment_rows: Iterable[Mapping[str, Any]],
    viewer_likes: Iterable[str] = (),
) -> list[FeedPost]:
    """Merge related rows into display records, keeping ``posts`` order.

    Args:
        posts: Posts to enrich
        profiles: Author profiles (any order, keyed by ``user_id``)
        like_rows: One row per like, each with ``post_id``
        comment_rows: One row per comment, each with ``post_id``
        viewer_likes: IDs of posts the viewer has liked

    Returns:
        One FeedPost per post. Authors without a profile get
        ``Profile.placeholder``; missing counts are 0.
    """
    profiles_by_user = index_by(profiles, "user_id")
    likes_count = count_by(like_rows, "post_id")
    comments_count = count_by(comment_rows, "post_id")
    liked = set(viewer_likes)

    return [
        FeedPost(
            **post.model_dump(),
            profile=profiles_by_user.get(post.user_id) or Profile.placeholder(post.user_id),
            likes_count=likes_count.get(post.id, 0),
            comments_count=comments_count.get(post.id, 0),
            is_liked=post.id in liked,
        )
        for post in posts
    ]


async def _no_rows() -> QueryResult:
    return QueryResult()


async def enrich_posts(
    backend: IBackendClient,
    posts: Sequence[Post],
    viewer_id: str | None,
    known_profile: Profile | None = None,
) -> list[FeedPost]:
    """Fetch related rows for ``posts`` concurrently and merge them.

    Args:
        backend: Backend client
        posts: Posts to enrich
        viewer_id: Signed-in viewer (None skips the viewer-likes lookup)
        known_profile: Author profile already in hand (profile page); skips the
            profile lookup and is used for every post

    Returns:
        Enriched posts in input order
    """
    if not posts:
        return []

    post_ids = [p.id for p in posts]
    user_ids = unique(p.user_id for p in posts)

    profiles_q = (
        _no_rows()
        if known_profile is not None
        else backend.execute(backend.table("profiles").select("*").in_("user_id", user_ids))
    )
    likes_q = backend.execute(backend.table("post_likes").select("post_id").in_("post_id", post_ids))
    comments_q = backend.execute(
        backend.table("post_comments").select("post_id").in_("post_id", post_ids)
    )
    viewer_q = (
        backend.execute(
            backend.table("post_likes")
            .select("post_id")
            .in_("post_id", post_ids)
            .eq("user_id", viewer_id)
        )
        if viewer_id
        else _no_rows()
    )

    profiles_res, likes_res, comments_res, viewer_res = await asyncio.gather(
        profiles_q, likes_q, comments_q, viewer_q
    )

    profiles = (
        [known_profile]
        if known_profile is not None
        else [Profile.model_validate(row) for row in profiles_res.data]
    )
    return merge_post_details(
        posts,
        profiles,
        likes_res.data,
        comments_res.data,
        (row["post_id"] for row in viewer_res.data),
    )


__all__ = ["merge_post_details", "enrich_posts"]
