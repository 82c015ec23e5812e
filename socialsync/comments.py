"""Threaded comments.

Comments are stored flat with an optional ``parent_comment_id``. The thread
is assembled client-side: one map from ID to a copy of each comment, then one
pass attaching every comment to its parent. Comments whose parent is not in
the set (deleted, or on another page) are shown at the root.
"""

from collections.abc import Iterator, Sequence

from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import PostComment, Profile
from socialsync.repository import Repository
from socialsync.utils import index_by, unique

# Replies are offered on comments shallower than this
MAX_REPLY_DEPTH = 3

# Reply lists start expanded above this depth
AUTO_EXPAND_DEPTH = 2


def can_reply(depth: int) -> bool:
    return depth < MAX_REPLY_DEPTH


def expanded_by_default(depth: int) -> bool:
    return depth < AUTO_EXPAND_DEPTH


def build_comment_tree(comments: Sequence[PostComment]) -> list[PostComment]:
    """Assemble flat comments into root-level threads.

    Every comment whose parent is present ends up in that parent's
    ``replies`` exactly once; the rest are roots. A comment whose parent
    chain leads back to itself is a root too. Order within each level
    follows the input order. The input models are not modified.

    Example:
        >>> roots = build_comment_tree(flat)
        >>> [c.id for c in roots[0].replies]
        ['c2', 'c3']
    """
    nodes = {c.id: c.model_copy(update={"replies": []}) for c in comments}
    parents = {c.id: c.parent_comment_id for c in comments}
    roots: list[PostComment] = []

    for comment in comments:
        node = nodes[comment.id]
        parent_id = comment.parent_comment_id
        if parent_id and parent_id in nodes and not _in_cycle(comment.id, parents):
            nodes[parent_id].replies.append(node)
        else:
            roots.append(node)

    return roots


def _in_cycle(comment_id: str, parents: dict[str, str | None]) -> bool:
    seen = {comment_id}
    current = parents.get(comment_id)
    while current is not None and current in parents:
        if current in seen:
            return current == comment_id
        seen.add(current)
        current = parents[current]
    return False


def iter_thread(roots: Sequence[PostComment], depth: int = 0) -> Iterator[tuple[int, PostComment]]:
    """Walk a comment tree depth-first, yielding ``(depth, comment)``."""
    for comment in roots:
        yield depth, comment
        yield from iter_thread(comment.replies, depth + 1)


async def fetch_comments(backend: IBackendClient, post_id: str) -> list[PostComment]:
    """Get a post's comments, oldest first, each with its author profile.

    Raises:
        BackendError: If either lookup fails
    """
    comments = await Repository[PostComment](backend, "post_comments", PostComment).find_by(
        post_id=post_id, order_by="created_at"
    )
    if not comments:
        return []

    profiles = await Repository[Profile](backend, "profiles", Profile).find_in(
        "user_id", unique(c.user_id for c in comments)
    )
    by_user = index_by(profiles, "user_id")
    return [c.model_copy(update={"profile": by_user.get(c.user_id)}) for c in comments]


class CommentThread:
    """Comment section of one post.

    State:
        comments: Flat list as fetched
        roots: Assembled tree
        loading: True while loading
    """

    def __init__(self, backend: IBackendClient, post_id: str):
        self.backend = backend
        self.post_id = post_id
        self.comments: list[PostComment] = []
        self.roots: list[PostComment] = []
        self.loading = False

    @property
    def total(self) -> int:
        return len(self.comments)

    async def load(self) -> list[PostComment]:
        """Fetch and assemble the thread; errors leave it empty."""
        self.loading = True
        try:
            self.comments = await fetch_comments(self.backend, self.post_id)
        except SocialSyncError:
            logger.exception(f"Error fetching comments for post {self.post_id}")
            self.comments = []
        finally:
            self.loading = False
        self.roots = build_comment_tree(self.comments)
        return self.roots

    async def submit(self, content: str, parent_id: str | None = None) -> PostComment | None:
        """Post a comment or reply, then reload the thread.

        Blank content is ignored.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            BackendError: If the insert fails
        """
        if not content.strip():
            return None
        viewer_id = self.backend.require_user()
        comment = await Repository[PostComment](self.backend, "post_comments", PostComment).create(
            {
                "post_id": self.post_id,
                "user_id": viewer_id,
                "content": content.strip(),
                "parent_comment_id": parent_id,
            }
        )
        await self.load()
        return comment


__all__ = [
    "MAX_REPLY_DEPTH",
    "AUTO_EXPAND_DEPTH",
    "can_reply",
    "expanded_by_default",
    "build_comment_tree",
    "iter_thread",
    "fetch_comments",
    "CommentThread",
]
