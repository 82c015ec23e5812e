"""Follow graph of the signed-in viewer."""

from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger
from socialsync.models import Follow
from socialsync.repository import Repository


class FollowGraph:
    """Who the viewer follows, plus follower/following counts for anyone.

    State:
        following_ids: IDs of users the viewer follows
        loading: True while a toggle is running
    """

    def __init__(self, backend: IBackendClient):
        self.backend = backend
        self.follows = Repository[Follow](backend, "follows", Follow)
        self.following_ids: set[str] = set()
        self.loading = False

    async def fetch_following(self) -> set[str]:
        """Load the viewer's followees; anonymous viewers follow nobody."""
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return self.following_ids
        try:
            rows = await self.follows.find_by(follower_id=viewer_id)
        except SocialSyncError:
            logger.exception("Error fetching following list")
            return self.following_ids
        self.following_ids = {row.following_id for row in rows}
        return self.following_ids

    def is_following(self, target_user_id: str) -> bool:
        return target_user_id in self.following_ids

    async def toggle_follow(self, target_user_id: str) -> bool | None:
        """Follow or unfollow ``target_user_id``.

        Returns:
            The new following state, or None when nothing was done (anonymous
            viewer, or the target is the viewer)

        Raises:
            BackendError: If the insert/delete fails; local state is unchanged
        """
        viewer_id = self.backend.current_user_id
        if not viewer_id or viewer_id == target_user_id:
            return None

        self.loading = True
        try:
            if self.is_following(target_user_id):
                await self.follows.delete_where(follower_id=viewer_id, following_id=target_user_id)
                self.following_ids = self.following_ids - {target_user_id}
            else:
                await self.backend.execute(
                    self.backend.table("follows").insert(
                        {"follower_id": viewer_id, "following_id": target_user_id},
                        returning=False,
                    )
                )
                self.following_ids = self.following_ids | {target_user_id}
        finally:
            self.loading = False
        return self.is_following(target_user_id)

    async def followers_count(self, user_id: str) -> int:
        return await self.follows.count_where(following_id=user_id)

    async def following_count(self, user_id: str) -> int:
        return await self.follows.count_where(follower_id=user_id)


__all__ = ["FollowGraph"]
