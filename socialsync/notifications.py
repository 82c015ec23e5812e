"""Viewer notifications with unread tracking and live refresh."""

from socialsync.config import ChangeEvent, settings
from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient, IRealtimeChannel, IRealtimeClient
from socialsync.logging import logger
from socialsync.metrics import refetches_total
from socialsync.models import ChangePayload, Notification, Profile
from socialsync.repository import Repository
from socialsync.utils import index_by, unique


class NotificationCenter:
    """Latest notifications addressed to the viewer.

    Args:
        backend: Backend client
        realtime: Realtime client for ``watch()`` (defaults to the backend's)

    State:
        notifications: Newest first, each with its actor profile
        unread_count: Number of unread notifications
        loading: True while fetching
    """

    def __init__(self, backend: IBackendClient, realtime: IRealtimeClient | None = None):
        self.backend = backend
        self._realtime = realtime
        self.repo = Repository[Notification](backend, "notifications", Notification)
        self.notifications: list[Notification] = []
        self.unread_count = 0
        self.loading = False
        self._channel: IRealtimeChannel | None = None

    async def fetch(self, limit: int | None = None) -> list[Notification]:
        """Reload the newest notifications; errors keep the current list."""
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return self.notifications

        self.loading = True
        try:
            rows = await self.repo.find_by(
                user_id=viewer_id,
                order_by="created_at",
                ascending=False,
                limit=limit or settings.notifications_limit,
            )
            actor_ids = unique(n.actor_id for n in rows if n.actor_id)
            actors = index_by(
                await Repository[Profile](self.backend, "profiles", Profile).find_in(
                    "user_id", actor_ids
                ),
                "user_id",
            )
            self.notifications = [
                n.model_copy(update={"actor": actors.get(n.actor_id)}) for n in rows
            ]
            self.unread_count = sum(1 for n in self.notifications if not n.read)
        except SocialSyncError:
            logger.exception("Error fetching notifications")
        finally:
            self.loading = False
        return self.notifications

    async def mark_as_read(self, notification_id: str) -> None:
        """Mark one notification read; the unread count never goes below 0."""
        await self.repo.update_where({"read": True}, id=notification_id)
        was_unread = any(n.id == notification_id and not n.read for n in self.notifications)
        self.notifications = [
            n.model_copy(update={"read": True}) if n.id == notification_id else n
            for n in self.notifications
        ]
        if was_unread:
            self.unread_count = max(0, self.unread_count - 1)

    async def mark_all_as_read(self) -> None:
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return
        await self.repo.update_where({"read": True}, user_id=viewer_id)
        self.notifications = [n.model_copy(update={"read": True}) for n in self.notifications]
        self.unread_count = 0

    async def _on_insert(self, change: ChangePayload) -> None:
        refetches_total.labels(view="notifications").inc()
        await self.fetch()

    async def watch(self) -> None:
        """Refetch whenever a notification for the viewer is inserted."""
        viewer_id = self.backend.current_user_id
        if not viewer_id or self._channel is not None:
            return
        realtime = self._realtime or self.backend.realtime()
        self._realtime = realtime
        self._channel = realtime.channel("notifications-realtime").on_postgres_changes(
            ChangeEvent.INSERT,
            "notifications",
            callback=self._on_insert,
            filter=f"user_id=eq.{viewer_id}",
        )
        await self._channel.subscribe()

    async def unwatch(self) -> None:
        if self._channel is None or self._realtime is None:
            return
        await self._realtime.remove_channel(self._channel)
        self._channel = None


__all__ = ["NotificationCenter"]
