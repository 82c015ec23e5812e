"""Direct messages and group chats.

``Inbox`` lists the viewer's conversations and group chats (each with member
profiles and the latest message), reads and sends messages, starts
conversations, creates groups and shares posts. ``watch()`` subscribes to new
message inserts and refetches the affected list whenever one arrives.

Related rows are fetched per conversation concurrently and joined by key;
the backend's embedded-resource syntax is not used, so each table is read
with a plain filter.
"""

import asyncio
from collections.abc import Iterable, Sequence

from socialsync.config import ChangeEvent, MemberRole, settings
from socialsync.errors import SocialSyncError
from socialsync.interfaces import IBackendClient, IRealtimeChannel, IRealtimeClient
from socialsync.logging import logger
from socialsync.metrics import refetches_total
from socialsync.models import (
    ChangePayload,
    Conversation,
    ConversationParticipant,
    ConversationWithDetails,
    GroupChat,
    GroupChatMember,
    GroupChatMessage,
    GroupChatWithDetails,
    Message,
    Profile,
    ShareTarget,
)
from socialsync.repository import Repository
from socialsync.utils import index_by, truncate, unique, utc_now_iso

SHARE_PREVIEW_LENGTH = 50


def share_message_text(post_content: str) -> str:
    """Message body used when a post is shared into a conversation.

    Example:
        >>> share_message_text("Hello world")
        'Check out this post: Hello world...'
    """
    return f"Check out this post: {truncate(post_content, SHARE_PREVIEW_LENGTH)}..."


class Inbox:
    """The viewer's conversations and group chats.

    Args:
        backend: Backend client
        realtime: Realtime client for ``watch()`` (defaults to the backend's)

    State:
        conversations: Conversations, most recently active first
        group_chats: Group chats, most recently active first
        loading: True while conversations are being fetched
    """

    def __init__(self, backend: IBackendClient, realtime: IRealtimeClient | None = None):
        self.backend = backend
        self._realtime = realtime
        self.conversations: list[ConversationWithDetails] = []
        self.group_chats: list[GroupChatWithDetails] = []
        self.loading = False
        self._channels: list[IRealtimeChannel] = []

        self.participants = Repository[ConversationParticipant](
            backend, "conversation_participants", ConversationParticipant
        )
        self.members = Repository[GroupChatMember](backend, "group_chat_members", GroupChatMember)
        self.profiles = Repository[Profile](backend, "profiles", Profile)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _profiles_by_user(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        profiles = await self.profiles.find_in("user_id", unique(user_ids))
        return index_by(profiles, "user_id")

    async def _latest(self, table: str, column: str, parent_id: str) -> dict | None:
        result = await self.backend.execute(
            self.backend.table(table)
            .select("*")
            .eq(column, parent_id)
            .order("created_at", ascending=False)
            .limit(1)
            .maybe_single()
        )
        return result.first()

    async def _touch(self, table: str, row_id: str) -> None:
        await self.backend.execute(
            self.backend.table(table).update({"updated_at": utc_now_iso()}, returning=False).eq("id", row_id)
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def fetch_conversations(self) -> list[ConversationWithDetails]:
        """Reload conversations; anonymous viewers and errors give an empty list."""
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return self.conversations

        self.loading = True
        try:
            mine = await self.participants.find_by(user_id=viewer_id)
            if not mine:
                self.conversations = []
                return self.conversations

            conversations = await Repository[Conversation](
                self.backend, "conversations", Conversation
            ).find_in(
                "id",
                unique(p.conversation_id for p in mine),
                order_by="updated_at",
                ascending=False,
            )

            details = await asyncio.gather(
                *(
                    asyncio.gather(
                        self.participants.find_by(conversation_id=conv.id),
                        self._latest("messages", "conversation_id", conv.id),
                    )
                    for conv in conversations
                )
            )

            user_ids = [p.user_id for parts, _ in details for p in parts]
            user_ids += [last["sender_id"] for _, last in details if last]
            profiles = await self._profiles_by_user(user_ids)

            self.conversations = [
                ConversationWithDetails(
                    **conv.model_dump(),
                    participants=[profiles[p.user_id] for p in parts if p.user_id in profiles],
                    last_message=(
                        Message(**last, profile=profiles.get(last["sender_id"])) if last else None
                    ),
                )
                for conv, (parts, last) in zip(conversations, details)
            ]
        except SocialSyncError:
            logger.exception("Error fetching conversations")
        finally:
            self.loading = False
        return self.conversations

    async def conversation_messages(self, conversation_id: str) -> list[Message]:
        """Messages of one conversation, oldest first, with sender profiles."""
        try:
            messages = await Repository[Message](self.backend, "messages", Message).find_by(
                conversation_id=conversation_id, order_by="created_at"
            )
            profiles = await self._profiles_by_user(m.sender_id for m in messages)
        except SocialSyncError:
            logger.exception(f"Error fetching messages for conversation {conversation_id}")
            return []
        return [m.model_copy(update={"profile": profiles.get(m.sender_id)}) for m in messages]

    async def send_message(
        self, conversation_id: str, content: str, shared_post_id: str | None = None
    ) -> Message:
        """Send a message, then mark the conversation as recently active.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            BackendError: If the insert fails
        """
        viewer_id = self.backend.require_user()
        message = await Repository[Message](self.backend, "messages", Message).create(
            {
                "conversation_id": conversation_id,
                "sender_id": viewer_id,
                "content": content,
                "shared_post_id": shared_post_id,
            }
        )
        await self._touch("conversations", conversation_id)
        return message

    async def start_conversation(self, target_user_id: str) -> str:
        """Get the conversation with ``target_user_id``, creating it if needed.

        Returns:
            Conversation ID

        Raises:
            ValueError: If the target is the viewer
            NotAuthenticatedError: If nobody is signed in
            BackendError: If creating the conversation fails
        """
        viewer_id = self.backend.require_user()
        if target_user_id == viewer_id:
            raise ValueError("Cannot start a conversation with yourself")

        mine = await self.participants.find_by(user_id=viewer_id)
        if mine:
            existing = await self.backend.execute(
                self.backend.table("conversation_participants")
                .select("conversation_id")
                .in_("conversation_id", unique(p.conversation_id for p in mine))
                .eq("user_id", target_user_id)
                .limit(1)
            )
            row = existing.first()
            if row:
                return row["conversation_id"]

        conversation = await Repository[Conversation](
            self.backend, "conversations", Conversation
        ).create({})
        await self.participants.create_many(
            [
                {"conversation_id": conversation.id, "user_id": viewer_id},
                {"conversation_id": conversation.id, "user_id": target_user_id},
            ]
        )
        logger.info(f"Started conversation {conversation.id} with {target_user_id}")
        await self.fetch_conversations()
        return conversation.id

    # ------------------------------------------------------------------
    # Group chats
    # ------------------------------------------------------------------

    async def fetch_group_chats(self) -> list[GroupChatWithDetails]:
        """Reload group chats; anonymous viewers and errors give an empty list."""
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return self.group_chats

        try:
            memberships = await self.members.find_by(user_id=viewer_id)
            if not memberships:
                self.group_chats = []
                return self.group_chats

            groups = await Repository[GroupChat](self.backend, "group_chats", GroupChat).find_in(
                "id",
                unique(m.group_chat_id for m in memberships),
                order_by="updated_at",
                ascending=False,
            )

            details = await asyncio.gather(
                *(
                    asyncio.gather(
                        self.members.find_by(group_chat_id=group.id),
                        self._latest("group_chat_messages", "group_chat_id", group.id),
                    )
                    for group in groups
                )
            )

            user_ids = [m.user_id for members, _ in details for m in members]
            user_ids += [last["sender_id"] for _, last in details if last]
            profiles = await self._profiles_by_user(user_ids)

            self.group_chats = [
                GroupChatWithDetails(
                    **group.model_dump(),
                    members=[profiles[m.user_id] for m in members if m.user_id in profiles],
                    member_count=len(members),
                    last_message=(
                        GroupChatMessage(**last, profile=profiles.get(last["sender_id"]))
                        if last
                        else None
                    ),
                )
                for group, (members, last) in zip(groups, details)
            ]
        except SocialSyncError:
            logger.exception("Error fetching group chats")
        return self.group_chats

    async def group_messages(self, group_chat_id: str) -> list[GroupChatMessage]:
        """Messages of one group chat, oldest first, with sender profiles."""
        try:
            messages = await Repository[GroupChatMessage](
                self.backend, "group_chat_messages", GroupChatMessage
            ).find_by(group_chat_id=group_chat_id, order_by="created_at")
            profiles = await self._profiles_by_user(m.sender_id for m in messages)
        except SocialSyncError:
            logger.exception(f"Error fetching messages for group {group_chat_id}")
            return []
        return [m.model_copy(update={"profile": profiles.get(m.sender_id)}) for m in messages]

    async def send_group_message(
        self, group_chat_id: str, content: str, shared_post_id: str | None = None
    ) -> GroupChatMessage:
        """Send to a group, then mark the group as recently active."""
        viewer_id = self.backend.require_user()
        message = await Repository[GroupChatMessage](
            self.backend, "group_chat_messages", GroupChatMessage
        ).create(
            {
                "group_chat_id": group_chat_id,
                "sender_id": viewer_id,
                "content": content,
                "shared_post_id": shared_post_id,
            }
        )
        await self._touch("group_chats", group_chat_id)
        return message

    async def create_group_chat(self, name: str, member_ids: Sequence[str]) -> str:
        """Create a group with the viewer as admin and ``member_ids`` as members.

        Returns:
            Group chat ID

        Raises:
            ValueError: If ``name`` is blank
            NotAuthenticatedError: If nobody is signed in
            BackendError: If any insert fails (earlier inserts are kept)
        """
        if not name.strip():
            raise ValueError("Group name must not be empty")
        viewer_id = self.backend.require_user()

        group = await Repository[GroupChat](self.backend, "group_chats", GroupChat).create(
            {"name": name.strip(), "created_by": viewer_id}
        )
        await self.members.create(
            {"group_chat_id": group.id, "user_id": viewer_id, "role": MemberRole.ADMIN}
        )
        others = [uid for uid in unique(member_ids) if uid != viewer_id]
        await self.members.create_many(
            {"group_chat_id": group.id, "user_id": uid, "role": MemberRole.MEMBER} for uid in others
        )
        logger.info(f"Created group chat {group.id} with {len(others)} members")
        await self.fetch_group_chats()
        return group.id

    async def directory(self, limit: int | None = None) -> list[Profile]:
        """Other users' profiles, for picking group members."""
        query = self.backend.table("profiles").select("*").limit(limit or settings.users_directory_limit)
        viewer_id = self.backend.current_user_id
        if viewer_id:
            query.neq("user_id", viewer_id)
        try:
            result = await self.backend.execute(query)
        except SocialSyncError:
            logger.exception("Error fetching user directory")
            return []
        return [Profile.model_validate(row) for row in result.data]

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def share_targets(self) -> list[ShareTarget]:
        """Conversations a post can be shared into, labelled by the other person."""
        viewer_id = self.backend.current_user_id
        if not viewer_id:
            return []
        try:
            mine = await self.participants.find_by(user_id=viewer_id)
            if not mine:
                return []
            result = await self.backend.execute(
                self.backend.table("conversation_participants")
                .select("conversation_id,user_id")
                .in_("conversation_id", unique(p.conversation_id for p in mine))
                .neq("user_id", viewer_id)
            )
            profiles = await self._profiles_by_user(row["user_id"] for row in result.data)
        except SocialSyncError:
            logger.exception("Error fetching share targets")
            return []

        return [
            ShareTarget(conversation_id=row["conversation_id"], participant=profiles[row["user_id"]])
            for row in result.data
            if row["user_id"] in profiles
        ]

    async def share_post(self, conversation_id: str, post_id: str, post_content: str) -> Message:
        """Send a post preview into a conversation."""
        return await self.send_message(
            conversation_id, share_message_text(post_content), shared_post_id=post_id
        )

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def _on_message(self, change: ChangePayload) -> None:
        refetches_total.labels(view="conversations").inc()
        await self.fetch_conversations()

    async def _on_group_message(self, change: ChangePayload) -> None:
        refetches_total.labels(view="group_chats").inc()
        await self.fetch_group_chats()

    async def watch(self) -> None:
        """Refetch lists whenever a new direct or group message is inserted."""
        if self._channels:
            return
        realtime = self._realtime or self.backend.realtime()
        self._realtime = realtime
        messages = realtime.channel("messages-realtime").on_postgres_changes(
            ChangeEvent.INSERT, "messages", callback=self._on_message
        )
        groups = realtime.channel("group-messages-realtime").on_postgres_changes(
            ChangeEvent.INSERT, "group_chat_messages", callback=self._on_group_message
        )
        self._channels = [messages, groups]
        for channel in self._channels:
            await channel.subscribe()

    async def unwatch(self) -> None:
        if self._realtime is None:
            return
        for channel in self._channels:
            await self._realtime.remove_channel(channel)
        self._channels = []


__all__ = ["Inbox", "share_message_text", "SHARE_PREVIEW_LENGTH"]
