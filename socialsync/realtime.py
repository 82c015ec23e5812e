"""Realtime change-feed subscriptions.

Speaks the backend's Phoenix channel protocol over a websocket: every frame is
a JSON object with ``topic``, ``event``, ``payload`` and ``ref``. A channel is
joined with a ``phx_join`` frame listing the ``postgres_changes`` it wants;
the server then pushes ``postgres_changes`` frames whose ``payload.data``
holds the changed row.

Example:
    >>> realtime = backend.realtime()
    >>> channel = realtime.channel("messages")
    >>> channel.on_postgres_changes("INSERT", "messages", callback=on_message)
    >>> await channel.subscribe()
"""

import asyncio
import contextlib
import inspect
import itertools
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from socialsync.config import ChangeEvent, settings
from socialsync.logging import logger
from socialsync.metrics import errors_total, realtime_events_total
from socialsync.models import ChangePayload

ChangeCallback = Callable[[ChangePayload], Any]

PHOENIX_TOPIC = "phoenix"


@dataclass
class ChangeBinding:
    """One ``on_postgres_changes`` registration."""

    event: str
    table: str
    schema: str
    callback: ChangeCallback
    filter: str | None = None

    def to_config(self) -> dict[str, str]:
        config = {"event": self.event, "schema": self.schema, "table": self.table}
        if self.filter:
            config["filter"] = self.filter
        return config

    def matches(self, change: ChangePayload) -> bool:
        """Check table/event/schema, and an ``column=eq.value`` filter if set."""
        if change.table != self.table or change.schema_name != self.schema:
            return False
        if self.event != ChangeEvent.ALL and change.event_type != self.event:
            return False
        if self.filter:
            column, _, condition = self.filter.partition("=")
            op, _, expected = condition.partition(".")
            if op == "eq":
                row = change.new or change.old
                return str(row.get(column)) == expected
        return True


def change_from_message(message: dict[str, Any]) -> ChangePayload | None:
    """Convert a ``postgres_changes`` frame into a ChangePayload."""
    if message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    return ChangePayload(
        schema=data.get("schema", "public"),
        table=data.get("table", ""),
        eventType=data.get("type", ""),
        new=data.get("record") or {},
        old=data.get("old_record") or {},
        commit_timestamp=data.get("commit_timestamp"),
    )


class RealtimeChannel:
    """A subscription topic with its change bindings."""

    def __init__(self, client: "RealtimeClient", topic: str) -> None:
        self.topic = f"realtime:{topic}"
        self._client = client
        self.bindings: list[ChangeBinding] = []
        self.joined = False
        self.join_ref: str | None = None

    def on_postgres_changes(
        self,
        event: str,
        table: str,
        callback: ChangeCallback,
        schema: str = "public",
        filter: str | None = None,
    ) -> "RealtimeChannel":
        """Register ``callback`` for row changes on ``table``.

        Args:
            event: ``INSERT``, ``UPDATE``, ``DELETE`` or ``*``
            table: Table to watch
            callback: Sync or async callable receiving a ChangePayload
            schema: Database schema
            filter: Server-side row filter such as ``user_id=eq.<id>``
        """
        self.bindings.append(
            ChangeBinding(event=str(event), table=table, schema=schema, callback=callback, filter=filter)
        )
        return self

    def join_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [b.to_config() for b in self.bindings],
            }
        }
        if self._client.token:
            payload["access_token"] = self._client.token
        return payload

    async def subscribe(self) -> "RealtimeChannel":
        """Connect if needed and join the channel."""
        await self._client.connect()
        if self.joined:
            return self
        self.join_ref = await self._client.push(self.topic, "phx_join", self.join_payload())
        self.joined = True
        logger.debug(f"Joined {self.topic} ({len(self.bindings)} bindings)")
        return self

    async def unsubscribe(self) -> None:
        if not self.joined:
            return
        if self._client.connected:
            await self._client.push(self.topic, "phx_leave", {})
        self.joined = False
        logger.debug(f"Left {self.topic}")

    async def dispatch(self, message: dict[str, Any]) -> int:
        """Route one incoming frame to matching callbacks.

        Callback errors are logged and counted so one failing handler does not
        stop the reader.

        Returns:
            Number of callbacks invoked
        """
        change = change_from_message(message)
        if change is None:
            return 0

        realtime_events_total.labels(table=change.table, event=change.event_type).inc()

        delivered = 0
        for binding in self.bindings:
            if not binding.matches(change):
                continue
            try:
                result = binding.callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                errors_total.labels(error_type=type(exc).__name__, component="realtime").inc()
                logger.exception(f"Realtime callback failed for {change.table} {change.event_type}")
                continue
            delivered += 1
        return delivered


class RealtimeClient:
    """Single websocket shared by all channels.

    Args:
        url: Websocket endpoint (``wss://<project>/realtime/v1/websocket``)
        api_key: Public API key
        token: User access token sent when joining channels
        heartbeat_seconds: Interval between heartbeat frames
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        token: str | None = None,
        heartbeat_seconds: float | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.token = token
        self.heartbeat_seconds = heartbeat_seconds or settings.realtime_heartbeat_seconds
        self.channels: dict[str, RealtimeChannel] = {}
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._refs = itertools.count(1)
        self._rejoin: list[RealtimeChannel] = []

    @property
    def endpoint(self) -> str:
        return f"{self.url}?apikey={self.api_key}&vsn=1.0.0"

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def set_token(self, token: str | None) -> None:
        self.token = token

    def channel(self, topic: str) -> RealtimeChannel:
        """Get or create the channel for ``topic``."""
        channel = self.channels.get(f"realtime:{topic}")
        if channel is None:
            channel = RealtimeChannel(self, topic)
            self.channels[channel.topic] = channel
        return channel

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        """Leave and forget a channel; the socket closes with the last one."""
        await channel.unsubscribe()
        self.channels.pop(channel.topic, None)
        self._rejoin = [c for c in self._rejoin if c is not channel]
        if not self.channels:
            await self.close()

    async def connect(self) -> None:
        """Open the socket if needed.

        Channels that were joined when the server dropped the previous
        connection are joined again.
        """
        if self._ws is not None:
            return
        self._ws = await connect(self.endpoint)
        self._reader = asyncio.create_task(self._read_loop())
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Realtime connected to {self.url}")

        stale, self._rejoin = self._rejoin, []
        for channel in stale:
            await channel.subscribe()

    async def push(self, topic: str, event: str, payload: dict[str, Any]) -> str:
        """Send one frame and return its ref."""
        if self._ws is None:
            raise ConnectionError("Realtime socket is not connected")
        ref = str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        await self._ws.send(json.dumps(frame))
        return ref

    async def route(self, message: dict[str, Any]) -> int:
        """Hand a decoded frame to the channel it is addressed to."""
        topic = message.get("topic")
        if message.get("event") == "phx_reply":
            status = (message.get("payload") or {}).get("status")
            if status != "ok":
                logger.warning(f"Realtime {topic} replied {status}: {message.get('payload')}")
            return 0
        channel = self.channels.get(topic or "")
        if channel is None:
            return 0
        return await channel.dispatch(message)

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            raise ConnectionError("Realtime socket is not connected")
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring malformed realtime frame: {raw!r:.200}")
                    continue
                await self.route(message)
        except ConnectionClosed as exc:
            logger.warning(f"Realtime connection closed: {exc}")
        self._drop(ws)

    def _drop(self, ws: ClientConnection) -> None:
        """Forget a socket the server closed so the next connect() reopens it."""
        if self._ws is not ws:
            return
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        self._ws = None
        self._heartbeat = None
        self._reader = None
        self._rejoin = [c for c in self.channels.values() if c.joined]
        for channel in self._rejoin:
            channel.joined = False
        logger.warning(f"Realtime disconnected by server; {len(self._rejoin)} channels to rejoin")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                await self.push(PHOENIX_TOPIC, "heartbeat", {})
            except (ConnectionClosed, ConnectionError):
                logger.debug("Heartbeat stopped: socket closed")
                return

    async def close(self) -> None:
        """Stop background tasks and close the socket."""
        for task in (self._heartbeat, self._reader):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._heartbeat = None
        self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            logger.info("Realtime disconnected")
        self._rejoin = []
        for channel in self.channels.values():
            channel.joined = False


__all__ = [
    "ChangeBinding",
    "RealtimeChannel",
    "RealtimeClient",
    "change_from_message",
]
