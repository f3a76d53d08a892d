"""In-process publish/subscribe channel transport.

A ``ChannelHub`` fans out three kinds of events to ``Channel`` handles:

* row-change events emitted by the store after each committed mutation,
  filtered per listener by table, event type and an equality row filter;
* presence events (``sync``/``join``/``leave``) for subscribers that track
  a presence key;
* client broadcasts.

Delivery happens on the event loop in emit order. Async listeners are
scheduled as tasks so one slow listener never holds back later events.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from .errors import SubscriptionError, WriteError
from .events import (
    Broadcast,
    PresenceJoin,
    PresenceLeave,
    PresenceSync,
    event_type_of,
    parse_change,
    row_of,
)


logger = logging.getLogger("app.realtime.transport")

Listener = Callable[[Any], Optional[Awaitable[None]]]
StatusCallback = Callable[[str], Optional[Awaitable[None]]]

JOINING = "JOINING"
SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"
CHANNEL_ERROR = "CHANNEL_ERROR"


@dataclass(frozen=True)
class ChangeFilter:
    """Which row changes a listener wants: ``table``, ``event`` (or ``*``), optional ``column == value``."""

    table: str
    event: str = "*"
    column: Optional[str] = None
    value: Optional[str] = None

    def matches(self, table: str, event_type: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        if self.event != "*" and self.event != event_type:
            return False
        if self.column is not None and str(row.get(self.column)) != str(self.value):
            return False
        return True


class Channel:
    """Handle for one subscription to a named channel."""

    def __init__(
        self,
        hub: "ChannelHub",
        name: str,
        presence_key: Optional[str] = None,
        owner: Optional[str] = None,
    ):
        self.hub = hub
        self.name = name
        self.presence_key = presence_key
        self.owner = owner
        self.ref = uuid.uuid4().hex
        self.state = CLOSED
        self.tracked = False
        self._change_listeners: List[Tuple[ChangeFilter, Listener]] = []
        self._presence_listeners: Dict[str, List[Listener]] = {"sync": [], "join": [], "leave": []}
        self._broadcast_listeners: Dict[str, List[Listener]] = {}

    def __repr__(self) -> str:
        return f"<Channel {self.name} ref={self.ref[:8]} state={self.state}>"

    @property
    def is_joined(self) -> bool:
        return self.state == SUBSCRIBED

    def on_change(self, change_filter: ChangeFilter, callback: Listener) -> "Channel":
        self._change_listeners.append((change_filter, callback))
        return self

    def on_presence(self, kind: str, callback: Listener) -> "Channel":
        if kind not in self._presence_listeners:
            raise ValueError(f"Unknown presence event: {kind}")
        self._presence_listeners[kind].append(callback)
        return self

    def on_broadcast(self, event: str, callback: Listener) -> "Channel":
        self._broadcast_listeners.setdefault(event, []).append(callback)
        return self

    async def subscribe(self, on_status: Optional[StatusCallback] = None) -> "Channel":
        try:
            await self.hub._join(self)
        except SubscriptionError:
            self.state = CLOSED
            if on_status is not None:
                await _maybe_await(on_status(CHANNEL_ERROR))
            raise
        if on_status is not None:
            await _maybe_await(on_status(SUBSCRIBED))
        return self

    async def track(self, payload: Dict[str, Any]) -> None:
        """Publish this subscriber's presence under its presence key."""
        if not self.is_joined:
            raise WriteError(f"Cannot track presence on {self.name}: channel not joined")
        if self.presence_key is None:
            raise WriteError(f"Cannot track presence on {self.name}: no presence key")
        await self.hub._track(self, payload)

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Broadcast an event to the other subscribers of this channel."""
        if not self.is_joined:
            raise WriteError(f"Cannot broadcast on {self.name}: channel not joined")
        await self.hub.broadcast(self.name, event, payload, sender_ref=self.ref)

    async def unsubscribe(self) -> None:
        if self.state == CLOSED:
            return
        await self.hub._leave(self)

    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.hub.presence_state(self.name)

    def _wants_change(self, table: str, event_type: str, row: Dict[str, Any]) -> List[Listener]:
        return [cb for flt, cb in self._change_listeners if flt.matches(table, event_type, row)]


class ChannelHub:
    """Process-local channel registry and event fan-out."""

    def __init__(self):
        # channel name -> {subscription ref -> Channel}
        self._topics: Dict[str, Dict[str, Channel]] = {}
        # (channel name, owner) -> live Channel; at most one per pair
        self._registry: Dict[Tuple[str, str], Channel] = {}
        # channel name -> {presence key -> {subscription ref -> payload}}
        self._presence: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.relay = None

    def channel(
        self,
        name: str,
        presence_key: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Channel:
        return Channel(self, name, presence_key=presence_key, owner=owner)

    def channel_names(self) -> List[str]:
        return sorted(self._topics)

    def subscriber_count(self, name: str) -> int:
        return len(self._topics.get(name, {}))

    def presence_state(self, name: str) -> Dict[str, List[Dict[str, Any]]]:
        return {
            key: list(metas.values())
            for key, metas in self._presence.get(name, {}).items()
        }

    async def emit_change(
        self,
        table: str,
        event_type: str,
        new: Optional[Dict[str, Any]] = None,
        old: Optional[Dict[str, Any]] = None,
        relay: bool = True,
    ) -> None:
        """Validate a committed row change and deliver it to matching listeners."""
        try:
            event = parse_change(table, event_type, new=new, old=old)
        except (ValueError, ValidationError) as e:
            logger.warning("Dropping invalid change event %s/%s: %s", table, event_type, e)
            return

        self.dispatch_change(table, event)

        if relay and self.relay is not None:
            await self.relay.publish_change(table, event_type, new, old)

    def dispatch_change(self, table: str, event) -> int:
        """Deliver an already-validated change event; returns the number of listeners invoked."""
        event_type = event_type_of(event)
        row = row_of(event)
        delivered = 0
        for channels in list(self._topics.values()):
            for channel in list(channels.values()):
                for callback in channel._wants_change(table, event_type, row):
                    self._invoke(callback, event, channel)
                    delivered += 1
        return delivered

    async def broadcast(
        self,
        name: str,
        event: str,
        payload: Dict[str, Any],
        sender_ref: Optional[str] = None,
        relay: bool = True,
    ) -> None:
        message = Broadcast(event=event, payload=payload)
        for channel in list(self._topics.get(name, {}).values()):
            if channel.ref == sender_ref:
                continue
            for callback in channel._broadcast_listeners.get(event, []):
                self._invoke(callback, message, channel)

        if relay and self.relay is not None:
            await self.relay.publish_broadcast(name, event, payload)

    async def close(self) -> None:
        for channels in list(self._topics.values()):
            for channel in list(channels.values()):
                await channel.unsubscribe()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait until listener tasks scheduled so far have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _join(self, channel: Channel) -> None:
        if channel.state == SUBSCRIBED:
            return
        if not channel.name:
            raise SubscriptionError("Channel name is required")
        channel.state = JOINING

        if channel.owner is not None:
            previous = self._registry.get((channel.name, channel.owner))
            if previous is not None and previous is not channel:
                logger.info(
                    "Replacing live subscription: channel=%s, owner=%s",
                    channel.name,
                    channel.owner,
                )
                await previous.unsubscribe()
            self._registry[(channel.name, channel.owner)] = channel

        self._topics.setdefault(channel.name, {})[channel.ref] = channel
        channel.state = SUBSCRIBED

        logger.debug(
            "Channel joined: channel=%s, subscribers=%d",
            channel.name,
            len(self._topics[channel.name]),
        )

        self._deliver_presence(channel, "sync", PresenceSync(state=self.presence_state(channel.name)))

    async def _track(self, channel: Channel, payload: Dict[str, Any]) -> None:
        metas = self._presence.setdefault(channel.name, {}).setdefault(channel.presence_key, {})
        metas[channel.ref] = dict(payload, presence_ref=channel.ref)
        channel.tracked = True

        join = PresenceJoin(key=channel.presence_key, payload=payload)
        for subscriber in list(self._topics.get(channel.name, {}).values()):
            self._deliver_presence(subscriber, "join", join)

    async def _leave(self, channel: Channel) -> None:
        channel.state = CLOSED
        subscribers = self._topics.get(channel.name, {})
        subscribers.pop(channel.ref, None)

        if channel.owner is not None and self._registry.get((channel.name, channel.owner)) is channel:
            del self._registry[(channel.name, channel.owner)]

        if channel.tracked:
            channel.tracked = False
            keys = self._presence.get(channel.name, {})
            metas = keys.get(channel.presence_key, {})
            metas.pop(channel.ref, None)
            if not metas:
                keys.pop(channel.presence_key, None)
                leave = PresenceLeave(key=channel.presence_key)
                for subscriber in list(subscribers.values()):
                    self._deliver_presence(subscriber, "leave", leave)

        if not subscribers:
            self._topics.pop(channel.name, None)
            self._presence.pop(channel.name, None)

        logger.debug("Channel left: channel=%s, subscribers=%d", channel.name, len(subscribers))

    def _deliver_presence(self, channel: Channel, kind: str, event) -> None:
        for callback in channel._presence_listeners[kind]:
            self._invoke(callback, event, channel)

    def _invoke(self, callback: Listener, event, channel: Channel) -> None:
        try:
            result = callback(event)
        except Exception:
            logger.exception("Listener failed on channel %s", channel.name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async listener failed: %s", exc, exc_info=exc)


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result
