"""Online presence for one conversation channel."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Set

from .errors import SubscriptionError, WriteError
from .events import PresenceJoin, PresenceLeave, PresenceSync
from .transport import Channel, ChannelHub


logger = logging.getLogger("app.realtime.presence")


class PresenceState(str, Enum):
    DETACHED = "detached"
    JOINING = "joining"
    SYNCED = "synced"


class PresenceTracker:
    """
    Tracks which user ids are attached to ``presence:{channel_id}``.

    A ``sync`` snapshot replaces the online set wholesale; ``join`` and
    ``leave`` then adjust it one key at a time. The first snapshot moves the
    tracker to SYNCED and announces our own presence.
    """

    def __init__(
        self,
        hub: ChannelHub,
        owner: Optional[str] = None,
        on_change: Optional[Callable[["PresenceTracker"], None]] = None,
    ):
        self.hub = hub
        self.owner = owner
        self.on_change = on_change
        self.state = PresenceState.DETACHED
        self._channel: Optional[Channel] = None
        self._channel_id: Optional[str] = None
        self._user_id: Optional[str] = None
        self._online: Set[str] = set()
        self._generation = 0

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    @property
    def online_users(self) -> List[str]:
        return sorted(self._online)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    async def attach(self, channel_id: Optional[str], user_id: str) -> None:
        await self.detach()
        if channel_id is None:
            return

        self._generation += 1
        generation = self._generation
        self._channel_id = channel_id
        self._user_id = user_id
        self.state = PresenceState.JOINING

        channel = self.hub.channel(f"presence:{channel_id}", presence_key=user_id, owner=self.owner)
        channel.on_presence("sync", lambda event: self._on_sync(generation, event))
        channel.on_presence("join", lambda event: self._on_join(generation, event))
        channel.on_presence("leave", lambda event: self._on_leave(generation, event))
        self._channel = channel

        try:
            await channel.subscribe()
        except SubscriptionError as e:
            logger.error("Presence subscription failed: channel_id=%s, error=%s", channel_id, e)
            if generation == self._generation:
                self._reset()

    async def detach(self) -> None:
        """Release the subscription; the transport tells other observers we left."""
        self._generation += 1
        channel = self._channel
        self._reset()
        self._notify()
        if channel is not None:
            await channel.unsubscribe()

    def _reset(self) -> None:
        self._channel = None
        self._channel_id = None
        self._online = set()
        self.state = PresenceState.DETACHED

    def _on_sync(self, generation: int, event: PresenceSync):
        if generation != self._generation:
            return None
        self._online = set(event.state)
        self._notify()

        if self.state != PresenceState.JOINING:
            return None
        self.state = PresenceState.SYNCED
        # The hub runs the returned coroutine as a task
        return self._announce(generation)

    async def _announce(self, generation: int) -> None:
        channel = self._channel
        if generation != self._generation or channel is None:
            return
        try:
            await channel.track({
                "user_id": self._user_id,
                "online_at": datetime.now(timezone.utc).isoformat(),
            })
        except WriteError as e:
            logger.warning("Presence track failed: channel_id=%s, error=%s", self._channel_id, e)

    def _on_join(self, generation: int, event: PresenceJoin) -> None:
        if generation != self._generation or event.key in self._online:
            return
        self._online.add(event.key)
        self._notify()

    def _on_leave(self, generation: int, event: PresenceLeave) -> None:
        if generation != self._generation or event.key not in self._online:
            return
        self._online.discard(event.key)
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
