"""Typing indicators: observe other participants, announce our own with expiry."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from app.core.config import settings

from .errors import FetchError, SubscriptionError, WriteError
from .events import TypingDeleted
from .schemas import TypingUser
from .store import ChatStore
from .transport import Channel, ChangeFilter, ChannelHub


logger = logging.getLogger("app.realtime.typing")


class TypingIndicatorCoordinator:
    """
    Per-channel typing state for one user.

    ``set_typing(True)`` upserts our typing row and (re)arms a single expiry
    slot; when it fires the row is deleted. Only the latest call's timer
    survives. Rows of other users arriving through the transport maintain
    ``typing_users``.
    """

    def __init__(
        self,
        store: ChatStore,
        hub: ChannelHub,
        owner: Optional[str] = None,
        timeout: Optional[float] = None,
        on_change: Optional[Callable[["TypingIndicatorCoordinator"], None]] = None,
    ):
        self.store = store
        self.hub = hub
        self.owner = owner
        self.timeout = settings.TYPING_TIMEOUT_SECONDS if timeout is None else timeout
        self.on_change = on_change
        self._channel: Optional[Channel] = None
        self._channel_id: Optional[str] = None
        self._user_id: Optional[str] = None
        self._typing: Dict[str, TypingUser] = {}
        self._expiry: Optional[asyncio.TimerHandle] = None
        self._signal = 0
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    @property
    def typing_users(self) -> List[TypingUser]:
        return [user.model_copy() for user in self._typing.values()]

    @property
    def expiry_pending(self) -> bool:
        return self._expiry is not None

    async def attach(self, channel_id: Optional[str], current_user_id: str) -> None:
        await self.detach()
        if channel_id is None:
            return

        self._generation += 1
        generation = self._generation
        self._channel_id = channel_id
        self._user_id = current_user_id

        channel = self.hub.channel(f"typing:{channel_id}", owner=self.owner)
        channel.on_change(
            ChangeFilter(table="typing_status", event="*", column="channel_id", value=channel_id),
            lambda event: self._on_row_change(generation, event),
        )
        self._channel = channel

        try:
            await channel.subscribe()
        except SubscriptionError as e:
            logger.error("Typing subscription failed: channel_id=%s, error=%s", channel_id, e)
            if generation == self._generation:
                self._channel = None

    async def detach(self) -> None:
        """Release the subscription and the local expiry slot; the store row is left alone."""
        self._generation += 1
        self._signal += 1
        channel = self._channel
        self._cancel_expiry()
        self._channel = None
        self._channel_id = None
        self._typing = {}
        self._notify()
        if channel is not None:
            await channel.unsubscribe()

    async def set_typing(self, is_typing: bool) -> None:
        """Announce (True) or withdraw (False) our typing status in the active channel."""
        channel_id, user_id = self._channel_id, self._user_id
        if channel_id is None or user_id is None:
            return

        self._signal += 1
        signal = self._signal
        generation = self._generation
        self._cancel_expiry()

        if not is_typing:
            try:
                await self.store.delete_typing(channel_id, user_id)
            except WriteError as e:
                logger.warning("Typing clear failed: channel_id=%s, error=%s", channel_id, e)
            return

        try:
            await self.store.upsert_typing(channel_id, user_id, True)
        except WriteError as e:
            logger.warning("Typing upsert failed: channel_id=%s, error=%s", channel_id, e)

        # A later call (or a channel switch) owns the slot now
        if signal != self._signal or generation != self._generation:
            return
        self._cancel_expiry()
        loop = asyncio.get_running_loop()
        self._expiry = loop.call_later(self.timeout, self._expire, channel_id, user_id)

    def _expire(self, channel_id: str, user_id: str) -> None:
        self._expiry = None
        task = asyncio.create_task(self._delete_row(channel_id, user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _delete_row(self, channel_id: str, user_id: str) -> None:
        try:
            await self.store.delete_typing(channel_id, user_id)
            logger.debug("Typing expired: channel_id=%s, user_id=%s", channel_id, user_id)
        except WriteError as e:
            logger.warning("Typing expiry delete failed: channel_id=%s, error=%s", channel_id, e)

    async def wait_idle(self) -> None:
        """Wait for expiry deletions that are already running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None

    def _on_row_change(self, generation: int, event):
        if generation != self._generation:
            return None

        if isinstance(event, TypingDeleted):
            self._remove(event.old.user_id)
            return None

        record = event.record
        if not record.is_typing or record.user_id == self._user_id:
            self._remove(record.user_id)
            return None

        if record.user_id in self._typing:
            return None
        self._typing[record.user_id] = TypingUser(user_id=record.user_id)
        self._notify()
        # The hub runs the returned coroutine as a task
        return self._resolve_name(generation, record.user_id)

    async def _resolve_name(self, generation: int, user_id: str) -> None:
        try:
            profile = await self.store.fetch_profile(user_id)
        except FetchError as e:
            logger.debug("Display name lookup failed for typing user %s: %s", user_id, e)
            return

        user = self._typing.get(user_id)
        if generation != self._generation or user is None or profile is None:
            return
        user.display_name = profile.display_name
        self._notify()

    def _remove(self, user_id: str) -> None:
        if self._typing.pop(user_id, None) is not None:
            self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
