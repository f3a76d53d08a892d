"""Live, ordered message stream for one conversation channel."""

import asyncio
import logging
from typing import Callable, List, Optional, Set

from .errors import FetchError, SubscriptionError, WriteError
from .events import MessageInserted
from .schemas import ChatMessage, MessageRecord
from .store import ChatStore
from .transport import Channel, ChangeFilter, ChannelHub


logger = logging.getLogger("app.realtime.messages")


class MessageStreamManager:
    """
    Keeps the enriched message history of the active channel.

    The initial load fetches the whole history oldest first and joins sender
    profiles in one batched lookup. Inserts delivered by the transport are
    appended in arrival order; each one then gets its own profile lookup
    which fills ``profiles`` in when it resolves. Inserts that arrive while
    the initial load is running are held back and appended after it.

    Every attach bumps a generation counter. Completions that belong to an
    earlier generation are discarded, so a slow load or profile lookup for
    a previous channel never touches the current one.
    """

    def __init__(
        self,
        store: ChatStore,
        hub: ChannelHub,
        owner: Optional[str] = None,
        on_change: Optional[Callable[["MessageStreamManager"], None]] = None,
    ):
        self.store = store
        self.hub = hub
        self.owner = owner
        self.on_change = on_change
        self._channel_id: Optional[str] = None
        self._channel: Optional[Channel] = None
        self._messages: List[ChatMessage] = []
        self._ids: Set[str] = set()
        self._pending: List[MessageRecord] = []
        self._loading = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel_id

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    async def attach(self, channel_id: Optional[str]) -> None:
        """Switch to ``channel_id`` (or detach with None) and load its history."""
        self._generation += 1
        generation = self._generation

        previous = self._channel
        self._channel = None
        self._channel_id = channel_id
        self._messages = []
        self._ids = set()
        self._pending = []
        self._loading = channel_id is not None
        self._cancel_tasks()
        self._notify()

        if previous is not None:
            await previous.unsubscribe()

        if channel_id is None or generation != self._generation:
            return

        channel = self.hub.channel(f"messages:{channel_id}", owner=self.owner)
        channel.on_change(
            ChangeFilter(table="messages", event="INSERT", column="channel_id", value=channel_id),
            lambda event: self._on_insert(generation, event),
        )
        self._channel = channel

        # Subscribe before loading so inserts committed during the load are held, not lost
        try:
            await channel.subscribe()
        except SubscriptionError as e:
            logger.error("Message subscription failed: channel_id=%s, error=%s", channel_id, e)
            if generation == self._generation:
                self._channel = None

        if generation != self._generation:
            await channel.unsubscribe()
            return

        await self._load(generation, channel_id)

    async def detach(self) -> None:
        await self.attach(None)

    async def send(
        self,
        content: str,
        sender_id: str,
        image_url: Optional[str] = None,
    ) -> Optional[MessageRecord]:
        """Insert a message into the active channel; the stream picks it up from the transport."""
        if self._channel_id is None:
            return None
        try:
            return await self.store.insert_message(self._channel_id, sender_id, content, image_url=image_url)
        except WriteError as e:
            logger.error("Error sending message: channel_id=%s, error=%s", self._channel_id, e)
            return None

    async def _load(self, generation: int, channel_id: str) -> None:
        try:
            records = await self.store.fetch_messages(channel_id)
        except FetchError as e:
            logger.error("Initial message load failed: channel_id=%s, error=%s", channel_id, e)
            if generation == self._generation:
                self._messages = []
                self._ids = set()
                self._pending = []
                self._loading = False
                self._notify()
            return

        try:
            profiles = await self.store.fetch_profiles({record.sender_id for record in records})
        except FetchError as e:
            logger.warning("Profile lookup failed for channel %s: %s", channel_id, e)
            profiles = {}

        if generation != self._generation:
            logger.debug("Discarding stale message load: channel_id=%s", channel_id)
            return

        self._messages = [
            ChatMessage(**record.model_dump(), profiles=profiles.get(record.sender_id))
            for record in records
        ]
        self._ids = {message.id for message in self._messages}
        self._loading = False

        pending, self._pending = self._pending, []
        for record in pending:
            self._append(generation, record, notify=False)

        logger.info(
            "Messages loaded: channel_id=%s, count=%d",
            channel_id,
            len(self._messages),
        )
        self._notify()

    def _on_insert(self, generation: int, event: MessageInserted) -> None:
        if generation != self._generation:
            return
        if self._loading:
            self._pending.append(event.record)
            return
        self._append(generation, event.record)

    def _append(self, generation: int, record: MessageRecord, notify: bool = True) -> None:
        if record.id in self._ids:
            return
        message = ChatMessage(**record.model_dump())
        self._messages.append(message)
        self._ids.add(message.id)
        if notify:
            self._notify()

        task = asyncio.create_task(self._fill_profile(generation, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fill_profile(self, generation: int, message: ChatMessage) -> None:
        try:
            profile = await self.store.fetch_profile(message.sender_id)
        except FetchError as e:
            logger.debug("Profile lookup failed for sender %s: %s", message.sender_id, e)
            return

        if generation != self._generation or profile is None:
            return
        message.profiles = profile
        self._notify()

    async def wait_for_profiles(self) -> None:
        """Wait for outstanding per-message profile lookups."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
