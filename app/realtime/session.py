"""One connected user's view of one conversation."""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError

from app.core import messages as text

from .errors import FetchError
from .messages import MessageStreamManager
from .presence import PresenceTracker
from .schemas import MessageCreate
from .store import ChatStore
from .transport import ChannelHub
from .typing_indicator import TypingIndicatorCoordinator


logger = logging.getLogger("app.realtime.session")

Send = Callable[[Dict[str, Any]], Awaitable[None]]


class ConversationSession:
    """
    Binds the message stream, presence tracker and typing coordinator of a
    single client to the same channel id and streams their state out as
    JSON frames.

    State changes only mark a frame kind dirty; a writer task builds the
    frame from current state when it gets to it, so bursts of changes
    collapse into one frame per kind.
    """

    def __init__(
        self,
        store: ChatStore,
        hub: ChannelHub,
        user_id: str,
        send: Send,
        typing_timeout: Optional[float] = None,
    ):
        self.store = store
        self.user_id = user_id
        self._send = send
        self.owner = f"session:{uuid.uuid4().hex}"
        self.messages = MessageStreamManager(store, hub, owner=self.owner, on_change=lambda _: self._mark("messages"))
        self.presence = PresenceTracker(hub, owner=self.owner, on_change=lambda _: self._mark("presence"))
        self.typing = TypingIndicatorCoordinator(
            store,
            hub,
            owner=self.owner,
            timeout=typing_timeout,
            on_change=lambda _: self._mark("typing"),
        )
        self._dirty: Set[str] = set()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    @property
    def channel_id(self) -> Optional[str]:
        return self.messages.channel_id

    async def start(self, channel_id: Optional[str]) -> None:
        """Start the writer and attach to ``channel_id``; the caller has checked membership."""
        self._writer = asyncio.create_task(self._write_loop())
        await self._attach(channel_id)

    async def switch(self, channel_id: Optional[str]) -> bool:
        """
        Point all three managers at ``channel_id``; None detaches them.

        A channel the user is not a member of is refused with an error frame
        and the current channel stays attached.
        """
        if channel_id is not None:
            try:
                allowed = await self.store.is_channel_member(channel_id, self.user_id)
            except FetchError:
                await self.send_error(text.CHAT_MEMBERSHIP_UNAVAILABLE)
                return False
            if not allowed:
                logger.info(
                    "Session switch refused",
                    extra={"user_id": self.user_id, "channel_id": channel_id, "owner": self.owner},
                )
                await self.send_error(text.CHAT_NOT_CHANNEL_MEMBER)
                return False
        await self._attach(channel_id)
        return True

    async def _attach(self, channel_id: Optional[str]) -> None:
        logger.info(
            "Session switching channel",
            extra={"user_id": self.user_id, "channel_id": channel_id, "owner": self.owner},
        )
        await self.typing.attach(channel_id, self.user_id)
        await self.presence.attach(channel_id, self.user_id)
        await self.messages.attach(channel_id)

    async def handle_frame(self, frame: Dict[str, Any]) -> None:
        frame_type = frame.get("type")

        if frame_type == "message":
            try:
                payload = MessageCreate.model_validate(frame)
            except ValidationError:
                await self.send_error(text.CHAT_MESSAGE_REQUIRED)
                return
            record = await self.messages.send(payload.content, self.user_id, image_url=payload.image_url)
            if record is None:
                await self.send_error(text.CHAT_MESSAGE_SEND_FAILED)
        elif frame_type == "typing":
            await self.typing.set_typing(bool(frame.get("is_typing")))
        elif frame_type == "switch":
            channel_id = frame.get("channel_id")
            await self.switch(str(channel_id) if channel_id else None)
        else:
            await self.send_error(text.CHAT_UNSUPPORTED_FRAME)

    async def send_error(self, message: str) -> None:
        await self._outbox.put({"type": "error", "message": message})

    async def close(self) -> None:
        await self.typing.detach()
        await self.presence.detach()
        await self.messages.detach()
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None

    def _mark(self, kind: str) -> None:
        if kind in self._dirty:
            return
        self._dirty.add(kind)
        self._outbox.put_nowait(kind)

    def _frame(self, kind: str) -> Dict[str, Any]:
        if kind == "messages":
            return {
                "type": "messages",
                "channel_id": self.messages.channel_id,
                "loading": self.messages.loading,
                "messages": [m.model_dump(mode="json") for m in self.messages.messages],
            }
        if kind == "presence":
            return {
                "type": "presence",
                "channel_id": self.presence.channel_id,
                "online_users": self.presence.online_users,
            }
        return {
            "type": "typing",
            "channel_id": self.typing.channel_id,
            "typing_users": [u.model_dump() for u in self.typing.typing_users],
        }

    async def _write_loop(self) -> None:
        while True:
            item = await self._outbox.get()
            if isinstance(item, str):
                self._dirty.discard(item)
                frame = self._frame(item)
            else:
                frame = item
            try:
                await self._send(frame)
            except Exception as e:
                # Dropped; a later change to the same kind sends fresh state
                logger.warning("Failed to send frame to user %s: %s", self.user_id, e)
