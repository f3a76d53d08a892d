"""Realtime messaging core: transport, message stream, presence, typing and notifications."""

from dataclasses import dataclass
from typing import Optional

from .errors import FetchError, RealtimeError, SubscriptionError, WriteError
from .messages import MessageStreamManager
from .notifications import (
    AlertSurface,
    NotificationDispatcher,
    RecordingAlertSurface,
    WebSocketAlertSurface,
)
from .presence import PresenceState, PresenceTracker
from .relay import RedisRelay
from .session import ConversationSession
from .store import ChatStore
from .transport import Channel, ChangeFilter, ChannelHub
from .typing_indicator import TypingIndicatorCoordinator


@dataclass
class RealtimeContext:
    """Shared handles passed to every manager instead of module-level clients."""

    hub: ChannelHub
    store: ChatStore
    relay: Optional[RedisRelay] = None


__all__ = [
    "AlertSurface",
    "Channel",
    "ChangeFilter",
    "ChannelHub",
    "ChatStore",
    "ConversationSession",
    "FetchError",
    "MessageStreamManager",
    "NotificationDispatcher",
    "PresenceState",
    "PresenceTracker",
    "RealtimeContext",
    "RealtimeError",
    "RecordingAlertSurface",
    "RedisRelay",
    "SubscriptionError",
    "TypingIndicatorCoordinator",
    "WebSocketAlertSurface",
    "WriteError",
]
