"""User notifications: live dispatch to alert surfaces plus store helpers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.config import settings

from .errors import FetchError, SubscriptionError, WriteError
from .events import NotificationInserted
from .schemas import NotificationRecord, PermissionState
from .store import ChatStore
from .transport import Channel, ChangeFilter, ChannelHub


logger = logging.getLogger("app.realtime.notifications")


class AlertSurface:
    """Where notifications are shown: a local in-app alert and an optional platform alert."""

    async def permission(self) -> PermissionState:
        return "denied"

    async def request_permission(self) -> None:
        return

    async def show_local(self, notification: NotificationRecord) -> None:
        raise NotImplementedError

    async def raise_platform_alert(self, tag: str, title: str, body: str) -> None:
        return


class RecordingAlertSurface(AlertSurface):
    """Keeps alerts in memory; platform alerts are keyed by tag so a repeat replaces the earlier one."""

    def __init__(self, permission: PermissionState = "default", answer: Optional[PermissionState] = None):
        self._permission = permission
        self.answer = answer
        self.permission_requests = 0
        self.local_alerts: List[NotificationRecord] = []
        self.platform_alerts: Dict[str, Dict[str, str]] = {}

    async def permission(self) -> PermissionState:
        return self._permission

    def set_permission(self, state: PermissionState) -> None:
        self._permission = state

    async def request_permission(self) -> None:
        self.permission_requests += 1
        if self.answer is not None:
            self._permission = self.answer

    async def show_local(self, notification: NotificationRecord) -> None:
        self.local_alerts.append(notification)

    async def raise_platform_alert(self, tag: str, title: str, body: str) -> None:
        self.platform_alerts[tag] = {"title": title, "body": body}


class WebSocketAlertSurface(AlertSurface):
    """Alert surface for a connected client; the client reports its permission state back."""

    def __init__(self, send: Callable[[Dict[str, Any]], Awaitable[None]]):
        self._send = send
        self._permission: PermissionState = "default"

    async def permission(self) -> PermissionState:
        return self._permission

    def set_permission(self, state: PermissionState) -> None:
        self._permission = state

    async def request_permission(self) -> None:
        await self._send({"type": "permission_request"})

    async def show_local(self, notification: NotificationRecord) -> None:
        await self._send({
            "type": "notification",
            "notification": notification.model_dump(mode="json"),
            "duration": settings.NOTIFICATION_TOAST_MS,
        })

    async def raise_platform_alert(self, tag: str, title: str, body: str) -> None:
        await self._send({
            "type": "platform_alert",
            "tag": tag,
            "title": title,
            "body": body,
        })


class NotificationDispatcher:
    """Surfaces notifications inserted for one user as they arrive."""

    def __init__(self, hub: ChannelHub, surface: AlertSurface, owner: Optional[str] = None):
        self.hub = hub
        self.surface = surface
        self.owner = owner
        self._channel: Optional[Channel] = None
        self._user_id: Optional[str] = None
        self._generation = 0
        self._permission_requested = False
        # Serializes dispatch so alerts surface in arrival order
        self._lock = asyncio.Lock()

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    async def attach(self, user_id: Optional[str]) -> None:
        await self.detach()
        if user_id is None:
            return

        self._generation += 1
        generation = self._generation
        self._user_id = user_id

        channel = self.hub.channel(f"user-notifications:{user_id}", owner=self.owner)
        channel.on_change(
            ChangeFilter(table="notifications", event="INSERT", column="user_id", value=user_id),
            lambda event: self._on_insert(generation, event),
        )
        self._channel = channel

        try:
            await channel.subscribe()
            logger.info("Notification listener subscribed: user_id=%s", user_id)
        except SubscriptionError as e:
            logger.error("Notification subscription failed: user_id=%s, error=%s", user_id, e)
            if generation == self._generation:
                self._channel = None

    async def detach(self) -> None:
        self._generation += 1
        channel = self._channel
        self._channel = None
        self._user_id = None
        if channel is not None:
            await channel.unsubscribe()
            logger.info("Notification listener cleaned up")

    def _on_insert(self, generation: int, event: NotificationInserted):
        if generation != self._generation:
            return None
        return self._dispatch(generation, event.record)

    async def _dispatch(self, generation: int, notification: NotificationRecord) -> None:
        async with self._lock:
            if generation != self._generation:
                return
            logger.info("Notification received: notification_id=%s", notification.id)

            try:
                await self.surface.show_local(notification)
            except Exception as e:
                logger.warning("Local alert dropped: notification_id=%s, error=%s", notification.id, e)

            try:
                permission = await self.surface.permission()
                if permission == "default":
                    if not self._permission_requested:
                        self._permission_requested = True
                        await self.surface.request_permission()
                        permission = await self.surface.permission()
                else:
                    self._permission_requested = False

                if permission == "granted":
                    self._permission_requested = False
                    await self.surface.raise_platform_alert(
                        tag=notification.id,
                        title=notification.title,
                        body=notification.message,
                    )
            except Exception as e:
                logger.warning("Platform alert failed: notification_id=%s, error=%s", notification.id, e)


async def create_notification(
    store: ChatStore,
    user_id: str,
    title: str,
    message: str,
    type: str = "system",
    link: Optional[str] = None,
) -> Optional[NotificationRecord]:
    """Create a notification; failures are logged and swallowed."""
    try:
        return await store.insert_notification(user_id, title, message, type=type, link=link)
    except WriteError as e:
        logger.error("Failed to create notification: user_id=%s, error=%s", user_id, e)
        return None


async def mark_notification_as_read(
    store: ChatStore,
    notification_id: str,
    user_id: str,
) -> Optional[NotificationRecord]:
    return await store.mark_notification_read(notification_id, user_id)


async def mark_all_notifications_as_read(store: ChatStore, user_id: str) -> int:
    return await store.mark_all_notifications_read(user_id)


async def get_unread_notification_count(store: ChatStore, user_id: str) -> int:
    try:
        return await store.count_unread_notifications(user_id)
    except FetchError as e:
        logger.error("Error getting unread notification count: user_id=%s, error=%s", user_id, e)
        return 0
