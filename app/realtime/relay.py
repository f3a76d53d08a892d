"""Redis relay: shares change events and broadcasts between worker processes."""

import asyncio
import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, Optional

from .transport import ChannelHub


logger = logging.getLogger("app.realtime.relay")


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RedisRelay:
    """Publishes local hub events to Redis and replays remote ones into the hub."""

    def __init__(self, hub: ChannelHub, redis_client, channel: str):
        self.hub = hub
        self.redis = redis_client
        self.channel = channel
        self.origin = uuid.uuid4().hex
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._running = True
        self._task = asyncio.create_task(self._run())
        self.hub.relay = self
        logger.info("Realtime relay started: channel=%s, origin=%s", self.channel, self.origin)

    async def stop(self) -> None:
        self._running = False
        if self.hub.relay is self:
            self.hub.relay = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning("Failed to close relay subscription: %s", e)
            self._pubsub = None

    async def publish_change(
        self,
        table: str,
        event_type: str,
        new: Optional[Dict[str, Any]],
        old: Optional[Dict[str, Any]],
    ) -> None:
        await self._publish({
            "type": "change",
            "table": table,
            "event_type": event_type,
            "new": new,
            "old": old,
        })

    async def publish_broadcast(self, name: str, event: str, payload: Dict[str, Any]) -> None:
        await self._publish({
            "type": "broadcast",
            "channel": name,
            "event": event,
            "payload": payload,
        })

    async def _publish(self, message: Dict[str, Any]) -> None:
        message["origin"] = self.origin
        try:
            await self.redis.publish(self.channel, json.dumps(message, default=_json_default))
        except Exception as e:
            logger.warning("Relay publish failed: %s", e)

    async def handle_message(self, data: str) -> None:
        """Replay one relayed message into the local hub; own messages are ignored."""
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Relay dropped malformed message")
            return

        if message.get("origin") == self.origin:
            return

        if message.get("type") == "change":
            await self.hub.emit_change(
                message.get("table", ""),
                message.get("event_type", ""),
                new=message.get("new"),
                old=message.get("old"),
                relay=False,
            )
        elif message.get("type") == "broadcast":
            await self.hub.broadcast(
                message.get("channel", ""),
                message.get("event", ""),
                message.get("payload") or {},
                relay=False,
            )
        else:
            logger.warning("Relay dropped message of unknown type %r", message.get("type"))

    async def _run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self.handle_message(data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Relay receive failed: %s", e)
                await asyncio.sleep(0.5)
