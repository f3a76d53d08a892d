"""WebSocket endpoints for conversations and notifications."""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from jose import JWTError

from app.api.dependencies import get_realtime_ws
from app.core.security import user_id_from_token
from app.core import messages as text
from app.realtime import ChatStore, ConversationSession, FetchError, NotificationDispatcher, WebSocketAlertSurface


logger = logging.getLogger("app.realtime.websocket")

router = APIRouter()


async def authenticate_ws(websocket: WebSocket, token: str) -> str | None:
    """Authenticate WebSocket connection via query parameter token."""
    try:
        return user_id_from_token(token)
    except JWTError as e:
        logger.warning("WebSocket authentication failed: %s", e)
        await websocket.close(code=1008, reason="Invalid token")
        return None


async def authorize_channel(websocket: WebSocket, store: ChatStore, channel_id: str, user_id: str) -> bool:
    """Close the not-yet-accepted socket unless ``user_id`` belongs to ``channel_id``."""
    try:
        allowed = await store.is_channel_member(channel_id, user_id)
    except FetchError:
        await websocket.close(code=1011, reason=text.CHAT_MEMBERSHIP_UNAVAILABLE)
        return False
    if not allowed:
        logger.warning("WebSocket rejected for non-member", extra={"channel_id": channel_id, "user_id": user_id})
        await websocket.close(code=1008, reason=text.CHAT_NOT_CHANNEL_MEMBER)
    return allowed


async def receive_frame(websocket: WebSocket) -> dict | None:
    """Next JSON object from the client; None (after an error frame) when it is not one."""
    data = await websocket.receive_text()
    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": text.CHAT_INVALID_FRAME})
        return None
    if not isinstance(frame, dict):
        await websocket.send_json({"type": "error", "message": text.CHAT_INVALID_FRAME})
        return None
    return frame


@router.websocket("/ws/conversations/{channel_id}")
async def conversation_websocket(
    websocket: WebSocket,
    channel_id: str,
    token: str = Query(...),
):
    """
    WebSocket endpoint for one conversation.

    Connection URL: ws://localhost:8000/api/v1/ws/conversations/{channel_id}?token={access_token}

    Message Format (Client → Server):
    {"type": "message", "content": "...", "image_url": null}
    {"type": "typing", "is_typing": true}
    {"type": "switch", "channel_id": "..." | null}  (refused with an error frame for non-members)

    Message Format (Server → Client):
    {"type": "messages", "channel_id": ..., "loading": false, "messages": [...]}
    {"type": "presence", "channel_id": ..., "online_users": [...]}
    {"type": "typing", "channel_id": ..., "typing_users": [...]}
    {"type": "error", "message": "..."}
    """
    user_id = await authenticate_ws(websocket, token)
    if user_id is None:
        return

    realtime = get_realtime_ws(websocket)
    if not await authorize_channel(websocket, realtime.store, channel_id, user_id):
        return
    await websocket.accept()
    session = ConversationSession(realtime.store, realtime.hub, user_id, websocket.send_json)
    logger.info("WebSocket connected", extra={"channel_id": channel_id, "user_id": user_id})

    try:
        await session.start(channel_id)
        while True:
            frame = await receive_frame(websocket)
            if frame is not None:
                await session.handle_frame(frame)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"channel_id": session.channel_id, "user_id": user_id})
    except Exception as e:
        logger.error("WebSocket error: %s", e, exc_info=True)
    finally:
        await session.close()


@router.websocket("/ws/notifications")
async def notifications_websocket(
    websocket: WebSocket,
    token: str = Query(...),
):
    """
    WebSocket endpoint delivering the current user's notifications.

    Server → Client: {"type": "notification", ...}, {"type": "platform_alert", "tag": ...},
    {"type": "permission_request"}.
    Client → Server: {"type": "permission", "state": "default" | "granted" | "denied"}.
    """
    user_id = await authenticate_ws(websocket, token)
    if user_id is None:
        return

    realtime = get_realtime_ws(websocket)
    await websocket.accept()
    surface = WebSocketAlertSurface(websocket.send_json)
    dispatcher = NotificationDispatcher(realtime.hub, surface, owner=f"ws:{id(websocket)}")

    try:
        await dispatcher.attach(user_id)
        await websocket.send_json({"type": "status", "status": "connected"})
        while True:
            frame = await receive_frame(websocket)
            if frame is None:
                continue
            if frame.get("type") == "permission" and frame.get("state") in ("default", "granted", "denied"):
                surface.set_permission(frame["state"])
            else:
                await websocket.send_json({"type": "error", "message": text.CHAT_UNSUPPORTED_FRAME})
    except WebSocketDisconnect:
        logger.info("Notification WebSocket disconnected: user_id=%s", user_id)
    except Exception as e:
        logger.error("Notification WebSocket error: %s", e, exc_info=True)
    finally:
        await dispatcher.detach()
