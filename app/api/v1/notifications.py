"""Notification endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import get_current_user_id, get_store
from app.core import messages as text
from app.realtime import ChatStore, FetchError, WriteError
from app.realtime.notifications import (
    get_unread_notification_count,
    mark_all_notifications_as_read,
    mark_notification_as_read,
)
from app.realtime.schemas import NotificationCreate, NotificationRecord, UnreadCount


logger = logging.getLogger("app.api.notifications")

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationRecord])
async def list_notifications(
    unread_only: bool = Query(False),
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(get_current_user_id),
):
    try:
        return await store.list_notifications(current_user_id, unread_only=unread_only)
    except FetchError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.DB_CONNECTION_ERROR,
        )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(get_current_user_id),
):
    return UnreadCount(count=await get_unread_notification_count(store, current_user_id))


@router.post("", response_model=NotificationRecord, status_code=status.HTTP_201_CREATED)
async def send_notification(
    payload: NotificationCreate,
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(get_current_user_id),
):
    """Create a notification for yourself, or for anyone when you are an admin."""
    if payload.user_id != current_user_id:
        try:
            is_admin = await store.is_admin(current_user_id)
        except FetchError:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=text.DB_CONNECTION_ERROR,
            )
        if not is_admin:
            logger.warning(
                "Rejected notification for another user: sender=%s, recipient=%s",
                current_user_id,
                payload.user_id,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=text.NOTIFICATION_ADMIN_REQUIRED,
            )

    try:
        return await store.insert_notification(
            payload.user_id,
            payload.title,
            payload.message,
            type=payload.type,
            link=payload.link,
        )
    except WriteError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.NOTIFICATION_CREATE_FAILED,
        )


@router.post("/read-all")
async def read_all(
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(get_current_user_id),
) -> dict:
    try:
        updated = await mark_all_notifications_as_read(store, current_user_id)
    except WriteError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.NOTIFICATION_UPDATE_FAILED,
        )
    return {"updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
async def read_one(
    notification_id: str,
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(get_current_user_id),
):
    try:
        notification = await mark_notification_as_read(store, notification_id, current_user_id)
    except WriteError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.NOTIFICATION_UPDATE_FAILED,
        )
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=text.NOTIFICATION_NOT_FOUND,
        )
    return notification
