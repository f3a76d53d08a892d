"""Conversation history endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_store, require_channel_member
from app.core import messages as text
from app.realtime import ChatStore, FetchError, WriteError
from app.realtime.schemas import ChatMessage, MessageCreate, MessageRecord


router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("/{channel_id}/messages", response_model=List[ChatMessage])
async def list_messages(
    channel_id: str,
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(require_channel_member),
):
    """Full message history of a channel, oldest first, with sender profiles."""
    try:
        records = await store.fetch_messages(channel_id)
        profiles = await store.fetch_profiles({r.sender_id for r in records})
    except FetchError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.CHAT_HISTORY_UNAVAILABLE,
        )

    return [
        ChatMessage(**record.model_dump(), profiles=profiles.get(record.sender_id))
        for record in records
    ]


@router.post(
    "/{channel_id}/messages",
    response_model=MessageRecord,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    channel_id: str,
    payload: MessageCreate,
    store: ChatStore = Depends(get_store),
    current_user_id: str = Depends(require_channel_member),
):
    content = payload.content.strip()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=text.CHAT_MESSAGE_REQUIRED,
        )

    try:
        return await store.insert_message(
            channel_id,
            current_user_id,
            content,
            image_url=payload.image_url,
        )
    except WriteError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.CHAT_MESSAGE_SEND_FAILED,
        )
