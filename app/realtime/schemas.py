"""Pydantic schemas for rows flowing through the realtime core."""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


NotificationType = Literal["bet_settlement", "friend_request", "message", "system", "admin"]
PermissionState = Literal["default", "granted", "denied"]


class ProfileRecord(BaseModel):
    """Display profile joined onto messages and typing users."""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    username: Optional[str] = None


class MessageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel_id: str
    sender_id: str
    content: str
    created_at: UtcDatetime
    image_url: Optional[str] = None
    message_type: Literal["text", "image"] = "text"


class ChatMessage(MessageRecord):
    """Message enriched with its sender's profile; `profiles` is absent when unresolved."""

    profiles: Optional[ProfileRecord] = None


class TypingStatusRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    channel_id: str
    user_id: str
    is_typing: bool = False
    updated_at: Optional[UtcDatetime] = None


class TypingUser(BaseModel):
    user_id: str
    display_name: Optional[str] = None


class NotificationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType = "system"
    link: Optional[str] = None
    read: bool = False
    created_at: UtcDatetime


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)
    image_url: Optional[str] = None


class NotificationCreate(BaseModel):
    user_id: str
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    type: NotificationType = "system"
    link: Optional[str] = None


class UnreadCount(BaseModel):
    count: int
