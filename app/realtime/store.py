"""Durable store for messages, profiles, membership, typing status and notifications.

All methods are coroutines; the SQLAlchemy session work runs in the
threadpool. Every committed mutation is emitted to the channel hub as a
row-change event, in commit order.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ChannelMember, Message, Notification, Profile, TypingStatus
from app.models.base import utcnow

from .errors import FetchError, WriteError
from .schemas import MessageRecord, NotificationRecord, ProfileRecord, TypingStatusRecord
from .transport import ChannelHub


logger = logging.getLogger("app.realtime.store")

T = TypeVar("T")


def row_to_dict(obj) -> Dict[str, Any]:
    return {column.key: getattr(obj, column.key) for column in obj.__table__.columns}


class ChatStore:
    """Async facade over the relational store used by the realtime managers."""

    def __init__(self, session_factory: Callable[[], Session], hub: Optional[ChannelHub] = None):
        self.session_factory = session_factory
        self.hub = hub
        self._write_lock = asyncio.Lock()

    async def _read(self, operation: str, fn: Callable[[Session], T]) -> T:
        def run() -> T:
            with self.session_factory() as db:
                return fn(db)

        try:
            return await run_in_threadpool(run)
        except SQLAlchemyError as e:
            logger.error("Store read failed: operation=%s, error=%s", operation, e)
            raise FetchError(f"{operation} failed") from e

    async def _write(self, operation: str, fn: Callable[[Session], T]) -> T:
        def run() -> T:
            with self.session_factory() as db:
                try:
                    result = fn(db)
                    db.commit()
                    return result
                except Exception:
                    db.rollback()
                    raise

        try:
            return await run_in_threadpool(run)
        except SQLAlchemyError as e:
            logger.error("Store write failed: operation=%s, error=%s", operation, e)
            raise WriteError(f"{operation} failed") from e

    async def _emit(self, table: str, event_type: str, new=None, old=None) -> None:
        if self.hub is not None:
            await self.hub.emit_change(table, event_type, new=new, old=old)

    # Messages

    async def fetch_messages(self, channel_id: str) -> List[MessageRecord]:
        """All messages of a channel, oldest first."""
        def query(db: Session) -> List[MessageRecord]:
            rows = db.scalars(
                select(Message)
                .where(Message.channel_id == channel_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
            ).all()
            return [MessageRecord.model_validate(row) for row in rows]

        return await self._read("fetch_messages", query)

    async def insert_message(
        self,
        channel_id: str,
        sender_id: str,
        content: str,
        image_url: Optional[str] = None,
    ) -> MessageRecord:
        def insert(db: Session) -> Dict[str, Any]:
            message = Message(
                channel_id=channel_id,
                sender_id=sender_id,
                content=content,
                image_url=image_url,
                message_type="image" if image_url else "text",
            )
            db.add(message)
            db.flush()
            return row_to_dict(message)

        async with self._write_lock:
            row = await self._write("insert_message", insert)
            await self._emit("messages", "INSERT", new=row)

        logger.info(
            "Message created: message_id=%s, channel_id=%s, sender_id=%s",
            row["id"],
            channel_id,
            sender_id,
        )
        return MessageRecord.model_validate(row)

    # Profiles

    async def fetch_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileRecord]:
        """Batched profile lookup; ids without a profile are absent from the result."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}

        def query(db: Session) -> Dict[str, ProfileRecord]:
            rows = db.scalars(select(Profile).where(Profile.user_id.in_(ids))).all()
            return {row.user_id: ProfileRecord.model_validate(row) for row in rows}

        return await self._read("fetch_profiles", query)

    async def fetch_profile(self, user_id: str) -> Optional[ProfileRecord]:
        def query(db: Session) -> Optional[ProfileRecord]:
            row = db.scalars(select(Profile).where(Profile.user_id == user_id)).first()
            return ProfileRecord.model_validate(row) if row else None

        return await self._read("fetch_profile", query)

    async def upsert_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        username: Optional[str] = None,
        avatar_url: Optional[str] = None,
        role: Optional[str] = None,
    ) -> ProfileRecord:
        def upsert(db: Session) -> ProfileRecord:
            profile = db.scalars(select(Profile).where(Profile.user_id == user_id)).first()
            if profile is None:
                profile = Profile(user_id=user_id, role=role or "user")
                db.add(profile)
            elif role is not None:
                profile.role = role
            if display_name is not None:
                profile.display_name = display_name
            if username is not None:
                profile.username = username
            if avatar_url is not None:
                profile.avatar_url = avatar_url
            db.flush()
            return ProfileRecord.model_validate(profile)

        return await self._write("upsert_profile", upsert)

    async def is_admin(self, user_id: str) -> bool:
        def query(db: Session) -> bool:
            role = db.scalar(select(Profile.role).where(Profile.user_id == user_id))
            return role == "admin"

        return await self._read("is_admin", query)

    # Channel membership

    async def is_channel_member(self, channel_id: str, user_id: str) -> bool:
        def query(db: Session) -> bool:
            member_id = db.scalar(
                select(ChannelMember.id).where(
                    ChannelMember.channel_id == channel_id,
                    ChannelMember.user_id == user_id,
                )
            )
            return member_id is not None

        return await self._read("is_channel_member", query)

    async def add_channel_member(self, channel_id: str, user_id: str, role: str = "member") -> bool:
        """Add ``user_id`` to the channel; returns False when already a member."""
        def add(db: Session) -> bool:
            exists = db.scalar(
                select(ChannelMember.id).where(
                    ChannelMember.channel_id == channel_id,
                    ChannelMember.user_id == user_id,
                )
            )
            if exists is not None:
                return False
            db.add(ChannelMember(channel_id=channel_id, user_id=user_id, role=role))
            try:
                db.flush()
            except IntegrityError:
                # Joined concurrently
                db.rollback()
                return False
            return True

        added = await self._write("add_channel_member", add)
        if added:
            logger.info("Channel member added", extra={"channel_id": channel_id, "user_id": user_id})
        return added

    # Typing status

    async def upsert_typing(self, channel_id: str, user_id: str, is_typing: bool) -> TypingStatusRecord:
        """Insert or update the (channel, user) typing row."""
        def find(db: Session) -> Optional[TypingStatus]:
            return db.scalars(
                select(TypingStatus).where(
                    TypingStatus.channel_id == channel_id,
                    TypingStatus.user_id == user_id,
                )
            ).first()

        def upsert(db: Session) -> tuple:
            row = find(db)
            if row is None:
                row = TypingStatus(channel_id=channel_id, user_id=user_id, is_typing=is_typing)
                db.add(row)
                try:
                    db.flush()
                    return "INSERT", row_to_dict(row)
                except IntegrityError:
                    # Another session inserted the pair first
                    db.rollback()
                    row = find(db)
                    if row is None:
                        raise
            row.is_typing = is_typing
            row.updated_at = utcnow()
            db.flush()
            return "UPDATE", row_to_dict(row)

        async with self._write_lock:
            event_type, row = await self._write("upsert_typing", upsert)
            await self._emit("typing_status", event_type, new=row)

        return TypingStatusRecord.model_validate(row)

    async def delete_typing(self, channel_id: str, user_id: str) -> bool:
        """Delete the (channel, user) typing row; returns whether a row existed."""
        def delete(db: Session) -> Optional[Dict[str, Any]]:
            row = db.scalars(
                select(TypingStatus).where(
                    TypingStatus.channel_id == channel_id,
                    TypingStatus.user_id == user_id,
                )
            ).first()
            if row is None:
                return None
            old = row_to_dict(row)
            db.delete(row)
            return old

        async with self._write_lock:
            old = await self._write("delete_typing", delete)
            if old is not None:
                await self._emit("typing_status", "DELETE", old=old)

        return old is not None

    # Notifications

    async def insert_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = "system",
        link: Optional[str] = None,
    ) -> NotificationRecord:
        def insert(db: Session) -> Dict[str, Any]:
            notification = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                link=link,
            )
            db.add(notification)
            db.flush()
            return row_to_dict(notification)

        async with self._write_lock:
            row = await self._write("insert_notification", insert)
            await self._emit("notifications", "INSERT", new=row)

        logger.info("Notification created: notification_id=%s, user_id=%s, type=%s", row["id"], user_id, type)
        return NotificationRecord.model_validate(row)

    async def list_notifications(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        def query(db: Session) -> List[NotificationRecord]:
            stmt = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                stmt = stmt.where(Notification.read.is_(False))
            rows = db.scalars(stmt.order_by(Notification.created_at.desc())).all()
            return [NotificationRecord.model_validate(row) for row in rows]

        return await self._read("list_notifications", query)

    async def count_unread_notifications(self, user_id: str) -> int:
        def query(db: Session) -> int:
            return db.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_id, Notification.read.is_(False))
            ) or 0

        return await self._read("count_unread_notifications", query)

    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[NotificationRecord]:
        """Mark one of the user's notifications read; None when it is not theirs or does not exist."""
        def update(db: Session) -> Optional[Dict[str, Any]]:
            row = db.scalars(
                select(Notification).where(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            ).first()
            if row is None:
                return None
            row.read = True
            db.flush()
            return row_to_dict(row)

        async with self._write_lock:
            row = await self._write("mark_notification_read", update)
            if row is not None:
                await self._emit("notifications", "UPDATE", new=row)

        return NotificationRecord.model_validate(row) if row is not None else None

    async def mark_all_notifications_read(self, user_id: str) -> int:
        def update(db: Session) -> List[Dict[str, Any]]:
            rows = db.scalars(
                select(Notification).where(
                    Notification.user_id == user_id,
                    Notification.read.is_(False),
                )
            ).all()
            for row in rows:
                row.read = True
            db.flush()
            return [row_to_dict(row) for row in rows]

        async with self._write_lock:
            rows = await self._write("mark_all_notifications_read", update)
            for row in rows:
                await self._emit("notifications", "UPDATE", new=row)

        return len(rows)
