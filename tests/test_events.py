from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.realtime.events import (
    MessageInserted,
    NotificationUpdated,
    TypingDeleted,
    TypingUpdated,
    event_type_of,
    parse_change,
    row_of,
)


def test_parse_message_insert_normalizes_naive_datetime():
    event = parse_change(
        "messages",
        "INSERT",
        new={
            "id": "m1",
            "channel_id": "c1",
            "sender_id": "u1",
            "content": "hi",
            "created_at": datetime(2025, 1, 1, 12, 0),
        },
    )
    assert isinstance(event, MessageInserted)
    assert event.record.created_at.tzinfo == timezone.utc
    assert event_type_of(event) == "INSERT"


def test_typing_delete_carries_old_row():
    event = parse_change("typing_status", "DELETE", old={"channel_id": "c1", "user_id": "u2"})
    assert isinstance(event, TypingDeleted)
    assert row_of(event)["user_id"] == "u2"
    assert event_type_of(event) == "DELETE"


def test_typing_update_and_notification_update():
    typing = parse_change("typing_status", "UPDATE", new={"channel_id": "c1", "user_id": "u2", "is_typing": True})
    assert isinstance(typing, TypingUpdated)
    assert typing.record.is_typing is True

    notification = parse_change(
        "notifications",
        "UPDATE",
        new={
            "id": "n1",
            "user_id": "u1",
            "title": "Bet settled",
            "message": "You won",
            "type": "bet_settlement",
            "read": True,
            "created_at": "2025-01-01T12:00:00+00:00",
        },
    )
    assert isinstance(notification, NotificationUpdated)
    assert notification.record.read is True


def test_unknown_pair_raises_value_error():
    with pytest.raises(ValueError):
        parse_change("messages", "UPDATE", new={})


def test_row_not_matching_schema_raises():
    with pytest.raises(ValidationError):
        parse_change("notifications", "INSERT", new={"id": "n1", "type": "spam"})
