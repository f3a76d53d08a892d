from __future__ import annotations

import pytest
from sqlalchemy import UniqueConstraint

from app.models import Profile
from app.realtime import ChangeFilter, FetchError, WriteError
from app.realtime.events import (
    MessageInserted,
    NotificationUpdated,
    TypingDeleted,
    TypingInserted,
    TypingUpdated,
)


@pytest.fixture
async def changes(hub):
    """Every change event the store emits, in delivery order."""
    received = []
    channel = hub.channel("audit")
    for table in ("messages", "typing_status", "notifications"):
        channel.on_change(ChangeFilter(table=table), received.append)
    await channel.subscribe()
    return received


class TestMessages:
    async def test_fetch_orders_oldest_first(self, store, add_message):
        later = add_message("c1", "u1", "second", offset=10)
        earlier = add_message("c1", "u2", "first", offset=0)
        add_message("c2", "u1", "elsewhere")

        records = await store.fetch_messages("c1")

        assert [r.id for r in records] == [earlier, later]

    async def test_insert_emits_after_commit(self, store, changes):
        record = await store.insert_message("c1", "u1", "hello")
        image = await store.insert_message("c1", "u1", "look", image_url="https://img/1.png")

        assert [type(e) for e in changes] == [MessageInserted, MessageInserted]
        assert changes[0].record.id == record.id
        assert record.message_type == "text"
        assert image.message_type == "image"
        assert [r.id for r in await store.fetch_messages("c1")] == [record.id, image.id]

    async def test_read_failure_raises_fetch_error(self, broken_store):
        with pytest.raises(FetchError):
            await broken_store.fetch_messages("c1")

    async def test_write_failure_raises_write_error(self, broken_store, changes):
        with pytest.raises(WriteError):
            await broken_store.insert_message("c1", "u1", "hello")
        assert changes == []


class TestProfiles:
    async def test_batched_lookup_omits_missing(self, store, profiles):
        result = await store.fetch_profiles(["u1", "u2", "u3", "u1"])
        assert set(result) == {"u1", "u2"}
        assert result["u1"].display_name == "Alice"
        assert await store.fetch_profiles([]) == {}

    async def test_upsert_and_admin_role(self, store):
        await store.upsert_profile("u5", display_name="Eve")
        assert not await store.is_admin("u5")

        updated = await store.upsert_profile("u5", username="eve", role="admin")
        assert updated.display_name == "Eve"
        assert updated.username == "eve"
        assert await store.is_admin("u5")
        assert not await store.is_admin("nobody")

    async def test_username_is_unique(self, store, profiles):
        constraints = {
            tuple(c.name for c in constraint.columns)
            for constraint in Profile.__table__.constraints
            if isinstance(constraint, UniqueConstraint)
        }
        assert ("username",) in constraints

        with pytest.raises(WriteError):
            await store.upsert_profile("u6", display_name="Copycat", username="alice")
        assert "u6" not in await store.fetch_profiles(["u6"])


class TestChannelMembers:
    async def test_membership_check(self, store, members):
        assert await store.is_channel_member("c1", "u1")
        assert not await store.is_channel_member("c1", "u3")
        assert not await store.is_channel_member("c9", "u1")

    async def test_add_is_idempotent(self, store):
        assert await store.add_channel_member("c3", "u3") is True
        assert await store.add_channel_member("c3", "u3") is False
        assert await store.is_channel_member("c3", "u3")

    async def test_read_failure_raises_fetch_error(self, broken_store):
        with pytest.raises(FetchError):
            await broken_store.is_channel_member("c1", "u1")


class TestTypingStatus:
    async def test_upsert_inserts_then_updates(self, store, changes):
        await store.upsert_typing("c1", "u1", True)
        await store.upsert_typing("c1", "u1", False)

        assert [type(e) for e in changes] == [TypingInserted, TypingUpdated]
        assert changes[1].record.is_typing is False

    async def test_delete_emits_only_when_row_existed(self, store, changes):
        assert await store.delete_typing("c1", "u1") is False
        assert changes == []

        await store.upsert_typing("c1", "u1", True)
        assert await store.delete_typing("c1", "u1") is True

        assert isinstance(changes[-1], TypingDeleted)
        assert changes[-1].old.user_id == "u1"


class TestNotifications:
    async def test_list_count_and_mark_read(self, store, changes):
        first = await store.insert_notification("u1", "Welcome", "Hello there")
        second = await store.insert_notification("u1", "Bet settled", "You won", type="bet_settlement")
        await store.insert_notification("u2", "Other", "Not yours")

        listed = await store.list_notifications("u1")
        assert {n.id for n in listed} == {first.id, second.id}
        assert await store.count_unread_notifications("u1") == 2

        # Only the owner may mark a notification read
        assert await store.mark_notification_read(first.id, "u2") is None
        marked = await store.mark_notification_read(first.id, "u1")
        assert marked.read is True
        assert [n.id for n in await store.list_notifications("u1", unread_only=True)] == [second.id]

        assert await store.mark_all_notifications_read("u1") == 1
        assert await store.count_unread_notifications("u1") == 0
        assert sum(isinstance(e, NotificationUpdated) for e in changes) == 2

    async def test_mark_missing_notification(self, store):
        assert await store.mark_notification_read("missing", "u1") is None
        assert await store.mark_all_notifications_read("u1") == 0
