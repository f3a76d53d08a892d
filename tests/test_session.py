from __future__ import annotations

import pytest

from app.core import messages as text
from app.realtime import ChatStore, ConversationSession, FetchError


class FlakySend:
    """Collects frames; the first ``failures`` sends raise."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.frames = []

    async def __call__(self, frame):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("socket hiccup")
        self.frames.append(frame)

    def of_type(self, frame_type):
        return [f for f in self.frames if f["type"] == frame_type]


class MembershipDownStore(ChatStore):
    async def is_channel_member(self, channel_id, user_id):
        raise FetchError("channel_members unavailable")


@pytest.fixture
async def attached(store, hub, members):
    send = FlakySend()
    session = ConversationSession(store, hub, "u1", send, typing_timeout=0.05)
    await session.start("c1")
    yield session, send
    await session.close()


async def test_writer_keeps_going_after_failed_send(store, hub, members, eventually):
    send = FlakySend(failures=1)
    session = ConversationSession(store, hub, "u1", send)
    await session.start("c1")
    try:
        await eventually(lambda: send.failures == 0)

        await session.send_error("after hiccup")
        await store.insert_message("c1", "u2", "hi")

        await eventually(lambda: any(f["message"] == "after hiccup" for f in send.of_type("error")))
        await eventually(
            lambda: any([m["content"] for m in f["messages"]] == ["hi"] for f in send.of_type("messages"))
        )
        assert session._writer is not None and not session._writer.done()
    finally:
        await session.close()


async def test_switch_to_member_channel(attached, eventually):
    session, send = attached
    assert await session.switch("c2") is True
    assert session.channel_id == "c2"
    await eventually(lambda: any(f["channel_id"] == "c2" for f in send.of_type("presence")))


async def test_switch_to_foreign_channel_keeps_current(attached, eventually):
    session, send = attached
    assert await session.switch("c9") is False
    assert session.channel_id == "c1"
    assert session.presence.channel_id == "c1"
    await eventually(lambda: [f["message"] for f in send.of_type("error")] == [text.CHAT_NOT_CHANNEL_MEMBER])


async def test_switch_frame_to_none_detaches(attached):
    session, _ = attached
    await session.handle_frame({"type": "switch", "channel_id": None})
    assert session.channel_id is None
    assert session.typing.channel_id is None


async def test_membership_lookup_failure_refuses_switch(session_factory, hub, eventually):
    send = FlakySend()
    session = ConversationSession(MembershipDownStore(session_factory, hub), hub, "u1", send)
    await session.start(None)
    try:
        assert await session.switch("c1") is False
        assert session.channel_id is None
        await eventually(lambda: [f["message"] for f in send.of_type("error")] == [text.CHAT_MEMBERSHIP_UNAVAILABLE])
    finally:
        await session.close()
