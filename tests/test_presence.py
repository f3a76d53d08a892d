from __future__ import annotations

from app.realtime import PresenceState, PresenceTracker
from app.realtime.events import PresenceJoin, PresenceLeave


async def test_two_users_see_each_other(hub):
    alice = PresenceTracker(hub, owner="alice-session")
    bob = PresenceTracker(hub, owner="bob-session")

    await alice.attach("c1", "u1")
    await hub.drain()
    await bob.attach("c1", "u2")
    await hub.drain()

    assert alice.state == PresenceState.SYNCED
    assert alice.online_users == ["u1", "u2"]
    assert bob.online_users == ["u1", "u2"]
    assert hub.presence_state("presence:c1")["u2"][0]["user_id"] == "u2"


async def test_leave_removes_user(hub):
    alice = PresenceTracker(hub, owner="alice-session")
    bob = PresenceTracker(hub, owner="bob-session")
    await alice.attach("c1", "u1")
    await bob.attach("c1", "u2")
    await hub.drain()

    await alice.detach()

    assert bob.online_users == ["u2"]
    assert not bob.is_online("u1")
    assert alice.online_users == []
    assert alice.state == PresenceState.DETACHED


async def test_duplicate_leave_is_noop(hub):
    notified = []
    bob = PresenceTracker(hub, on_change=lambda t: notified.append(t.online_users))
    await bob.attach("c1", "u2")
    await hub.drain()
    before = len(notified)

    bob._on_leave(bob._generation, PresenceLeave(key="u1"))

    assert bob.online_users == ["u2"]
    assert len(notified) == before


async def test_duplicate_join_is_noop(hub):
    notified = []
    bob = PresenceTracker(hub, on_change=lambda t: notified.append(t.online_users))
    await bob.attach("c1", "u2")
    await hub.drain()
    before = len(notified)

    bob._on_join(bob._generation, PresenceJoin(key="u2"))
    assert bob.online_users == ["u2"]
    assert len(notified) == before

    bob._on_join(bob._generation, PresenceJoin(key="u3"))
    bob._on_join(bob._generation, PresenceJoin(key="u3"))
    assert bob.online_users == ["u2", "u3"]
    assert len(notified) == before + 1


async def test_second_session_keeps_user_online(hub):
    observer = PresenceTracker(hub, owner="observer")
    tab_one = PresenceTracker(hub, owner="tab-1")
    tab_two = PresenceTracker(hub, owner="tab-2")
    await observer.attach("c1", "u9")
    await tab_one.attach("c1", "u1")
    await tab_two.attach("c1", "u1")
    await hub.drain()

    await tab_one.detach()
    assert observer.is_online("u1")

    await tab_two.detach()
    assert not observer.is_online("u1")


async def test_switching_channels_moves_presence(hub):
    observer = PresenceTracker(hub, owner="observer")
    alice = PresenceTracker(hub, owner="alice-session")
    await observer.attach("c1", "u9")
    await alice.attach("c1", "u1")
    await hub.drain()
    assert observer.is_online("u1")

    await alice.attach("c2", "u1")
    await hub.drain()

    assert not observer.is_online("u1")
    assert alice.channel_id == "c2"
    assert alice.online_users == ["u1"]
