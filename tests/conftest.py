from __future__ import annotations

import asyncio
import os
import time

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = "disabled"
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.database import build_engine  # noqa: E402
from app.models import Base, ChannelMember, Message, Profile  # noqa: E402
from app.realtime import ChannelHub, ChatStore  # noqa: E402


BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'realtime.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def broken_session_factory(tmp_path):
    """Sessions on a database without any tables: every query fails."""
    engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
async def hub():
    hub = ChannelHub()
    yield hub
    await hub.close()


@pytest.fixture
def store(session_factory, hub):
    return ChatStore(session_factory, hub)


@pytest.fixture
def broken_store(broken_session_factory, hub):
    return ChatStore(broken_session_factory, hub)


@pytest.fixture
def profiles(session_factory):
    """Seed profiles for alice (u1, admin) and bob (u2); carol (u3) has none."""
    with session_factory() as db:
        db.add_all([
            Profile(user_id="u1", display_name="Alice", username="alice", role="admin"),
            Profile(user_id="u2", display_name="Bob", username="bob"),
        ])
        db.commit()
    return {"u1": "Alice", "u2": "Bob"}


@pytest.fixture
def members(session_factory):
    """Alice and bob belong to c1 and c2; carol (u3) belongs nowhere."""
    with session_factory() as db:
        db.add_all([
            ChannelMember(channel_id=channel_id, user_id=user_id)
            for channel_id in ("c1", "c2")
            for user_id in ("u1", "u2")
        ])
        db.commit()


@pytest.fixture
def add_message(session_factory):
    """Insert a message row directly, bypassing the hub, at BASE_TIME + offset seconds."""

    def add(channel_id: str, sender_id: str, content: str, offset: int = 0) -> str:
        with session_factory() as db:
            message = Message(
                channel_id=channel_id,
                sender_id=sender_id,
                content=content,
                created_at=BASE_TIME + timedelta(seconds=offset),
            )
            db.add(message)
            db.commit()
            return message.id

    return add


@pytest.fixture
def eventually():
    """Poll an async-world condition until it holds or the deadline passes."""

    async def wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return wait
