#!/usr/bin/env python3
"""Script to create (or update) a chat profile, add it to channels and print an access token."""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

# Add parent directory to path so we can import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.database import SessionLocal
from app.core.security import create_access_token
from app.realtime import ChatStore, WriteError


async def create_profile(
    user_id: str,
    display_name: str,
    username: str | None = None,
    role: str = "user",
    channels: list[str] | None = None,
):
    store = ChatStore(SessionLocal)
    profile = await store.upsert_profile(
        user_id,
        display_name=display_name,
        username=username,
        role=role,
    )
    for channel_id in channels or []:
        await store.add_channel_member(channel_id, user_id)
    return profile


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a chat profile")
    parser.add_argument("display_name")
    parser.add_argument("--username")
    parser.add_argument("--user-id", default=None, help="Existing user id (default: new UUID)")
    parser.add_argument("--role", choices=["user", "admin"], default="user")
    parser.add_argument("--channel", action="append", default=[], help="Channel id to join (repeatable)")
    args = parser.parse_args()

    user_id = args.user_id or str(uuid.uuid4())
    try:
        profile = asyncio.run(create_profile(user_id, args.display_name, args.username, args.role, args.channel))
    except WriteError as e:
        print(f"❌ Could not save profile: {e}")
        sys.exit(1)

    print("✅ Profile saved!")
    print(f"   User ID: {profile.user_id}")
    print(f"   Display name: {profile.display_name}")
    print(f"   Username: {profile.username}")
    print(f"   Role: {args.role}")
    if args.channel:
        print(f"   Channels: {', '.join(args.channel)}")
    print(f"\nAccess token:\n{create_access_token(profile.user_id)}\n")


if __name__ == "__main__":
    main()
