#!/usr/bin/env python3
"""
Send a notification to a user.

Usage:
    python scripts/send_notification.py USER_ID "Title" "Message" [--type system] [--link /bets]

Writes straight to the database; connected clients only see it live when
the API process shares the Redis relay.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.database import SessionLocal
from app.realtime import ChatStore
from app.realtime.notifications import create_notification


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a notification")
    parser.add_argument("user_id")
    parser.add_argument("title")
    parser.add_argument("message")
    parser.add_argument(
        "--type",
        default="system",
        choices=["bet_settlement", "friend_request", "message", "system", "admin"],
    )
    parser.add_argument("--link")
    args = parser.parse_args()

    store = ChatStore(SessionLocal)
    notification = asyncio.run(
        create_notification(store, args.user_id, args.title, args.message, type=args.type, link=args.link)
    )
    if notification is None:
        print("❌ Failed to create notification")
        sys.exit(1)
    print(f"✅ Notification created: {notification.id}")


if __name__ == "__main__":
    main()
