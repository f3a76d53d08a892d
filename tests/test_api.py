from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.core import messages as text
from app.core.security import create_access_token
from main import create_app


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def client(session_factory, profiles, members):
    app = create_app(session_factory=session_factory, use_redis=False)
    with TestClient(app) as client:
        yield client


def receive_until(ws, predicate, limit: int = 20) -> dict:
    for _ in range(limit):
        frame = ws.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame never arrived")


class TestHealth:
    def test_health(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["relay"] is False
        assert "X-Process-Time-Ms" in res.headers


class TestConversations:
    def test_requires_token(self, client):
        assert client.get("/api/v1/conversations/c1/messages").status_code == 401
        bad = client.get("/api/v1/conversations/c1/messages", headers={"Authorization": "Bearer nope"})
        assert bad.status_code == 401

    def test_post_then_list(self, client):
        created = client.post("/api/v1/conversations/c1/messages", json={"content": " hi "}, headers=auth("u1"))
        assert created.status_code == 201
        assert created.json()["content"] == "hi"
        assert created.json()["sender_id"] == "u1"

        listed = client.get("/api/v1/conversations/c1/messages", headers=auth("u2"))
        assert listed.status_code == 200
        body = listed.json()
        assert [m["content"] for m in body] == ["hi"]
        assert body[0]["profiles"]["display_name"] == "Alice"

    def test_blank_message_rejected(self, client):
        res = client.post("/api/v1/conversations/c1/messages", json={"content": "   "}, headers=auth("u1"))
        assert res.status_code == 400
        res = client.post("/api/v1/conversations/c1/messages", json={"content": ""}, headers=auth("u1"))
        assert res.status_code == 422

    def test_non_member_is_forbidden(self, client):
        listed = client.get("/api/v1/conversations/c1/messages", headers=auth("u3"))
        assert listed.status_code == 403

        posted = client.post("/api/v1/conversations/c1/messages", json={"content": "hi"}, headers=auth("u3"))
        assert posted.status_code == 403
        assert client.get("/api/v1/conversations/c1/messages", headers=auth("u1")).json() == []


class TestNotifications:
    def test_self_notification_and_read_flow(self, client):
        created = client.post(
            "/api/v1/notifications",
            json={"user_id": "u2", "title": "Reminder", "message": "Match starts soon"},
            headers=auth("u2"),
        )
        assert created.status_code == 201
        notification_id = created.json()["id"]

        assert client.get("/api/v1/notifications/unread-count", headers=auth("u2")).json() == {"count": 1}

        read = client.post(f"/api/v1/notifications/{notification_id}/read", headers=auth("u2"))
        assert read.status_code == 200
        assert read.json()["read"] is True

        unread = client.get("/api/v1/notifications", params={"unread_only": True}, headers=auth("u2"))
        assert unread.json() == []

    def test_only_admin_may_notify_others(self, client):
        payload = {"user_id": "u1", "title": "Hey", "message": "Not allowed"}
        denied = client.post("/api/v1/notifications", json=payload, headers=auth("u2"))
        assert denied.status_code == 403

        payload = {"user_id": "u2", "title": "Bet settled", "message": "You won", "type": "bet_settlement"}
        allowed = client.post("/api/v1/notifications", json=payload, headers=auth("u1"))
        assert allowed.status_code == 201
        assert allowed.json()["user_id"] == "u2"

    def test_read_all_and_missing(self, client):
        for i in range(2):
            client.post(
                "/api/v1/notifications",
                json={"user_id": "u2", "title": f"n{i}", "message": "body"},
                headers=auth("u2"),
            )
        res = client.post("/api/v1/notifications/read-all", headers=auth("u2"))
        assert res.json() == {"updated": 2}

        missing = client.post("/api/v1/notifications/does-not-exist/read", headers=auth("u2"))
        assert missing.status_code == 404


class TestWebSockets:
    def test_invalid_token_is_rejected(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/api/v1/ws/conversations/c1?token=nope"):
                pass

    def test_conversation_flow(self, client):
        token = create_access_token("u1")
        with client.websocket_connect(f"/api/v1/ws/conversations/c1?token={token}") as ws:
            receive_until(ws, lambda f: f["type"] == "messages" and not f["loading"])

            ws.send_json({"type": "message", "content": "hello"})
            frame = receive_until(
                ws,
                lambda f: f["type"] == "messages" and [m["content"] for m in f["messages"]] == ["hello"],
            )
            assert frame["channel_id"] == "c1"

            ws.send_json({"type": "bogus"})
            error = receive_until(ws, lambda f: f["type"] == "error")
            assert error["message"]

    def test_non_member_connection_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/api/v1/ws/conversations/c1?token={create_access_token('u3')}"):
                pass
        assert exc.value.code == 1008

    def test_switch_to_foreign_channel_is_refused(self, client):
        token = create_access_token("u1")
        with client.websocket_connect(f"/api/v1/ws/conversations/c1?token={token}") as ws:
            receive_until(ws, lambda f: f["type"] == "messages" and not f["loading"])

            ws.send_json({"type": "switch", "channel_id": "c9"})
            error = receive_until(ws, lambda f: f["type"] == "error")
            assert error["message"] == text.CHAT_NOT_CHANNEL_MEMBER

            # Still on c1
            ws.send_json({"type": "message", "content": "still here"})
            frame = receive_until(
                ws,
                lambda f: f["type"] == "messages" and [m["content"] for m in f["messages"]] == ["still here"],
            )
            assert frame["channel_id"] == "c1"

            ws.send_json({"type": "switch", "channel_id": "c2"})
            receive_until(ws, lambda f: f["type"] == "messages" and f["channel_id"] == "c2" and not f["loading"])

    def test_presence_reaches_other_participant(self, client):
        with client.websocket_connect(f"/api/v1/ws/conversations/c1?token={create_access_token('u1')}") as alice:
            receive_until(alice, lambda f: f["type"] == "presence" and f["online_users"] == ["u1"])
            with client.websocket_connect(f"/api/v1/ws/conversations/c1?token={create_access_token('u2')}"):
                receive_until(alice, lambda f: f["type"] == "presence" and f["online_users"] == ["u1", "u2"])

    def test_notification_stream(self, client):
        token = create_access_token("u2")
        with client.websocket_connect(f"/api/v1/ws/notifications?token={token}") as ws:
            assert ws.receive_json() == {"type": "status", "status": "connected"}
            ws.send_json({"type": "permission", "state": "granted"})
            # The error reply shows the permission frame was handled first
            ws.send_json({"type": "unknown"})
            assert ws.receive_json()["type"] == "error"

            created = client.post(
                "/api/v1/notifications",
                json={"user_id": "u2", "title": "Bet settled", "message": "You won"},
                headers=auth("u2"),
            )
            notification_id = created.json()["id"]

            local = ws.receive_json()
            assert local["type"] == "notification"
            assert local["notification"]["id"] == notification_id
            platform = ws.receive_json()
            assert platform == {
                "type": "platform_alert",
                "tag": notification_id,
                "title": "Bet settled",
                "body": "You won",
            }
