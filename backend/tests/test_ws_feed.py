from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect, WebSocketState

from app.api import ws as ws_module
from app.services.groups import GROUPS, GroupMembershipManager
from app.services.messages import GROUP_MESSAGES, ConversationScope

from guidelight.store import array_remove


def _register(client: TestClient, email: str, username: str) -> tuple[str, str]:
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": "wonderland", "confirm_password": "wonderland", "username": username},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user_id"], body["access_token"]


def receive_until(connection: WebSocketTestSession, frame_type: str, limit: int = 20) -> dict[str, Any]:
    for _ in range(limit):
        frame = connection.receive_json()
        if frame["type"] == frame_type:
            return frame
    raise AssertionError(f"No {frame_type!r} frame received")


@pytest.fixture()
def group_setup(client: TestClient) -> dict[str, Any]:
    alice_id, alice_token = _register(client, "alice@example.com", "alice")
    bob_id, bob_token = _register(client, "bob@example.com", "bob")
    response = client.post(
        "/api/groups",
        json={"name": "Study", "member_ids": [bob_id]},
        headers={"Authorization": f"Bearer {alice_token}"},
    )
    assert response.status_code == 201, response.text
    return {
        "group_id": response.json()["id"],
        "alice": (alice_id, alice_token),
        "bob": (bob_id, bob_token),
    }


def test_group_feed_streams_snapshots_and_received_messages(client: TestClient, group_setup) -> None:
    group_id = group_setup["group_id"]
    _, alice_token = group_setup["alice"]
    _, bob_token = group_setup["bob"]

    with client.websocket_connect(f"/ws/groups/{group_id}?token={alice_token}") as connection:
        initial = receive_until(connection, "messages")
        assert [message["content"] for message in initial["messages"]] == ["alice created this group"]
        assert receive_until(connection, "typing")["users"] == []

        posted = client.post(
            f"/api/groups/{group_id}/messages",
            json={"content": "hello alice"},
            headers={"Authorization": f"Bearer {bob_token}"},
        )
        assert posted.status_code == 201

        received = receive_until(connection, "received")
        assert received["message"]["content"] == "hello alice"
        assert received["message"]["sender_name"] == "bob"

        connection.send_json({"type": "reply", "message_id": received["message"]["id"]})
        staged = receive_until(connection, "reply")
        assert staged["message"]["id"] == received["message"]["id"]

        connection.send_json({"type": "message", "content": "hi bob"})
        sent = receive_until(connection, "sent")
        assert sent["message"]["content"] == "hi bob"
        assert sent["message"]["reply_to"]["content"] == "hello alice"


def test_group_feed_relays_typing_between_members(client: TestClient, group_setup) -> None:
    group_id = group_setup["group_id"]
    _, alice_token = group_setup["alice"]
    _, bob_token = group_setup["bob"]

    with client.websocket_connect(f"/ws/groups/{group_id}?token={alice_token}") as alice:
        receive_until(alice, "typing")
        with client.websocket_connect(f"/ws/groups/{group_id}?token={bob_token}") as bob:
            receive_until(bob, "typing")
            bob.send_json({"type": "typing"})
            assert receive_until(alice, "typing")["users"] == ["bob"]

            bob.send_json({"type": "stop_typing"})
            assert receive_until(alice, "typing")["users"] == []


def test_feed_rejects_non_members_and_bad_tokens(client: TestClient, group_setup) -> None:
    group_id = group_setup["group_id"]
    _, outsider_token = _register(client, "eve@example.com", "eve")

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/groups/{group_id}?token={outsider_token}") as connection:
            connection.receive_json()

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/groups/{group_id}?token=invalid") as connection:
            connection.receive_json()


def test_direct_feed_reports_invalid_frames(client: TestClient) -> None:
    alice_id, alice_token = _register(client, "alice@example.com", "alice")
    bob_id, _ = _register(client, "bob@example.com", "bob")

    with client.websocket_connect(f"/ws/direct/{bob_id}?token={alice_token}") as connection:
        assert receive_until(connection, "messages")["messages"] == []

        connection.send_text("not json")
        assert receive_until(connection, "error")["detail"] == "Invalid payload"

        connection.send_json({"type": "message", "content": "   "})
        assert receive_until(connection, "error")["detail"] == "Message content cannot be empty"

        connection.send_json({"type": "message", "content": "hey", "reply_to_id": "missing"})
        assert receive_until(connection, "error")["detail"] == "Message not found"

        connection.send_json({"type": "message", "content": "hey"})
        sent = receive_until(connection, "sent")
        assert sorted(sent["message"]["participants"]) == sorted([alice_id, bob_id])


def test_feed_connection_survives_keepalive_timeout(client: TestClient, group_setup) -> None:
    """Server side keepalive pings keep an idle socket open."""

    group_id = group_setup["group_id"]
    _, alice_token = group_setup["alice"]

    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect(f"/ws/groups/{group_id}?token={alice_token}") as connection:
            receive_until(connection, "messages")
            time.sleep(0.15)
            assert receive_until(connection, "ping")["type"] == "ping"

            connection.send_json({"type": "ping"})
            assert receive_until(connection, "pong")["type"] == "pong"
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def test_group_feed_ends_when_member_leaves(client: TestClient, group_setup) -> None:
    group_id = group_setup["group_id"]
    _, alice_token = group_setup["alice"]
    _, bob_token = group_setup["bob"]

    with client.websocket_connect(f"/ws/groups/{group_id}?token={bob_token}") as connection:
        receive_until(connection, "typing")

        left = client.post(
            f"/api/groups/{group_id}/leave",
            json={"confirm": True},
            headers={"Authorization": f"Bearer {bob_token}"},
        )
        assert left.status_code == 204

        assert receive_until(connection, "error")["detail"] == ws_module.REVOKED_DETAIL
        with pytest.raises(WebSocketDisconnect):
            connection.receive_json()

    history = client.get(
        f"/api/groups/{group_id}/messages",
        headers={"Authorization": f"Bearer {alice_token}"},
    )
    assert [message["content"] for message in history.json()] == [
        "alice created this group",
        "bob left the group",
    ]


class RecordingWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED


@pytest.mark.anyio("asyncio")
async def test_send_from_stale_group_session_is_rejected(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    bob = await make_profile("u2", "bob")
    group = await GroupMembershipManager(store).create_group(alice, ["u2"], "Mentors")
    session = ws_module.FeedSession(RecordingWebSocket(), store, ConversationScope.group(group["id"]), bob)

    await store.update(GROUPS, group["id"], {"members": array_remove(["u2"])})
    await session.handle({"type": "message", "content": "still here?"})

    assert session._outbox.get_nowait() == {"type": "error", "detail": "You are not a member of this group"}
    messages = await store.scan(GROUP_MESSAGES)
    assert [message.get("content") for message in messages] == ["alice created this group"]


@pytest.mark.anyio("asyncio")
async def test_group_session_closes_after_leaving(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    bob = await make_profile("u2", "bob")
    manager = GroupMembershipManager(store)
    group = await manager.create_group(alice, ["u2"], "Mentors")
    websocket = RecordingWebSocket()
    session = ws_module.FeedSession(websocket, store, ConversationScope.group(group["id"]), bob)

    await session.start()
    await manager.leave_group(group["id"], bob, confirm=True)
    await asyncio.wait_for(session._sender, timeout=1)

    assert websocket.close_code == 1008
    assert websocket.sent[-1] == {"type": "error", "detail": ws_module.REVOKED_DETAIL}
    await session.handle({"type": "ping"})
    assert session._outbox.empty()
    await session.close()
