from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.models import SYSTEM_SENDER_ID
from app.services.messages import ConversationScope, build_message_record, build_system_message

from guidelight.realtime.feed import MessageFeed, MessageFeedSynchronizer
from guidelight.store import MemoryDocumentStore


def _message(message_id: str, sender_id: str, content: str = "hi", **extra: Any) -> dict[str, Any]:
    return {"id": message_id, "sender_id": sender_id, "content": content, "kind": "message", **extra}


class Recorder:
    def __init__(self) -> None:
        self.snapshots: list[list[dict[str, Any]]] = []
        self.received: list[dict[str, Any]] = []
        self.sent: list[dict[str, Any]] = []
        self.errors: list[Exception] = []
        self.scrolls = 0

    async def on_messages(self, messages: list[dict[str, Any]]) -> None:
        self.snapshots.append(messages)

    async def on_received(self, message: dict[str, Any]) -> None:
        self.received.append(message)

    async def on_sent(self, message: dict[str, Any]) -> None:
        self.sent.append(message)

    async def on_scroll(self) -> None:
        self.scrolls += 1

    async def on_error(self, exc: Exception) -> None:
        self.errors.append(exc)

    def hooks(self) -> dict[str, Any]:
        return {
            "on_messages": self.on_messages,
            "on_received": self.on_received,
            "on_sent": self.on_sent,
            "on_scroll": self.on_scroll,
            "on_error": self.on_error,
        }


class FailingAddStore(MemoryDocumentStore):
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        raise ConnectionError("write rejected")


class SlowAddStore(MemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        await self.release.wait()
        return await super().add(collection, data)


def test_first_snapshot_is_a_silent_baseline() -> None:
    feed = MessageFeed(current_user_id="me")

    update = feed.apply_snapshot([_message("1", "other")])

    assert update.baseline
    assert update.received is None
    assert feed.messages[0]["id"] == "1"


def test_growth_from_other_sender_notifies_once() -> None:
    feed = MessageFeed(current_user_id="me")
    feed.apply_snapshot([_message("1", "other")])

    update = feed.apply_snapshot([_message("1", "other"), _message("2", "other"), _message("3", "other")])
    assert update.received is not None and update.received["id"] == "3"

    repeated = feed.apply_snapshot([_message("1", "other"), _message("2", "other"), _message("3", "other")])
    assert repeated.received is None


def test_own_and_system_messages_never_notify() -> None:
    feed = MessageFeed(current_user_id="me")
    feed.apply_snapshot([])

    own = feed.apply_snapshot([_message("1", "me")])
    system = feed.apply_snapshot(
        [_message("1", "me"), {"id": "2", "sender_id": SYSTEM_SENDER_ID, "kind": "system", "content": "x"}]
    )
    shrink = feed.apply_snapshot([_message("1", "me")])

    assert own.received is None
    assert system.received is None
    assert shrink.received is None


def test_feed_is_replaced_not_merged() -> None:
    feed = MessageFeed(current_user_id="me")
    feed.apply_snapshot([_message("1", "a"), _message("2", "b")])
    feed.apply_snapshot([_message("2", "b")])

    assert [message["id"] for message in feed.messages] == ["2"]
    assert feed.find("1") is None


@pytest.mark.anyio("asyncio")
async def test_synchronizer_notifies_for_remote_messages_only(store: MemoryDocumentStore) -> None:
    scope = ConversationScope.group("g1")
    await store.add(scope.collection, build_message_record(scope, sender_id="other", sender_name="bob", content="old"))
    recorder = Recorder()
    sync = MessageFeedSynchronizer(store, scope, user_id="me", username="alice", scroll_delay=0.01, **recorder.hooks())

    await sync.start()
    assert len(recorder.snapshots) == 1
    assert recorder.received == []

    await store.add(scope.collection, build_message_record(scope, sender_id="other", sender_name="bob", content="new"))
    await store.add(scope.collection, build_system_message(scope, "bob added carol"))
    await store.add(
        ConversationScope.group("g2").collection,
        build_message_record(ConversationScope.group("g2"), sender_id="x", sender_name="x", content="elsewhere"),
    )
    await sync.send("mine")

    assert [message["content"] for message in recorder.received] == ["new"]
    assert [message["content"] for message in sync.messages] == ["old", "new", "bob added carol", "mine"]
    assert recorder.sent[0]["sender_id"] == "me"

    await sync.scroll_timer.wait()
    assert recorder.scrolls == 1
    sync.stop()


@pytest.mark.anyio("asyncio")
async def test_send_ignores_blank_content_and_uses_draft(store: MemoryDocumentStore) -> None:
    scope = ConversationScope.direct("me", "you")
    sync = MessageFeedSynchronizer(store, scope, user_id="me", username="alice")

    assert await sync.send("   ") is None
    assert len(await store.scan(scope.collection)) == 0

    sync.draft = "  from the draft  "
    message_id = await sync.send()

    stored = await store.get(scope.collection, message_id)
    assert stored.get("content") == "from the draft"
    assert stored.get("conversation_id") == "me_you"
    assert stored.get("participants") == ["me", "you"]
    assert sync.draft == ""


@pytest.mark.anyio("asyncio")
async def test_reply_reference_truncates_snippet(store: MemoryDocumentStore) -> None:
    scope = ConversationScope.group("g1")
    long_text = "x" * 80
    target_id = await store.add(
        scope.collection, build_message_record(scope, sender_id="other", sender_name="bob", content=long_text)
    )
    sync = MessageFeedSynchronizer(store, scope, user_id="me", username="alice")
    await sync.start()

    assert sync.stage_reply("unknown") is None
    assert sync.stage_reply(target_id) is not None
    message_id = await sync.send("answer")

    reply = (await store.get(scope.collection, message_id)).get("reply_to")
    assert reply == {
        "message_id": target_id,
        "content": "x" * 50 + "...",
        "sender_id": "other",
        "sender_name": "bob",
    }
    assert sync.reply_target is None
    sync.stop()


@pytest.mark.anyio("asyncio")
async def test_concurrent_send_is_dropped_while_in_flight() -> None:
    store = SlowAddStore()
    scope = ConversationScope.group("g1")
    sync = MessageFeedSynchronizer(store, scope, user_id="me", username="alice")

    first = asyncio.create_task(sync.send("one"))
    await asyncio.sleep(0)
    assert sync.sending
    assert await sync.send("two") is None

    store.release.set()
    assert await first is not None
    assert not sync.sending
    assert [doc.get("content") for doc in await store.scan(scope.collection)] == ["one"]


@pytest.mark.anyio("asyncio")
async def test_failed_send_reports_error_and_does_not_restore_compose_state() -> None:
    store = FailingAddStore()
    scope = ConversationScope.group("g1")
    recorder = Recorder()
    sync = MessageFeedSynchronizer(store, scope, user_id="me", username="alice", **recorder.hooks())
    sync.draft = "lost"
    sync.reply_target = _message("m1", "other", "target")

    assert await sync.send() is None

    assert len(recorder.errors) == 1
    assert sync.draft == ""
    assert sync.reply_target is None
    assert not sync.sending
