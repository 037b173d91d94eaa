from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.monitoring.metrics import typing_updates_total

from guidelight.realtime.timers import SingleSlotTimer
from guidelight.realtime.typing_status import TYPING_COLLECTION, TypingTracker, typing_document_id
from guidelight.store import MemoryDocumentStore


class FailingWritesStore(MemoryDocumentStore):
    async def _write(self, collection: str, doc_id: str, data: dict[str, Any], *, must_not_exist: bool = False) -> None:
        raise ConnectionError("store offline")


@pytest.mark.anyio("asyncio")
async def test_single_slot_timer_runs_only_latest_callback() -> None:
    timer = SingleSlotTimer("test")
    calls: list[str] = []

    async def first() -> None:
        calls.append("first")

    async def second() -> None:
        calls.append("second")

    timer.schedule(0.05, first)
    timer.schedule(0.01, second)
    assert timer.pending
    await timer.wait()

    assert calls == ["second"]
    assert not timer.pending


@pytest.mark.anyio("asyncio")
async def test_set_typing_writes_record_and_auto_clears(store: MemoryDocumentStore) -> None:
    tracker = TypingTracker(store, clear_delay=0.02)

    await tracker.set_typing("conv", "u1", "alice")

    record = await store.get(TYPING_COLLECTION, typing_document_id("conv", "u1"))
    assert record.exists
    assert record.get("is_typing") is True
    assert record.get("username") == "alice"
    assert record.get("conversation_id") == "conv"

    await tracker.clear_timer.wait()
    assert not (await store.get(TYPING_COLLECTION, "conv_u1")).exists


@pytest.mark.anyio("asyncio")
async def test_repeated_set_typing_keeps_one_pending_clear(store: MemoryDocumentStore) -> None:
    tracker = TypingTracker(store, clear_delay=0.05)

    await tracker.set_typing("conv", "u1", "alice")
    await asyncio.sleep(0.03)
    await tracker.set_typing("conv", "u1", "alice")
    await asyncio.sleep(0.03)

    # The first timer was replaced, so the record survives past its deadline.
    assert (await store.get(TYPING_COLLECTION, "conv_u1")).exists
    await tracker.clear_timer.wait()
    assert not (await store.get(TYPING_COLLECTION, "conv_u1")).exists


@pytest.mark.anyio("asyncio")
async def test_debounce_clears_after_quiet_period(store: MemoryDocumentStore) -> None:
    tracker = TypingTracker(store, clear_delay=10.0, debounce_delay=0.03)

    for _ in range(3):
        await tracker.debounce_typing("conv", "u1", "alice")
        await asyncio.sleep(0.01)
    assert (await store.get(TYPING_COLLECTION, "conv_u1")).exists

    await tracker.debounce_timer.wait()
    assert not (await store.get(TYPING_COLLECTION, "conv_u1")).exists
    tracker.cleanup()
    assert not tracker.clear_timer.pending


@pytest.mark.anyio("asyncio")
async def test_listen_to_typing_reports_other_users_only(store: MemoryDocumentStore) -> None:
    alice = TypingTracker(store, clear_delay=10.0)
    bob = TypingTracker(store, clear_delay=10.0)
    updates: list[list[str]] = []

    async def callback(usernames: list[str]) -> None:
        updates.append(usernames)

    registration = await alice.listen_to_typing("conv", "u1", callback)
    await alice.set_typing("conv", "u1", "alice")
    await bob.set_typing("conv", "u2", "bob")
    await bob.set_typing("other", "u2", "bob")
    await bob.stop_typing("conv", "u2")

    assert updates[0] == []
    assert updates[1] == []
    assert updates[2] == ["bob"]
    assert updates[-1] == []

    registration.unsubscribe()
    alice.cleanup()
    bob.cleanup()


@pytest.mark.anyio("asyncio")
async def test_typing_failures_are_swallowed() -> None:
    typing_updates_total.reset()
    tracker = TypingTracker(FailingWritesStore(), clear_delay=0.01)

    await tracker.set_typing("conv", "u1", "alice")

    assert not tracker.clear_timer.pending
    assert typing_updates_total.value("set", "error") == 1
