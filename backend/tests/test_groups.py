from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.database import build_engine, build_session_factory, create_schema
from app.monitoring.metrics import group_operations_total
from app.services.errors import GroupOperationError, NotFoundError, PermissionDeniedError, ValidationError
from app.services.groups import GROUPS, GroupMembershipManager, members_collection
from app.services.messages import ConversationScope, list_messages

from guidelight.store import MemoryDocumentStore, SqlDocumentStore


class FailingCollectionStore(MemoryDocumentStore):
    """Rejects writes to collections starting with *prefix* once armed."""

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix
        self.armed = False

    async def _write(self, collection: str, doc_id: str, data: dict[str, Any], *, must_not_exist: bool = False) -> None:
        if self.armed and collection.startswith(self.prefix):
            raise ConnectionError("write failed")
        await super()._write(collection, doc_id, data, must_not_exist=must_not_exist)


async def _system_messages(store: MemoryDocumentStore, group_id: str) -> list[str]:
    messages = await list_messages(store, ConversationScope.group(group_id), limit=50)
    return [message["content"] for message in messages if message["kind"] == "system"]


@pytest.mark.anyio("asyncio")
async def test_create_group_writes_group_members_and_announcement(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    await make_profile("u2", "bob")
    await make_profile("u3", "carol")
    manager = GroupMembershipManager(store)

    group = await manager.create_group(alice, ["u2", "u3", "u2", "u1"], "  Study Group ", "exam prep")

    assert group["name"] == "Study Group"
    assert group["members"] == ["u1", "u2", "u3"]
    assert group["admins"] == ["u1"]
    members = {member["user_id"]: member for member in await manager.list_members(group["id"])}
    assert members["u1"]["role"] == "admin"
    assert members["u2"]["role"] == "member"
    assert members["u3"]["username"] == "carol"
    assert await _system_messages(store, group["id"]) == ["alice created this group"]
    assert [item["id"] for item in await manager.list_groups("u2")] == [group["id"]]


@pytest.mark.anyio("asyncio")
async def test_create_group_validates_before_writing(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    await make_profile("u2", "bob")
    manager = GroupMembershipManager(store)

    with pytest.raises(ValidationError):
        await manager.create_group(alice, ["u1"], "Solo")
    with pytest.raises(ValidationError):
        await manager.create_group(alice, ["u2"], "   ")
    with pytest.raises(NotFoundError):
        await manager.create_group(alice, ["ghost"], "Ghosts")

    assert await store.scan(GROUPS) == []


@pytest.mark.anyio("asyncio")
async def test_only_admins_add_members(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    bob = await make_profile("u2", "bob")
    await make_profile("u3", "carol")
    await make_profile("u4", "dave")
    manager = GroupMembershipManager(store)
    group = await manager.create_group(alice, ["u2"], "Mentors")

    with pytest.raises(PermissionDeniedError):
        await manager.add_members(group["id"], bob, ["u3"])

    updated = await manager.add_members(group["id"], alice, ["u3", "u4", "u2"])

    assert updated["members"] == ["u1", "u2", "u3", "u4"]
    stored = await manager.get_group(group["id"])
    assert stored["members"] == ["u1", "u2", "u3", "u4"]
    assert (await store.get(members_collection(group["id"]), "u4")).get("role") == "member"
    assert (await _system_messages(store, group["id"]))[-1] == "alice added carol, dave"

    with pytest.raises(ValidationError):
        await manager.add_members(group["id"], alice, ["u2"])


@pytest.mark.anyio("asyncio")
async def test_leave_group_requires_confirmation_and_membership(store, make_profile) -> None:
    alice = await make_profile("u1", "alice")
    bob = await make_profile("u2", "bob")
    outsider = await make_profile("u9", "eve")
    manager = GroupMembershipManager(store)
    group = await manager.create_group(alice, ["u2"], "Pair")
    left: list[str] = []

    async def on_left(group_id: str) -> None:
        left.append(group_id)

    with pytest.raises(ValidationError):
        await manager.leave_group(group["id"], bob, confirm=False)
    with pytest.raises(PermissionDeniedError):
        await manager.leave_group(group["id"], outsider, confirm=True)

    await manager.leave_group(group["id"], alice, confirm=True, on_left=on_left)

    stored = await manager.get_group(group["id"])
    assert stored["members"] == ["u2"]
    assert stored["admins"] == []
    assert not (await store.get(members_collection(group["id"]), "u1")).exists
    assert (await _system_messages(store, group["id"]))[-1] == "alice left the group"
    assert left == [group["id"]]
    assert await manager.list_groups("u1") == []


@pytest.mark.anyio("asyncio")
async def test_failed_create_is_rolled_back() -> None:
    group_operations_total.reset()
    store = FailingCollectionStore("group_messages")
    manager = GroupMembershipManager(store)
    await store.set("profiles", "u1", {"username": "alice"})
    await store.set("profiles", "u2", {"username": "bob"})
    store.armed = True

    with pytest.raises(GroupOperationError):
        await manager.create_group({"id": "u1", "username": "alice"}, ["u2"], "Doomed")

    assert await store.scan(GROUPS) == []
    assert group_operations_total.value("create", "rolled_back") == 1


@pytest.mark.anyio("asyncio")
async def test_failed_add_members_restores_membership() -> None:
    store = FailingCollectionStore("group_messages")
    manager = GroupMembershipManager(store)
    for uid, name in (("u1", "alice"), ("u2", "bob"), ("u3", "carol")):
        await store.set("profiles", uid, {"username": name})
    alice = {"id": "u1", "username": "alice"}
    group = await manager.create_group(alice, ["u2"], "Stable")
    store.armed = True

    with pytest.raises(GroupOperationError):
        await manager.add_members(group["id"], alice, ["u3"])

    stored = await manager.get_group(group["id"])
    assert stored["members"] == ["u1", "u2"]
    assert not (await store.get(members_collection(group["id"]), "u3")).exists


async def _seed_profiles(store, count: int) -> None:
    for index in range(1, count + 1):
        await store.set("profiles", f"u{index}", {"username": f"user{index}"})


async def _assert_concurrent_adds_keep_every_member(store) -> None:
    await _seed_profiles(store, 4)
    manager = GroupMembershipManager(store)
    admin = {"id": "u1", "username": "user1"}
    group = await manager.create_group(admin, ["u2"], "Busy")

    await asyncio.gather(
        manager.add_members(group["id"], admin, ["u3"]),
        manager.add_members(group["id"], admin, ["u4"]),
    )

    stored = await manager.get_group(group["id"])
    records = [record.id for record in await store.scan(members_collection(group["id"]))]
    assert sorted(stored["members"]) == ["u1", "u2", "u3", "u4"]
    assert sorted(records) == sorted(stored["members"])


@pytest.mark.anyio("asyncio")
async def test_concurrent_member_adds_are_merged(store) -> None:
    await _assert_concurrent_adds_keep_every_member(store)


@pytest.mark.anyio("asyncio")
async def test_concurrent_member_adds_are_merged_in_sql_store(tmp_path) -> None:
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'groups.db'}")
    create_schema(engine)
    try:
        await _assert_concurrent_adds_keep_every_member(SqlDocumentStore(build_session_factory(engine)))
    finally:
        engine.dispose()


@pytest.mark.anyio("asyncio")
async def test_leave_does_not_drop_members_added_concurrently(store) -> None:
    await _seed_profiles(store, 3)
    manager = GroupMembershipManager(store)
    admin = {"id": "u1", "username": "user1"}
    bob = {"id": "u2", "username": "user2"}
    group = await manager.create_group(admin, ["u2"], "Churn")

    await asyncio.gather(
        manager.leave_group(group["id"], bob, confirm=True),
        manager.add_members(group["id"], admin, ["u3"]),
    )

    assert sorted((await manager.get_group(group["id"]))["members"]) == ["u1", "u3"]


@pytest.mark.anyio("asyncio")
async def test_failed_leave_restores_membership_and_member_record() -> None:
    group_operations_total.reset()
    store = FailingCollectionStore("group_messages")
    manager = GroupMembershipManager(store)
    await _seed_profiles(store, 2)
    alice = {"id": "u1", "username": "user1"}
    group = await manager.create_group(alice, ["u2"], "Sticky")
    collection = members_collection(group["id"])
    record_before = (await store.get(collection, "u1")).data
    store.armed = True

    with pytest.raises(GroupOperationError):
        await manager.leave_group(group["id"], alice, confirm=True)

    stored = await manager.get_group(group["id"])
    assert sorted(stored["members"]) == ["u1", "u2"]
    assert stored["admins"] == ["u1"]
    assert (await store.get(collection, "u1")).data == record_before
    assert await _system_messages(store, group["id"]) == ["user1 created this group"]
    assert group_operations_total.value("leave", "rolled_back") == 1
