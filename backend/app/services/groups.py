"""Group membership: creation, invitations and departures mirrored into the feed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Sequence

from app.models import GroupRole
from app.monitoring.metrics import group_operations_total
from app.services.errors import (
    GroupOperationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.services.messages import ConversationScope, build_system_message

from guidelight.store.base import DocumentStore, Query, array_remove, array_union


logger = logging.getLogger(__name__)

GROUPS = "groups"
PROFILES = "profiles"

UndoAction = Callable[[], Awaitable[None]]


def members_collection(group_id: str) -> str:
    return f"group_members:{group_id}"


def _display_name(profile: dict[str, Any]) -> str:
    return profile.get("username") or profile.get("display_name") or "User"


class _Saga:
    """Records compensating actions for completed steps of a multi-document write."""

    def __init__(self, operation: str) -> None:
        self._operation = operation
        self._undo: list[tuple[str, UndoAction]] = []

    def completed(self, description: str, undo: UndoAction) -> None:
        self._undo.append((description, undo))

    async def rollback(self) -> None:
        for description, undo in reversed(self._undo):
            try:
                await undo()
            except Exception:
                logger.exception(
                    "Compensation failed",
                    extra={"operation": self._operation, "step": description},
                )
        self._undo.clear()


class GroupMembershipManager:
    """Service owning the ``groups`` documents and their member records.

    Membership rules are enforced here rather than trusted to clients:
    only admins add members and only members may leave or read a group.
    Each operation is a sequence of single-document writes; when one fails
    the completed writes are undone in reverse order and
    :class:`GroupOperationError` is raised.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_group(self, group_id: str) -> dict[str, Any]:
        snapshot = await self._store.get(GROUPS, group_id)
        if not snapshot.exists:
            raise NotFoundError("Group not found")
        return snapshot.to_dict()

    @staticmethod
    def require_member(group: dict[str, Any], user_id: str) -> None:
        if user_id not in group.get("members", []):
            raise PermissionDeniedError("You are not a member of this group")

    @staticmethod
    def require_admin(group: dict[str, Any], user_id: str) -> None:
        if user_id not in group.get("admins", []):
            raise PermissionDeniedError("Only group admins can add members")

    async def list_groups(self, user_id: str) -> list[dict[str, Any]]:
        snapshot = await self._store.query(
            Query(GROUPS).where("members", "array_contains", user_id).order_by("updated_at", descending=True)
        )
        return [document.to_dict() for document in snapshot]

    async def list_members(self, group_id: str) -> list[dict[str, Any]]:
        members = []
        for record in await self._store.scan(members_collection(group_id)):
            profile = await self._store.get(PROFILES, record.id)
            members.append(
                {
                    "user_id": record.id,
                    "username": record.get("username") or profile.get("username") or "Unknown",
                    "role": record.get("role") or GroupRole.MEMBER.value,
                    "joined_at": record.get("joined_at"),
                    "avatar_url": profile.get("avatar_url"),
                }
            )
        return members

    async def _load_profiles(self, user_ids: Iterable[str]) -> list[dict[str, Any]]:
        profiles = []
        for user_id in user_ids:
            snapshot = await self._store.get(PROFILES, user_id)
            if not snapshot.exists:
                raise NotFoundError(f"User {user_id} not found")
            profiles.append(snapshot.to_dict())
        return profiles

    @staticmethod
    def _member_record(profile: dict[str, Any], role: GroupRole, joined_at: datetime) -> dict[str, Any]:
        return {
            "user_id": profile["id"],
            "username": _display_name(profile),
            "role": role.value,
            "joined_at": joined_at,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_group(
        self,
        creator: dict[str, Any],
        invitee_ids: Sequence[str],
        name: str,
        description: str = "",
    ) -> dict[str, Any]:
        invitees = list(dict.fromkeys(uid for uid in invitee_ids if uid != creator["id"]))
        if not invitees:
            raise ValidationError("Select at least one member to create a group")
        if not name.strip():
            raise ValidationError("Please enter a group name")
        invitee_profiles = await self._load_profiles(invitees)

        now = datetime.now(timezone.utc)
        group = {
            "name": name.strip(),
            "description": description.strip(),
            "avatar_url": "",
            "created_by": creator["id"],
            "created_at": now,
            "updated_at": now,
            "members": [creator["id"], *invitees],
            "admins": [creator["id"]],
        }
        saga = _Saga("create_group")
        group_id: str | None = None
        try:
            group_id = await self._store.add(GROUPS, group)
            saga.completed("group", lambda: self._store.delete(GROUPS, group_id))
            collection = members_collection(group_id)
            records = [(creator, GroupRole.ADMIN)] + [(profile, GroupRole.MEMBER) for profile in invitee_profiles]
            for profile, role in records:
                await self._store.set(collection, profile["id"], self._member_record(profile, role, now))
                saga.completed(
                    f"member:{profile['id']}",
                    lambda uid=profile["id"]: self._store.delete(collection, uid),
                )
            scope = ConversationScope.group(group_id)
            await self._store.add(
                scope.collection,
                build_system_message(scope, f"{_display_name(creator)} created this group"),
            )
        except Exception as exc:
            await saga.rollback()
            group_operations_total.labels("create", "rolled_back").inc()
            logger.exception("Group creation failed", extra={"group_id": group_id})
            raise GroupOperationError("Failed to create group") from exc
        group_operations_total.labels("create", "ok").inc()
        logger.info("Group created", extra={"group_id": group_id, "members": len(group["members"])})
        return {"id": group_id, **group}

    async def add_members(
        self, group_id: str, actor: dict[str, Any], invitee_ids: Sequence[str]
    ) -> dict[str, Any]:
        group = await self.get_group(group_id)
        self.require_admin(group, actor["id"])
        current = list(group.get("members", []))
        joining = [uid for uid in dict.fromkeys(invitee_ids) if uid not in current]
        if not joining:
            raise ValidationError("Select at least one new member")
        profiles = await self._load_profiles(joining)

        now = datetime.now(timezone.utc)
        collection = members_collection(group_id)
        saga = _Saga("add_members")
        try:
            await self._store.update(
                GROUPS, group_id, {"members": array_union(joining), "updated_at": now}
            )
            saga.completed(
                "members",
                lambda: self._store.update(GROUPS, group_id, {"members": array_remove(joining)}),
            )
            for profile in profiles:
                await self._store.set(
                    collection, profile["id"], self._member_record(profile, GroupRole.MEMBER, now)
                )
                saga.completed(
                    f"member:{profile['id']}",
                    lambda uid=profile["id"]: self._store.delete(collection, uid),
                )
            names = ", ".join(_display_name(profile) for profile in profiles)
            scope = ConversationScope.group(group_id)
            await self._store.add(
                scope.collection, build_system_message(scope, f"{_display_name(actor)} added {names}")
            )
        except Exception as exc:
            await saga.rollback()
            group_operations_total.labels("add_members", "rolled_back").inc()
            logger.exception("Adding group members failed", extra={"group_id": group_id})
            raise GroupOperationError("Failed to add members") from exc
        group_operations_total.labels("add_members", "ok").inc()
        return await self.get_group(group_id)

    async def leave_group(
        self,
        group_id: str,
        actor: dict[str, Any],
        *,
        confirm: bool,
        on_left: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        if not confirm:
            raise ValidationError("Leaving a group must be confirmed")
        group = await self.get_group(group_id)
        self.require_member(group, actor["id"])
        user_id = actor["id"]
        collection = members_collection(group_id)
        previous_record = await self._store.get(collection, user_id)
        was_admin = user_id in group.get("admins", [])

        saga = _Saga("leave_group")
        try:
            await self._store.delete(collection, user_id)
            if previous_record.exists:
                saga.completed(
                    "member_record",
                    lambda: self._store.set(collection, user_id, previous_record.data),
                )
            await self._store.update(
                GROUPS,
                group_id,
                {
                    "members": array_remove([user_id]),
                    "admins": array_remove([user_id]),
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            saga.completed(
                "membership",
                lambda: self._store.update(
                    GROUPS,
                    group_id,
                    {
                        "members": array_union([user_id]),
                        "admins": array_union([user_id] if was_admin else []),
                    },
                ),
            )
            scope = ConversationScope.group(group_id)
            await self._store.add(
                scope.collection, build_system_message(scope, f"{_display_name(actor)} left the group")
            )
        except Exception as exc:
            await saga.rollback()
            group_operations_total.labels("leave", "rolled_back").inc()
            logger.exception("Leaving group failed", extra={"group_id": group_id})
            raise GroupOperationError("Failed to leave group") from exc
        group_operations_total.labels("leave", "ok").inc()
        if on_left is not None:
            await on_left(group_id)
