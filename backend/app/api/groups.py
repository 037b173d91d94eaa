"""Group chat endpoints: membership management and message history."""

from typing import Any, List

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_profile, get_group_manager, get_store
from app.config import get_settings
from app.schemas import (
    GroupCreate,
    GroupLeaveRequest,
    GroupMemberRead,
    GroupMembersAdd,
    GroupRead,
    MessageCreate,
    MessageRead,
    ProfileRead,
)
from app.services.directory import invitable_profiles
from app.services.groups import GroupMembershipManager
from app.services.messages import ConversationScope, list_messages, post_message

from guidelight.store import DocumentStore

router = APIRouter()
settings = get_settings()


@router.get("", response_model=List[GroupRead])
async def list_groups(
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> list[dict[str, Any]]:
    """Groups the current user belongs to, most recently active first."""

    return await groups.list_groups(current_profile["id"])


@router.post("", response_model=GroupRead, status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> dict[str, Any]:
    return await groups.create_group(
        current_profile, payload.member_ids, payload.name, payload.description
    )


@router.get("/{group_id}", response_model=GroupRead)
async def read_group(
    group_id: str,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> dict[str, Any]:
    group = await groups.get_group(group_id)
    groups.require_member(group, current_profile["id"])
    return group


@router.get("/{group_id}/members", response_model=List[GroupMemberRead])
async def list_group_members(
    group_id: str,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> list[dict[str, Any]]:
    group = await groups.get_group(group_id)
    groups.require_member(group, current_profile["id"])
    return await groups.list_members(group_id)


@router.get("/{group_id}/candidates", response_model=List[ProfileRead])
async def list_invite_candidates(
    group_id: str,
    q: str | None = Query(default=None, max_length=100),
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    """Profiles an admin may still invite to the group."""

    group = await groups.get_group(group_id)
    groups.require_admin(group, current_profile["id"])
    return await invitable_profiles(store, current_profile["id"], group.get("members", []), q)


@router.post("/{group_id}/members", response_model=GroupRead)
async def add_group_members(
    group_id: str,
    payload: GroupMembersAdd,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> dict[str, Any]:
    return await groups.add_members(group_id, current_profile, payload.member_ids)


@router.post("/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_group(
    group_id: str,
    payload: GroupLeaveRequest,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
) -> None:
    await groups.leave_group(group_id, current_profile, confirm=payload.confirm)


@router.get("/{group_id}/messages", response_model=List[MessageRead])
async def read_group_messages(
    group_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1, le=settings.chat_history_max_limit),
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    group = await groups.get_group(group_id)
    groups.require_member(group, current_profile["id"])
    return await list_messages(store, ConversationScope.group(group_id), limit=limit)


@router.post("/{group_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def create_group_message(
    group_id: str,
    payload: MessageCreate,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    groups: GroupMembershipManager = Depends(get_group_manager),
    store: DocumentStore = Depends(get_store),
) -> dict[str, Any]:
    group = await groups.get_group(group_id)
    groups.require_member(group, current_profile["id"])
    return await post_message(
        store,
        ConversationScope.group(group_id),
        sender_id=current_profile["id"],
        sender_name=current_profile.get("username") or "User",
        content=payload.content,
        reply_to_id=payload.reply_to_id,
        snippet_length=settings.reply_snippet_length,
        max_length=settings.chat_message_max_length,
    )
