"""Schemas for group chat management."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr

from app.models import GroupRole


class GroupCreate(BaseModel):
    name: constr(max_length=100) = Field(..., description="Group name; must not be blank")
    description: constr(max_length=500) = ""
    member_ids: list[str] = Field(..., description="Invited profile ids; at least one is required")


class GroupRead(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    avatar_url: str | None = ""
    created_by: str
    members: list[str]
    admins: list[str]
    created_at: datetime
    updated_at: datetime | None = None


class GroupMemberRead(BaseModel):
    user_id: str
    username: str
    role: GroupRole
    joined_at: datetime | None = None
    avatar_url: str | None = None


class GroupMembersAdd(BaseModel):
    member_ids: list[str] = Field(..., min_length=1)


class GroupLeaveRequest(BaseModel):
    confirm: bool = Field(default=False, description="Must be true; leaving is destructive")
