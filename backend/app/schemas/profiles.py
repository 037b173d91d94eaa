"""Schemas describing user profiles."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models import ProfileRole


class ProfileRead(BaseModel):
    """Public view of a profile; private fields such as e-mail are omitted."""

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = ""
    skills: list[str] = Field(default_factory=list)
    role: ProfileRole | None = None
    online: bool = False
    last_seen: datetime | None = None


class OwnProfileRead(ProfileRead):
    email: str | None = None
    first_name: str | None = ""
    last_name: str | None = ""


class RoleSelection(BaseModel):
    role: ProfileRole


class DirectConversationRead(BaseModel):
    conversation_id: str
    participants: list[str]
    other: ProfileRead
