from __future__ import annotations

from enum import Enum


class ProfileRole(str, Enum):
    """Career role a profile selects after sign-up."""

    STUDENT = "student"
    TEACHER = "teacher"
    PROFESSIONAL = "professional"


class GroupRole(str, Enum):
    """Roles stored on per-group member records."""

    ADMIN = "admin"
    MEMBER = "member"


class MessageKind(str, Enum):
    """Feed entry kinds; system entries narrate membership changes."""

    MESSAGE = "message"
    SYSTEM = "system"


class MessageScope(str, Enum):
    GROUP = "group"
    DIRECT = "direct"


SYSTEM_SENDER_ID = "system"
