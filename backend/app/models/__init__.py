"""Database models package."""

from .base import Base
from .documents import StoredDocument
from .enums import SYSTEM_SENDER_ID, GroupRole, MessageKind, MessageScope, ProfileRole

__all__ = [
    "Base",
    "StoredDocument",
    "GroupRole",
    "MessageKind",
    "MessageScope",
    "ProfileRole",
    "SYSTEM_SENDER_ID",
]
