"""Pydantic schemas for API payloads."""

from .assistant import (
    AskRequest,
    AskResponse,
    CareerPathRead,
    PathSuggestionRead,
    SearchResultRead,
    SuggestRequest,
)
from .auth import (
    FederatedLoginRequest,
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    Token,
)
from .groups import GroupCreate, GroupLeaveRequest, GroupMemberRead, GroupMembersAdd, GroupRead
from .messages import MessageCreate, MessageRead, ReplyReference
from .profiles import DirectConversationRead, OwnProfileRead, ProfileRead, RoleSelection

__all__ = [
    "AskRequest",
    "AskResponse",
    "CareerPathRead",
    "PathSuggestionRead",
    "SearchResultRead",
    "SuggestRequest",
    "FederatedLoginRequest",
    "LoginRequest",
    "PasswordResetConfirm",
    "PasswordResetRequest",
    "RegisterRequest",
    "Token",
    "GroupCreate",
    "GroupLeaveRequest",
    "GroupMemberRead",
    "GroupMembersAdd",
    "GroupRead",
    "MessageCreate",
    "MessageRead",
    "ReplyReference",
    "DirectConversationRead",
    "OwnProfileRead",
    "ProfileRead",
    "RoleSelection",
]
