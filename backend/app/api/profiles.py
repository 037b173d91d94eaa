"""Profile endpoints: own profile, role selection and the user directory."""

from typing import Any, List, Literal

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_account_service, get_current_profile, get_store
from app.schemas import DirectConversationRead, OwnProfileRead, ProfileRead, RoleSelection
from app.services.accounts import AccountService
from app.services.directory import fetch_profiles, search_profiles, start_conversation

from guidelight.store import DocumentStore

router = APIRouter()


@router.get("/me", response_model=OwnProfileRead)
async def read_own_profile(current_profile: dict[str, Any] = Depends(get_current_profile)) -> dict[str, Any]:
    return current_profile


@router.put("/me/role", response_model=OwnProfileRead)
async def select_role(
    payload: RoleSelection,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    """Record the role picked during onboarding."""

    return await accounts.select_role(current_profile["id"], payload.role)


@router.get("", response_model=List[ProfileRead])
async def list_profiles(
    role: Literal["all", "mentors", "student", "teacher", "professional"] = "all",
    q: str | None = Query(default=None, max_length=100),
    current_profile: dict[str, Any] = Depends(get_current_profile),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    """Browse other users, optionally narrowed by role and free text."""

    profiles = await fetch_profiles(store, role, exclude_user_id=current_profile["id"])
    return search_profiles(profiles, q)


@router.get("/mentors", response_model=List[ProfileRead])
async def list_mentors(
    q: str | None = Query(default=None, max_length=100),
    current_profile: dict[str, Any] = Depends(get_current_profile),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    """Teachers and professionals available for mentoring."""

    profiles = await fetch_profiles(store, "mentors", exclude_user_id=current_profile["id"])
    return search_profiles(profiles, q)


@router.get("/{user_id}", response_model=ProfileRead)
async def read_profile(
    user_id: str,
    _: dict[str, Any] = Depends(get_current_profile),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    return await accounts.get_profile(user_id)


@router.post("/{user_id}/conversation", response_model=DirectConversationRead)
async def open_direct_conversation(
    user_id: str,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    store: DocumentStore = Depends(get_store),
) -> DirectConversationRead:
    """Resolve the direct conversation with another user; nothing is written."""

    scope, other = await start_conversation(store, current_profile["id"], user_id)
    return DirectConversationRead(
        conversation_id=scope.key,
        participants=list(scope.participants),
        other=ProfileRead.model_validate(other),
    )
