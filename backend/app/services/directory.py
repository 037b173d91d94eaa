"""Read-mostly profile listings: mentor matching, group invitee picker, DM start."""

from __future__ import annotations

from typing import Any, Iterable, Literal

from app.models import ProfileRole
from app.services.errors import NotFoundError, ValidationError
from app.services.messages import ConversationScope

from guidelight.store.base import DocumentStore, Query


PROFILES = "profiles"
MENTOR_ROLES = (ProfileRole.TEACHER.value, ProfileRole.PROFESSIONAL.value)

RoleFilter = Literal["all", "mentors", "student", "teacher", "professional"]


async def fetch_profiles(
    store: DocumentStore, role: RoleFilter = "all", *, exclude_user_id: str | None = None
) -> list[dict[str, Any]]:
    query = Query(PROFILES)
    if role == "mentors":
        query = query.where("role", "in", list(MENTOR_ROLES))
    elif role != "all":
        try:
            query = query.where("role", "==", ProfileRole(role).value)
        except ValueError as exc:
            raise ValidationError(f"Unknown role filter '{role}'") from exc
    snapshot = await store.query(query)
    return [document.to_dict() for document in snapshot if document.id != exclude_user_id]


def _matches(profile: dict[str, Any], needle: str, fields: Iterable[str]) -> bool:
    return any(needle in str(profile.get(name) or "").lower() for name in fields)


def search_profiles(profiles: Iterable[dict[str, Any]], text: str | None) -> list[dict[str, Any]]:
    """Case-insensitive substring search over username, display name and bio."""

    needle = (text or "").strip().lower()
    if not needle:
        return list(profiles)
    return [profile for profile in profiles if _matches(profile, needle, ("username", "display_name", "bio"))]


async def invitable_profiles(
    store: DocumentStore,
    current_user_id: str,
    existing_member_ids: Iterable[str] = (),
    text: str | None = None,
) -> list[dict[str, Any]]:
    excluded = {current_user_id, *existing_member_ids}
    candidates = [
        document.to_dict() for document in await store.scan(PROFILES) if document.id not in excluded
    ]
    needle = (text or "").strip().lower()
    if not needle:
        return candidates
    return [profile for profile in candidates if _matches(profile, needle, ("username",))]


async def start_conversation(
    store: DocumentStore, user_id: str, other_user_id: str
) -> tuple[ConversationScope, dict[str, Any]]:
    """Resolve the implicit direct conversation with another profile."""

    if user_id == other_user_id:
        raise ValidationError("You cannot start a conversation with yourself")
    other = await store.get(PROFILES, other_user_id)
    if not other.exists:
        raise NotFoundError("User not found")
    return ConversationScope.direct(user_id, other_user_id), other.to_dict()
