"""Direct message endpoints between two profiles."""

from typing import Any, List

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_profile, get_store
from app.config import get_settings
from app.schemas import MessageCreate, MessageRead
from app.services.directory import start_conversation
from app.services.messages import list_messages, post_message

from guidelight.store import DocumentStore

router = APIRouter()
settings = get_settings()


@router.get("/{other_user_id}/messages", response_model=List[MessageRead])
async def read_direct_messages(
    other_user_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1, le=settings.chat_history_max_limit),
    current_profile: dict[str, Any] = Depends(get_current_profile),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    scope, _ = await start_conversation(store, current_profile["id"], other_user_id)
    return await list_messages(store, scope, limit=limit)


@router.post("/{other_user_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def create_direct_message(
    other_user_id: str,
    payload: MessageCreate,
    current_profile: dict[str, Any] = Depends(get_current_profile),
    store: DocumentStore = Depends(get_store),
) -> dict[str, Any]:
    """Send a message; the conversation exists implicitly from the first message."""

    scope, _ = await start_conversation(store, current_profile["id"], other_user_id)
    return await post_message(
        store,
        scope,
        sender_id=current_profile["id"],
        sender_name=current_profile.get("username") or "User",
        content=payload.content,
        reply_to_id=payload.reply_to_id,
        snippet_length=settings.reply_snippet_length,
        max_length=settings.chat_message_max_length,
    )
