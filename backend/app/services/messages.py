"""Message record construction shared by the feed, group service and REST endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.models import SYSTEM_SENDER_ID, MessageKind, MessageScope
from app.monitoring.metrics import feed_events_total
from app.services.errors import NotFoundError, ValidationError

from guidelight.store.base import DocumentStore, Query


GROUP_MESSAGES = "group_messages"
DIRECT_MESSAGES = "direct_messages"
REPLY_SNIPPET_LENGTH = 50


def direct_conversation_id(user_a: str, user_b: str) -> str:
    """Conversation key for a pair of users, independent of argument order."""

    first, second = sorted((user_a, user_b))
    return f"{first}_{second}"


@dataclass(frozen=True, slots=True)
class ConversationScope:
    """Identifies one message stream: a group or a direct pair."""

    kind: MessageScope
    key: str
    participants: tuple[str, ...] = ()

    @classmethod
    def group(cls, group_id: str) -> "ConversationScope":
        return cls(MessageScope.GROUP, group_id)

    @classmethod
    def direct(cls, user_a: str, user_b: str) -> "ConversationScope":
        return cls(
            MessageScope.DIRECT,
            direct_conversation_id(user_a, user_b),
            tuple(sorted((user_a, user_b))),
        )

    @property
    def collection(self) -> str:
        return GROUP_MESSAGES if self.kind is MessageScope.GROUP else DIRECT_MESSAGES

    @property
    def key_field(self) -> str:
        return "group_id" if self.kind is MessageScope.GROUP else "conversation_id"

    def fields(self) -> dict[str, Any]:
        data: dict[str, Any] = {self.key_field: self.key}
        if self.participants:
            data["participants"] = list(self.participants)
        return data

    def query(self, limit: int | None = None) -> Query:
        query = Query(self.collection).where(self.key_field, "==", self.key).order_by("created_at")
        return query.limit(limit) if limit is not None else query


def build_reply_reference(target: dict[str, Any], length: int = REPLY_SNIPPET_LENGTH) -> dict[str, Any]:
    """Denormalized copy of the replied-to message; staleness is tolerated."""

    content = str(target.get("content", ""))
    snippet = content[:length] + ("..." if len(content) > length else "")
    return {
        "message_id": target["id"],
        "content": snippet,
        "sender_id": target.get("sender_id"),
        "sender_name": target.get("sender_name") or "User",
    }


def build_message_record(
    scope: ConversationScope,
    *,
    sender_id: str,
    sender_name: str,
    content: str,
    reply_to: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> dict[str, Any]:
    text = content.strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    record = {
        **scope.fields(),
        "sender_id": sender_id,
        "sender_name": sender_name or "User",
        "content": text,
        "kind": MessageKind.MESSAGE.value,
        "created_at": created_at or datetime.now(timezone.utc),
    }
    if reply_to is not None:
        record["reply_to"] = reply_to
    return record


def build_system_message(scope: ConversationScope, content: str) -> dict[str, Any]:
    return {
        **scope.fields(),
        "sender_id": SYSTEM_SENDER_ID,
        "sender_name": "System",
        "content": content,
        "kind": MessageKind.SYSTEM.value,
        "created_at": datetime.now(timezone.utc),
    }


def is_system_message(message: dict[str, Any]) -> bool:
    return message.get("kind") == MessageKind.SYSTEM.value or message.get("sender_id") == SYSTEM_SENDER_ID


async def list_messages(store: DocumentStore, scope: ConversationScope, *, limit: int) -> list[dict[str, Any]]:
    """Return the latest *limit* messages in ascending creation order."""

    snapshot = await store.query(scope.query())
    documents = [document.to_dict() for document in snapshot]
    return documents[-limit:] if limit else documents


async def find_message(store: DocumentStore, scope: ConversationScope, message_id: str) -> dict[str, Any]:
    snapshot = await store.get(scope.collection, message_id)
    if not snapshot.exists or snapshot.get(scope.key_field) != scope.key:
        raise NotFoundError("Reply target not found in this conversation")
    return snapshot.to_dict()


async def post_message(
    store: DocumentStore,
    scope: ConversationScope,
    *,
    sender_id: str,
    sender_name: str,
    content: str,
    reply_to_id: str | None = None,
    snippet_length: int = REPLY_SNIPPET_LENGTH,
    max_length: int | None = None,
) -> dict[str, Any]:
    """One-shot send used by the REST endpoints."""

    if max_length is not None and len(content.strip()) > max_length:
        raise ValidationError(f"Message content cannot exceed {max_length} characters")
    reply_to = None
    if reply_to_id:
        target = await find_message(store, scope, reply_to_id)
        reply_to = build_reply_reference(target, snippet_length)
    record = build_message_record(
        scope, sender_id=sender_id, sender_name=sender_name, content=content, reply_to=reply_to
    )
    message_id = await store.add(scope.collection, record)
    feed_events_total.labels("sent").inc()
    return {"id": message_id, **record}

