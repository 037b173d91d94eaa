"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models import MessageKind


class ReplyReference(BaseModel):
    """Denormalized snippet of the message being replied to."""

    message_id: str
    content: str
    sender_id: str | None = None
    sender_name: str | None = None


class MessageRead(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    group_id: str | None = None
    conversation_id: str | None = None
    participants: list[str] | None = None
    sender_id: str
    sender_name: str | None = None
    content: str
    kind: MessageKind = MessageKind.MESSAGE
    created_at: datetime
    reply_to: ReplyReference | None = None


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, description="Message text; surrounding whitespace is trimmed")
    reply_to_id: str | None = Field(default=None, description="Identifier of the message being replied to")
