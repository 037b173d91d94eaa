"""Ephemeral typing indicators stored as documents with timer-based expiry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from app.monitoring.metrics import typing_updates_total

from guidelight.store.base import DocumentStore, ListenerRegistration, Query, QuerySnapshot

from .timers import SingleSlotTimer


logger = logging.getLogger(__name__)

TYPING_COLLECTION = "typing_status"

TypingCallback = Callable[[list[str]], Awaitable[None]]


def typing_document_id(conversation_id: str, user_id: str) -> str:
    return f"{conversation_id}_{user_id}"


class TypingTracker:
    """Writes and watches ``typing_status`` records for one client session.

    Each tracker owns two single-slot timers: the hard auto-clear armed by
    :meth:`set_typing` and the inactivity clear armed by
    :meth:`debounce_typing`. Store failures are logged and swallowed; typing
    indicators never block messaging.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        clear_delay: float = 5.0,
        debounce_delay: float = 3.0,
    ) -> None:
        self._store = store
        self._clear_delay = clear_delay
        self._debounce_delay = debounce_delay
        self._clear_timer = SingleSlotTimer("typing-clear")
        self._debounce_timer = SingleSlotTimer("typing-debounce")

    @property
    def clear_timer(self) -> SingleSlotTimer:
        return self._clear_timer

    @property
    def debounce_timer(self) -> SingleSlotTimer:
        return self._debounce_timer

    async def set_typing(self, conversation_id: str, user_id: str, username: str) -> None:
        try:
            await self._store.set(
                TYPING_COLLECTION,
                typing_document_id(conversation_id, user_id),
                {
                    "conversation_id": conversation_id,
                    "user_id": user_id,
                    "username": username,
                    "is_typing": True,
                    "timestamp": datetime.now(timezone.utc),
                },
            )
        except Exception:
            typing_updates_total.labels("set", "error").inc()
            logger.exception(
                "Failed to set typing status", extra={"conversation_id": conversation_id}
            )
            return
        typing_updates_total.labels("set", "ok").inc()

        async def expire() -> None:
            await self.clear_typing(conversation_id, user_id)

        self._clear_timer.schedule(self._clear_delay, expire)

    async def clear_typing(self, conversation_id: str, user_id: str) -> None:
        try:
            await self._store.delete(TYPING_COLLECTION, typing_document_id(conversation_id, user_id))
        except Exception:
            typing_updates_total.labels("clear", "error").inc()
            logger.exception(
                "Failed to clear typing status", extra={"conversation_id": conversation_id}
            )
            return
        typing_updates_total.labels("clear", "ok").inc()

    async def debounce_typing(
        self,
        conversation_id: str,
        user_id: str,
        username: str,
        delay: float | None = None,
    ) -> None:
        """Per-keystroke entry point: mark typing now, clear after *delay* of quiet."""

        self._debounce_timer.cancel()
        await self.set_typing(conversation_id, user_id, username)

        async def quiet() -> None:
            await self.clear_typing(conversation_id, user_id)

        self._debounce_timer.schedule(self._debounce_delay if delay is None else delay, quiet)

    async def stop_typing(self, conversation_id: str, user_id: str) -> None:
        """Drop the indicator immediately, e.g. when the user sends a message."""

        self.cleanup()
        await self.clear_typing(conversation_id, user_id)

    async def listen_to_typing(
        self,
        conversation_id: str,
        current_user_id: str,
        callback: TypingCallback,
    ) -> ListenerRegistration:
        query = Query(TYPING_COLLECTION).where("conversation_id", "==", conversation_id)

        async def on_snapshot(snapshot: QuerySnapshot) -> None:
            usernames = [
                str(document.get("username", ""))
                for document in snapshot
                if document.get("is_typing") is True and document.get("user_id") != current_user_id
            ]
            await callback(usernames)

        return await self._store.subscribe(query, on_snapshot)

    def cleanup(self) -> None:
        self._clear_timer.cancel()
        self._debounce_timer.cancel()
