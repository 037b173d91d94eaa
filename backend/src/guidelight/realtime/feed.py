"""Live message feeds: a snapshot reducer plus the send/compose session around it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from app.monitoring.metrics import feed_events_total
from app.services.messages import (
    REPLY_SNIPPET_LENGTH,
    ConversationScope,
    build_message_record,
    build_reply_reference,
    is_system_message,
)

from guidelight.store.base import DocumentStore, ListenerRegistration, QuerySnapshot

from .timers import SingleSlotTimer


logger = logging.getLogger(__name__)

MessageHook = Callable[[dict[str, Any]], Awaitable[None]]
FeedHook = Callable[[list[dict[str, Any]]], Awaitable[None]]
ScrollHook = Callable[[], Awaitable[None]]
ErrorHook = Callable[[Exception], Awaitable[None]]


@dataclass(slots=True)
class FeedUpdate:
    messages: list[dict[str, Any]]
    received: dict[str, Any] | None = None
    baseline: bool = False


@dataclass(slots=True)
class MessageFeed:
    """Ordered message list rebuilt wholesale from every snapshot.

    The store owns ordering; the feed never merges or reorders. A snapshot
    longer than the previous one whose newest entry came from someone else
    and is not a system message yields exactly one ``received`` message. The
    first snapshot is the baseline and never notifies.
    """

    current_user_id: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    _primed: bool = False

    def apply_snapshot(self, messages: Sequence[dict[str, Any]]) -> FeedUpdate:
        incoming = list(messages)
        previous = len(self.messages)
        baseline = not self._primed
        self.messages = incoming
        self._primed = True
        if baseline or len(incoming) <= previous:
            return FeedUpdate(incoming, baseline=baseline)
        newest = incoming[-1]
        if newest.get("sender_id") == self.current_user_id or is_system_message(newest):
            return FeedUpdate(incoming)
        return FeedUpdate(incoming, received=newest)

    def find(self, message_id: str) -> dict[str, Any] | None:
        for message in self.messages:
            if message.get("id") == message_id:
                return message
        return None


class MessageFeedSynchronizer:
    """Binds a :class:`MessageFeed` to a live store query for one conversation.

    Hooks are awaited from the store's snapshot delivery; their failures are
    logged by the store and never reach the writer.
    """

    def __init__(
        self,
        store: DocumentStore,
        scope: ConversationScope,
        *,
        user_id: str,
        username: str,
        on_messages: FeedHook | None = None,
        on_received: MessageHook | None = None,
        on_sent: MessageHook | None = None,
        on_scroll: ScrollHook | None = None,
        on_error: ErrorHook | None = None,
        scroll_delay: float = 0.1,
        snippet_length: int = REPLY_SNIPPET_LENGTH,
    ) -> None:
        self._store = store
        self._scope = scope
        self._user_id = user_id
        self._username = username
        self._feed = MessageFeed(current_user_id=user_id)
        self._on_messages = on_messages
        self._on_received = on_received
        self._on_sent = on_sent
        self._on_scroll = on_scroll
        self._on_error = on_error
        self._scroll_delay = scroll_delay
        self._snippet_length = snippet_length
        self._scroll_timer = SingleSlotTimer("feed-scroll")
        self._registration: ListenerRegistration | None = None
        self._sending = False
        self.draft = ""
        self.reply_target: dict[str, Any] | None = None

    @property
    def feed(self) -> MessageFeed:
        return self._feed

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self._feed.messages

    @property
    def scope(self) -> ConversationScope:
        return self._scope

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def scroll_timer(self) -> SingleSlotTimer:
        return self._scroll_timer

    async def start(self) -> None:
        if self._registration is not None:
            return
        self._registration = await self._store.subscribe(self._scope.query(), self._handle_snapshot)

    def stop(self) -> None:
        if self._registration is not None:
            self._registration.unsubscribe()
            self._registration = None
        self._scroll_timer.cancel()

    async def _handle_snapshot(self, snapshot: QuerySnapshot) -> None:
        update = self._feed.apply_snapshot([document.to_dict() for document in snapshot])
        if self._on_messages is not None:
            await self._on_messages(update.messages)
        if update.received is not None:
            feed_events_total.labels("received").inc()
            if self._on_received is not None:
                await self._on_received(update.received)
        if self._on_scroll is not None:
            self._scroll_timer.schedule(self._scroll_delay, self._on_scroll)

    # ------------------------------------------------------------------
    # Compose state
    # ------------------------------------------------------------------
    def stage_reply(self, message_id: str) -> dict[str, Any] | None:
        """Stage a reply to a message currently in the feed; unknown ids are ignored."""

        target = self._feed.find(message_id)
        if target is not None:
            self.reply_target = target
        return target

    def cancel_reply(self) -> None:
        self.reply_target = None

    async def send(self, content: str | None = None) -> str | None:
        """Send *content* (or the current draft); returns the new message id.

        Empty content and calls made while a send is in flight are dropped.
        Compose state is cleared before the write and is not restored if the
        write fails.
        """

        text = (self.draft if content is None else content).strip()
        if not text:
            return None
        if self._sending:
            feed_events_total.labels("dropped").inc()
            return None
        self._sending = True
        try:
            reply_to = None
            if self.reply_target is not None:
                reply_to = build_reply_reference(self.reply_target, self._snippet_length)
            record = build_message_record(
                self._scope,
                sender_id=self._user_id,
                sender_name=self._username,
                content=text,
                reply_to=reply_to,
            )
            self.draft = ""
            self.reply_target = None
            try:
                message_id = await self._store.add(self._scope.collection, record)
            except Exception as exc:
                feed_events_total.labels("failed").inc()
                logger.exception(
                    "Failed to send message", extra={"conversation": self._scope.key}
                )
                if self._on_error is not None:
                    await self._on_error(exc)
                return None
            feed_events_total.labels("sent").inc()
            if self._on_sent is not None:
                await self._on_sent({"id": message_id, **record})
            return message_id
        finally:
            self._sending = False
