"""WebSocket endpoints streaming live conversation feeds."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.api.deps import get_profile_from_token
from app.config import get_settings
from app.models import MessageScope
from app.monitoring.metrics import realtime_connections
from app.services.directory import start_conversation
from app.services.errors import ServiceError
from app.services.groups import GROUPS, GroupMembershipManager
from app.services.messages import ConversationScope

from guidelight.realtime.feed import MessageFeedSynchronizer
from guidelight.realtime.typing_status import TypingTracker
from guidelight.store import DocumentStore, ListenerRegistration, Query, QuerySnapshot

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")

REVOKED_DETAIL = "You are no longer a member of this group"


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*; returns False once the peer is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


async def _resolve_profile(websocket: WebSocket, store: DocumentStore) -> dict[str, Any] | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        return await get_profile_from_token(token, store)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


class FeedSession:
    """Live feed plus typing indicators for one connected client.

    Store listeners only enqueue frames; a dedicated task drains the queue
    into the socket so a slow client never stalls other writers. Group
    sessions re-check membership before every send and end themselves once
    the user is no longer in the group.
    """

    def __init__(self, websocket: WebSocket, store: DocumentStore, scope: ConversationScope, profile: dict[str, Any]) -> None:
        self._websocket = websocket
        self._scope = scope
        self._user_id = profile["id"]
        self._username = profile.get("username") or "User"
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._sender: asyncio.Task[None] | None = None
        self._typing_registration: ListenerRegistration | None = None
        self._membership_registration: ListenerRegistration | None = None
        self._groups = GroupMembershipManager(store) if scope.kind is MessageScope.GROUP else None
        self._store = store
        self._revoked = False
        self.synchronizer = MessageFeedSynchronizer(
            store,
            scope,
            user_id=self._user_id,
            username=self._username,
            on_messages=self._on_messages,
            on_received=self._on_received,
            on_sent=self._on_sent,
            on_scroll=self._on_scroll,
            on_error=self._on_error,
            scroll_delay=settings.feed_scroll_delay_seconds,
            snippet_length=settings.reply_snippet_length,
        )
        self.typing = TypingTracker(
            store,
            clear_delay=settings.typing_clear_delay_seconds,
            debounce_delay=settings.typing_debounce_seconds,
        )

    def _push(self, frame: dict[str, Any]) -> None:
        self._outbox.put_nowait(jsonable_encoder(frame))

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            if frame is None:
                if self._websocket.application_state == WebSocketState.CONNECTED:
                    await self._websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=REVOKED_DETAIL)
                return
            if not await safe_send_json(self._websocket, frame):
                return

    async def _on_messages(self, messages: list[dict[str, Any]]) -> None:
        self._push({"type": "messages", "messages": messages})

    async def _on_received(self, message: dict[str, Any]) -> None:
        self._push({"type": "received", "message": message})

    async def _on_sent(self, message: dict[str, Any]) -> None:
        self._push({"type": "sent", "message": message})

    async def _on_scroll(self) -> None:
        self._push({"type": "scroll"})

    async def _on_error(self, exc: Exception) -> None:
        self._push({"type": "error", "detail": "Failed to send message"})

    async def _on_typing(self, usernames: list[str]) -> None:
        self._push({"type": "typing", "users": usernames})

    async def _on_memberships(self, snapshot: QuerySnapshot) -> None:
        if self._revoked or any(document.id == self._scope.key for document in snapshot):
            return
        self._revoke()

    def _revoke(self) -> None:
        self._revoked = True
        self.synchronizer.stop()
        for registration in (self._typing_registration, self._membership_registration):
            if registration is not None:
                registration.unsubscribe()
        self._push({"type": "error", "detail": REVOKED_DETAIL})
        self._outbox.put_nowait(None)

    async def start(self) -> None:
        self._sender = asyncio.create_task(self._drain())
        if self._groups is not None:
            self._membership_registration = await self._store.subscribe(
                Query(GROUPS).where("members", "array_contains", self._user_id), self._on_memberships
            )
            if self._revoked:
                return
        await self.synchronizer.start()
        self._typing_registration = await self.typing.listen_to_typing(
            self._scope.key, self._user_id, self._on_typing
        )

    async def close(self) -> None:
        self.synchronizer.stop()
        if self._typing_registration is not None:
            self._typing_registration.unsubscribe()
            self._typing_registration = None
        if self._membership_registration is not None:
            self._membership_registration.unsubscribe()
            self._membership_registration = None
        await self.typing.stop_typing(self._scope.key, self._user_id)
        if self._sender is not None:
            self._sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender
            self._sender = None

    async def handle(self, payload: dict[str, Any]) -> None:
        if self._revoked:
            return
        kind = payload.get("type")
        if kind == "ping":
            self._push({"type": "pong"})
        elif kind == "typing":
            await self.typing.debounce_typing(self._scope.key, self._user_id, self._username)
        elif kind == "stop_typing":
            await self.typing.stop_typing(self._scope.key, self._user_id)
        elif kind == "reply":
            target = self.synchronizer.stage_reply(str(payload.get("message_id", "")))
            if target is None:
                self._push({"type": "error", "detail": "Message not found"})
            else:
                self._push({"type": "reply", "message": target})
        elif kind == "cancel_reply":
            self.synchronizer.cancel_reply()
        elif kind == "message":
            await self._send_message(payload)
        else:
            self._push({"type": "error", "detail": "Unsupported event"})

    async def _send_message(self, payload: dict[str, Any]) -> None:
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            self._push({"type": "error", "detail": "Message content cannot be empty"})
            return
        if len(content.strip()) > settings.chat_message_max_length:
            self._push({"type": "error", "detail": "Message is too long"})
            return
        reply_to_id = payload.get("reply_to_id")
        if reply_to_id and self.synchronizer.stage_reply(str(reply_to_id)) is None:
            self._push({"type": "error", "detail": "Message not found"})
            return
        if not await self._still_member():
            return
        await self.typing.stop_typing(self._scope.key, self._user_id)
        await self.synchronizer.send(content)

    async def _still_member(self) -> bool:
        if self._groups is None:
            return True
        try:
            group = await self._groups.get_group(self._scope.key)
            self._groups.require_member(group, self._user_id)
        except ServiceError as exc:
            self._push({"type": "error", "detail": exc.message})
            return False
        return True


async def _run_session(websocket: WebSocket, session: FeedSession, scope_label: str) -> None:
    await websocket.accept()
    realtime_connections.labels(scope_label).inc()
    try:
        await session.start()
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await safe_send_json(websocket, {"type": "error", "detail": "Invalid payload"})
                continue
            if not isinstance(payload, dict):
                await safe_send_json(websocket, {"type": "error", "detail": "Invalid payload"})
                continue
            await session.handle(payload)
    finally:
        await session.close()
        realtime_connections.labels(scope_label).dec()


@router.websocket("/groups/{group_id}")
async def websocket_group_feed(websocket: WebSocket, group_id: str) -> None:
    """Stream a group's messages and typing indicators to a member."""

    store: DocumentStore = websocket.app.state.store
    profile = await _resolve_profile(websocket, store)
    if profile is None:
        return

    groups = GroupMembershipManager(store)
    try:
        group = await groups.get_group(group_id)
        groups.require_member(group, profile["id"])
    except ServiceError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    session = FeedSession(websocket, store, ConversationScope.group(group_id), profile)
    await _run_session(websocket, session, "group")


@router.websocket("/direct/{other_user_id}")
async def websocket_direct_feed(websocket: WebSocket, other_user_id: str) -> None:
    """Stream the direct conversation with another user."""

    store: DocumentStore = websocket.app.state.store
    profile = await _resolve_profile(websocket, store)
    if profile is None:
        return

    try:
        scope, _ = await start_conversation(store, profile["id"], other_user_id)
    except ServiceError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    session = FeedSession(websocket, store, scope, profile)
    await _run_session(websocket, session, "direct")
