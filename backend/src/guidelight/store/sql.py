"""SQLAlchemy-backed document store sharing change notices over the broker."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.models import StoredDocument

from guidelight.realtime.transport import RedisTransport, Subscription, TransportUnavailableError

from .base import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    apply_update,
)


logger = logging.getLogger(__name__)

STORE_TOPIC = "store"
_DATETIME_KEY = "$datetime"


def encode_body(value: Any) -> Any:
    """Convert a document body into JSON-safe values, tagging datetimes."""

    if isinstance(value, datetime):
        return {_DATETIME_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: encode_body(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_body(item) for item in value]
    return value


def decode_body(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_DATETIME_KEY}:
            return datetime.fromisoformat(value[_DATETIME_KEY])
        return {key: decode_body(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_body(item) for item in value]
    return value


class SqlDocumentStore(DocumentStore):
    """Document store persisted in the ``documents`` table.

    Blocking session work runs in a worker thread. When a realtime transport
    is attached, every write publishes a ``store`` notice so listeners on
    other nodes re-run their queries.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        transport: RedisTransport | None = None,
        node_id: str | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._transport = transport
        self._node_id = node_id
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False
        # sqlite ignores row locks; partial updates are serialised per process
        self._update_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Broker wiring
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._transport is None:
            return

        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            collection = message.get("collection")
            if isinstance(collection, str) and collection:
                await self.refresh_listeners(collection)

        try:
            self._subscription = await self._transport.subscribe(STORE_TOPIC, handle)
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; store listeners will only see local writes",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        await super().close()

    async def _changed(self, collection: str) -> None:
        await super()._changed(collection)
        await self._announce(collection)

    async def _announce(self, collection: str) -> None:
        if self._transport is None:
            return
        try:
            await self._transport.publish(
                STORE_TOPIC, {"collection": collection, "origin": self._node_id}
            )
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while announcing a write to %s; operating in local-only mode",
                    collection,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
        else:
            self._publish_warning_logged = False

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------
    async def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read_sync, collection, doc_id)

    async def _write(
        self, collection: str, doc_id: str, data: dict[str, Any], *, must_not_exist: bool = False
    ) -> None:
        await asyncio.to_thread(self._write_sync, collection, doc_id, data, must_not_exist)

    async def _update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_sync, collection, doc_id, fields)

    async def _remove(self, collection: str, doc_id: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, collection, doc_id)

    async def _scan(self, collection: str) -> list[DocumentSnapshot]:
        return await asyncio.to_thread(self._scan_sync, collection)

    def _read_sync(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._session_factory() as session:
            body = session.scalar(
                select(StoredDocument.body).where(
                    StoredDocument.collection == collection, StoredDocument.doc_id == doc_id
                )
            )
            return decode_body(body) if body is not None else None

    def _write_sync(
        self, collection: str, doc_id: str, data: dict[str, Any], must_not_exist: bool
    ) -> None:
        body = encode_body(data)
        with self._session_factory() as session:
            existing = session.scalar(
                select(StoredDocument).where(
                    StoredDocument.collection == collection, StoredDocument.doc_id == doc_id
                )
            )
            if existing is not None:
                if must_not_exist:
                    raise DocumentExistsError(f"{collection}/{doc_id} already exists")
                existing.body = body
            else:
                session.add(StoredDocument(collection=collection, doc_id=doc_id, body=body))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DocumentExistsError(f"{collection}/{doc_id} already exists") from exc

    def _update_sync(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with self._update_lock, self._session_factory() as session:
            existing = session.scalar(
                select(StoredDocument)
                .where(StoredDocument.collection == collection, StoredDocument.doc_id == doc_id)
                .with_for_update()
            )
            if existing is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            existing.body = encode_body(apply_update(decode_body(existing.body), fields))
            session.commit()

    def _remove_sync(self, collection: str, doc_id: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(StoredDocument).where(
                    StoredDocument.collection == collection, StoredDocument.doc_id == doc_id
                )
            )
            session.commit()
            return bool(result.rowcount)

    def _scan_sync(self, collection: str) -> list[DocumentSnapshot]:
        with self._session_factory() as session:
            rows = session.execute(
                select(StoredDocument.doc_id, StoredDocument.body)
                .where(StoredDocument.collection == collection)
                .order_by(StoredDocument.seq)
            ).all()
        return [DocumentSnapshot(collection, doc_id, decode_body(body)) for doc_id, body in rows]
