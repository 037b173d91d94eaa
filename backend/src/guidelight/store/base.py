"""Document store abstraction with live query subscriptions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from app.monitoring.metrics import (
    store_listener_errors_total,
    store_listeners,
    store_writes_total,
)


logger = logging.getLogger(__name__)

_SUPPORTED_OPERATORS = frozenset({"==", "!=", "in", "array_contains"})


class StoreError(RuntimeError):
    """Base error raised by document store backends."""


class DocumentExistsError(StoreError):
    """Raised by :meth:`DocumentStore.create` when the id is already taken."""


class DocumentNotFoundError(StoreError):
    """Raised by :meth:`DocumentStore.update` when the document is missing."""


@dataclass(frozen=True, slots=True)
class ArrayUnion:
    """Field transform for :meth:`DocumentStore.update` appending missing values."""

    values: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class ArrayRemove:
    """Field transform for :meth:`DocumentStore.update` dropping every given value."""

    values: tuple[Any, ...]


def array_union(values: Iterable[Any]) -> ArrayUnion:
    return ArrayUnion(tuple(values))


def array_remove(values: Iterable[Any]) -> ArrayRemove:
    return ArrayRemove(tuple(values))


def apply_update(existing: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Merge *fields* into *existing*, resolving array transforms against the stored lists."""

    body = dict(existing)
    for key, value in fields.items():
        if isinstance(value, ArrayUnion):
            current = list(body.get(key) or [])
            for item in value.values:
                if item not in current:
                    current.append(item)
            body[key] = current
        elif isinstance(value, ArrayRemove):
            body[key] = [item for item in body.get(key) or [] if item not in value.values]
        else:
            body[key] = value
    return body


@dataclass(frozen=True, slots=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "array_contains":
            return isinstance(actual, (list, tuple)) and self.value in actual
        raise ValueError(f"Unsupported filter operator '{self.op}'")


@dataclass(frozen=True, slots=True)
class Query:
    """Immutable description of a filtered, ordered collection read."""

    collection: str
    filters: tuple[FieldFilter, ...] = ()
    order: tuple[tuple[str, bool], ...] = ()
    max_results: int | None = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op not in _SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator '{op}'")
        return Query(
            self.collection,
            self.filters + (FieldFilter(field_name, op, value),),
            self.order,
            self.max_results,
        )

    def order_by(self, field_name: str, *, descending: bool = False) -> "Query":
        return Query(
            self.collection,
            self.filters,
            self.order + ((field_name, descending),),
            self.max_results,
        )

    def limit(self, count: int) -> "Query":
        return Query(self.collection, self.filters, self.order, count)

    def matches(self, data: dict[str, Any]) -> bool:
        return all(item.matches(data) for item in self.filters)

    def apply(self, documents: Iterable["DocumentSnapshot"]) -> list["DocumentSnapshot"]:
        """Filter, order and truncate documents already in insertion order."""

        selected = [document for document in documents if self.matches(document.data)]
        # Stable sorts applied from the least significant key keep insertion
        # order as the final tie-breaker.
        for field_name, descending in reversed(self.order):
            present = [doc for doc in selected if doc.data.get(field_name) is not None]
            missing = [doc for doc in selected if doc.data.get(field_name) is None]
            present.sort(key=lambda doc: doc.data[field_name], reverse=descending)
            selected = present + missing
        if self.max_results is not None:
            selected = selected[: self.max_results]
        return selected


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    collection: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)
    exists: bool = True

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.data}


@dataclass(frozen=True, slots=True)
class QuerySnapshot:
    query: Query
    documents: tuple[DocumentSnapshot, ...]

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self):
        return iter(self.documents)


SnapshotListener = Callable[[QuerySnapshot], Awaitable[None]]


class ListenerRegistration:
    """Handle returned by :meth:`DocumentStore.subscribe`."""

    def __init__(self, store: "DocumentStore", query: Query, listener: SnapshotListener) -> None:
        self.id = uuid.uuid4().hex
        self.query = query
        self.listener = listener
        self._store = store
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._store._remove_listener(self)


class DocumentStore(ABC):
    """Document database with point reads/writes and live queries.

    Writes notify every active listener whose query targets the written
    collection with a freshly evaluated full snapshot. Listener failures are
    logged and never reach the writer.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[str, ListenerRegistration]] = {}
        self._listener_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------
    @abstractmethod
    async def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the stored data for a document or ``None``."""

    @abstractmethod
    async def _write(
        self, collection: str, doc_id: str, data: dict[str, Any], *, must_not_exist: bool = False
    ) -> None:
        """Persist a full document body."""

    @abstractmethod
    async def _remove(self, collection: str, doc_id: str) -> bool:
        """Delete a document, returning whether it existed."""

    @abstractmethod
    async def _update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Apply *fields* to an existing document in one atomic step.

        Raises :class:`DocumentNotFoundError` when the document is missing.
        """

    @abstractmethod
    async def _scan(self, collection: str) -> list[DocumentSnapshot]:
        """Return all documents of a collection in insertion order."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data = await self._read(collection, doc_id)
        if data is None:
            return DocumentSnapshot(collection, doc_id, {}, exists=False)
        return DocumentSnapshot(collection, doc_id, data)

    async def set(
        self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False
    ) -> None:
        body = dict(data)
        if merge:
            existing = await self._read(collection, doc_id)
            if existing is not None:
                body = {**existing, **data}
        await self._write(collection, doc_id, body)
        store_writes_total.labels(collection, "merge" if merge else "set").inc()
        await self._changed(collection)

    async def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._write(collection, doc_id, dict(data), must_not_exist=True)
        store_writes_total.labels(collection, "create").inc()
        await self._changed(collection)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.create(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Partially update a document; :class:`ArrayUnion` and :class:`ArrayRemove` values
        are resolved against the stored lists inside the same atomic write."""

        await self._update(collection, doc_id, fields)
        store_writes_total.labels(collection, "update").inc()
        await self._changed(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        if await self._remove(collection, doc_id):
            store_writes_total.labels(collection, "delete").inc()
            await self._changed(collection)

    async def query(self, query: Query) -> QuerySnapshot:
        documents = await self._scan(query.collection)
        return QuerySnapshot(query, tuple(query.apply(documents)))

    async def scan(self, collection: str) -> list[DocumentSnapshot]:
        return await self._scan(collection)

    async def subscribe(self, query: Query, listener: SnapshotListener) -> ListenerRegistration:
        """Register *listener* and deliver the initial snapshot to it."""

        registration = ListenerRegistration(self, query, listener)
        async with self._listener_lock:
            self._listeners.setdefault(query.collection, {})[registration.id] = registration
        store_listeners.labels(query.collection).inc()
        await self._deliver(registration)
        return registration

    async def refresh_listeners(self, collection: str) -> None:
        """Re-evaluate every live query on *collection* without writing."""

        await self._notify(collection)

    async def close(self) -> None:
        async with self._listener_lock:
            registrations = [
                registration
                for bucket in self._listeners.values()
                for registration in bucket.values()
            ]
        for registration in registrations:
            registration.unsubscribe()

    # ------------------------------------------------------------------
    # Listener fan-out
    # ------------------------------------------------------------------
    def _remove_listener(self, registration: ListenerRegistration) -> None:
        bucket = self._listeners.get(registration.query.collection)
        if not bucket:
            return
        if bucket.pop(registration.id, None) is not None:
            store_listeners.labels(registration.query.collection).dec()
        if not bucket:
            self._listeners.pop(registration.query.collection, None)

    async def _changed(self, collection: str) -> None:
        """Called after every successful write to *collection*."""

        await self._notify(collection)

    async def _notify(self, collection: str) -> None:
        async with self._listener_lock:
            registrations = list(self._listeners.get(collection, {}).values())
        for registration in registrations:
            await self._deliver(registration)

    async def _deliver(self, registration: ListenerRegistration) -> None:
        if not registration.active:
            return
        try:
            snapshot = await self.query(registration.query)
            await registration.listener(snapshot)
        except Exception:
            store_listener_errors_total.labels(registration.query.collection).inc()
            logger.exception(
                "Snapshot listener failed", extra={"collection": registration.query.collection}
            )
