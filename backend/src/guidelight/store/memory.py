"""Single-process document store used for development and tests."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from .base import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    apply_update,
)


class MemoryDocumentStore(DocumentStore):
    """Keeps every collection in a dict; Python dicts preserve insertion order."""

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    async def _write(
        self, collection: str, doc_id: str, data: dict[str, Any], *, must_not_exist: bool = False
    ) -> None:
        async with self._lock:
            bucket = self._collections.setdefault(collection, {})
            if must_not_exist and doc_id in bucket:
                raise DocumentExistsError(f"{collection}/{doc_id} already exists")
            bucket[doc_id] = copy.deepcopy(data)

    async def _update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        async with self._lock:
            bucket = self._collections.get(collection, {})
            existing = bucket.get(doc_id)
            if existing is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            bucket[doc_id] = copy.deepcopy(apply_update(existing, fields))

    async def _remove(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            bucket = self._collections.get(collection)
            if not bucket or doc_id not in bucket:
                return False
            del bucket[doc_id]
            if not bucket:
                self._collections.pop(collection, None)
            return True

    async def _scan(self, collection: str) -> list[DocumentSnapshot]:
        async with self._lock:
            bucket = self._collections.get(collection, {})
            return [
                DocumentSnapshot(collection, doc_id, copy.deepcopy(data))
                for doc_id, data in bucket.items()
            ]
