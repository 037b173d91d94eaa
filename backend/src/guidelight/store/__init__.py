"""Document store adapter with live query subscriptions."""

from .base import (  # noqa: F401
    ArrayRemove,
    ArrayUnion,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    ListenerRegistration,
    Query,
    QuerySnapshot,
    SnapshotListener,
    StoreError,
    array_remove,
    array_union,
)
from .memory import MemoryDocumentStore  # noqa: F401
from .sql import SqlDocumentStore  # noqa: F401

__all__ = [
    "ArrayRemove",
    "ArrayUnion",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "DocumentSnapshot",
    "DocumentStore",
    "ListenerRegistration",
    "MemoryDocumentStore",
    "Query",
    "QuerySnapshot",
    "SnapshotListener",
    "SqlDocumentStore",
    "StoreError",
    "array_remove",
    "array_union",
]
