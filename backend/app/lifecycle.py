"""Startup and shutdown of the shared store, realtime transport and HTTP client."""

from __future__ import annotations

import logging
import uuid

import httpx
from fastapi import FastAPI

from app.config import Settings, get_settings
from app.database import create_schema, get_engine, get_session_factory

from guidelight.realtime.transport import RedisTransport, TransportUnavailableError, build_transport
from guidelight.store import DocumentStore, MemoryDocumentStore, SqlDocumentStore

logger = logging.getLogger(__name__)


async def _start_transport(settings: Settings, node_id: str) -> RedisTransport | None:
    if not settings.realtime_redis_url:
        return None
    transport = build_transport(
        settings.realtime_redis_url,
        prefix=settings.realtime_namespace,
        node_id=node_id,
    )
    try:
        await transport.start()
    except TransportUnavailableError:
        logger.warning("Realtime backend unavailable; running in local-only mode")
    return transport


async def build_store(settings: Settings) -> tuple[DocumentStore, RedisTransport | None]:
    if settings.store_backend == "memory":
        logger.info("Using in-memory document store")
        return MemoryDocumentStore(), None

    create_schema(get_engine())
    node_id = settings.realtime_node_id or uuid.uuid4().hex
    transport = await _start_transport(settings, node_id)
    store = SqlDocumentStore(get_session_factory(), transport=transport, node_id=node_id)
    await store.start()
    return store, transport


async def startup(app: FastAPI) -> None:
    settings = get_settings()
    store, transport = await build_store(settings)
    app.state.store = store
    app.state.transport = transport
    app.state.http_client = httpx.AsyncClient(timeout=settings.llm_timeout_seconds)


async def shutdown(app: FastAPI) -> None:
    store: DocumentStore | None = getattr(app.state, "store", None)
    if store is not None:
        await store.close()
    transport: RedisTransport | None = getattr(app.state, "transport", None)
    if transport is not None:
        await transport.stop()
    client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
