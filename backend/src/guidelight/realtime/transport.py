"""Redis pub/sub transport fanning realtime notices out across nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
    realtime_transport_restarts_total,
)


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the realtime transport layer."""

    redis_url: str | None
    prefix: str = "guidelight.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the broker is not configured or cannot be reached."""


class Subscription:
    """Handle returned when subscribing to a broker topic."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._cleanup = cleanup
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._cleanup()


@dataclass(slots=True)
class _ChannelReader:
    topic: str
    channel: str
    handler: MessageHandler
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True
    suspending: bool = False


class RedisTransport:
    """Publishes JSON payloads to prefixed Redis channels and dispatches them back."""

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: redis_asyncio.Redis | None = None
        self._readers: list[_ChannelReader] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def configured(self) -> bool:
        return bool(self._config.redis_url)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def start(self) -> None:
        try:
            await self._open()
        except TransportUnavailableError:
            logger.exception("Failed to connect to Redis realtime backend")
            raise

    async def _open(self) -> None:
        if not self._config.redis_url or self._redis is not None:
            return
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except _REDIS_ERRORS as exc:
            await client.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client

    async def stop(self) -> None:
        for reader in list(self._readers):
            await self._close_reader(reader)
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _channel(self, topic: str) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    async def _require_client(self) -> redis_asyncio.Redis:
        if self._redis is None:
            if not self._config.redis_url:
                raise TransportUnavailableError("Redis backend is not configured")
            if self._recovery_task is not None and not self._recovery_task.done():
                raise TransportUnavailableError("Redis backend is recovering")
            try:
                await self._open()
            except TransportUnavailableError:
                logger.debug("Redis realtime backend still unavailable")
                self._trigger_recovery("connect_failed")
                raise
        client = self._redis
        if client is None:
            raise TransportUnavailableError("Redis backend is unavailable")
        return client

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        client = await self._require_client()
        channel = self._channel(topic)
        try:
            await client.publish(channel, json.dumps(payload, default=str))
        except _REDIS_ERRORS as exc:
            realtime_publish_errors_total.labels(topic, "unavailable").inc()
            self._trigger_recovery("publish_failed")
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        realtime_events_total.labels(topic, "out", payload.get("action", "notice")).inc()
        logger.debug("Published realtime payload via Redis", extra={"channel": channel})

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------
    async def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        await self._require_client()
        reader = _ChannelReader(topic=topic, channel=self._channel(topic), handler=handler)

        async def cleanup() -> None:
            await self._close_reader(reader)

        self._readers.append(reader)
        try:
            await self._attach(reader)
        except TransportUnavailableError:
            # never counted in the subscriptions gauge
            reader.active = False
            await self._close_reader(reader)
            self._trigger_recovery("subscribe_failed")
            raise
        realtime_subscriptions.labels(topic).inc()
        return Subscription(reader.channel, cleanup)

    async def _attach(self, reader: _ChannelReader) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not configured")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(reader.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        reader.pubsub = pubsub

        async def pump() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                raw = message.get("data")
                if not isinstance(raw, str):
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Discarded malformed realtime payload", extra={"channel": reader.channel})
                    continue
                realtime_events_total.labels(reader.topic, "in", payload.get("action", "notice")).inc()
                try:
                    await reader.handler(payload)
                except Exception:
                    logger.exception("Realtime handler failed", extra={"channel": reader.channel})

        task = asyncio.create_task(pump(), name=f"realtime-redis-{reader.channel}")
        reader.task = task
        task.add_done_callback(lambda finished: self._on_reader_done(reader, finished))

    async def _pause(self, reader: _ChannelReader) -> None:
        reader.suspending = True
        task = reader.task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        reader.task = None
        pubsub = reader.pubsub
        reader.pubsub = None
        if pubsub is not None:
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.unsubscribe(reader.channel)
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.aclose()
        reader.suspending = False

    async def _close_reader(self, reader: _ChannelReader) -> None:
        if reader.active:
            realtime_subscriptions.labels(reader.topic).dec()
        reader.active = False
        await self._pause(reader)
        if reader in self._readers:
            self._readers.remove(reader)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def _on_reader_done(self, reader: _ChannelReader, task: asyncio.Task[Any]) -> None:
        if not reader.active or reader.suspending or task.cancelled():
            return
        reader.task = None
        reader.pubsub = None
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=task.exception(),
            extra={"channel": reader.channel},
        )
        self._trigger_recovery("reader_stopped")

    def _trigger_recovery(self, reason: str) -> None:
        if not self._config.redis_url:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(
            self._recover(reason), name="realtime-redis-recovery"
        )

    async def _recover(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            try:
                await self._restart()
            except TransportUnavailableError:
                attempt += 1
                logger.warning(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        realtime_transport_restarts_total.labels(reason).inc()
        logger.info("Redis realtime backend recovered", extra={"reason": reason})

    async def _restart(self) -> None:
        async with self._recovery_lock:
            for reader in self._readers:
                await self._pause(reader)
            if self._redis is not None:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await self._redis.aclose()
                self._redis = None
            await self._open()
            for reader in [reader for reader in self._readers if reader.active]:
                await self._attach(reader)


def build_transport(redis_url: str | None, *, prefix: str, node_id: str | None) -> RedisTransport:
    return RedisTransport(BrokerConfig(redis_url=redis_url, prefix=prefix, node_id=node_id))
