from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from typing import Any

import pytest

from app.database import build_engine, build_session_factory, create_schema
from app.monitoring.metrics import realtime_publish_errors_total, realtime_transport_restarts_total

from guidelight.realtime.transport import BrokerConfig, RedisTransport, TransportUnavailableError
from guidelight.store import Query, QuerySnapshot, SqlDocumentStore


class FakeServer:
    """Channel registry shared by every fake client, like one Redis server."""

    def __init__(self) -> None:
        self.channels: dict[str, set[FakePubSub]] = {}

    def deliver(self, channel: str, payload: str) -> None:
        for pubsub in list(self.channels.get(channel, set())):
            pubsub.push({"type": "message", "data": payload})


class FakePubSub:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._channels: set[str] = set()

    async def subscribe(self, channel: str) -> None:
        if not self._redis.online:
            raise ConnectionError("offline")
        self._channels.add(channel)
        self._redis.server.channels.setdefault(channel, set()).add(self)

    async def unsubscribe(self, channel: str) -> None:
        if channel in self._channels:
            self._redis.server.channels.get(channel, set()).discard(self)
            self._channels.discard(channel)

    async def aclose(self) -> None:
        for channel in list(self._channels):
            await self.unsubscribe(channel)

    async def listen(self):
        while True:
            message = await self._queue.get()
            if message is None:
                break
            yield message

    def push(self, message: dict[str, Any] | None) -> None:
        self._queue.put_nowait(message)


class FakeRedis:
    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.online = True
        self.pubsubs: list[FakePubSub] = []

    async def ping(self) -> None:
        if not self.online:
            raise ConnectionError("offline")

    async def publish(self, channel: str, payload: str) -> None:
        if not self.online:
            raise ConnectionError("offline")
        self.server.deliver(channel, payload)

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub

    async def aclose(self) -> None:
        self.online = False

    def fail(self) -> None:
        self.online = False
        for pubsub in self.pubsubs:
            for channel in list(pubsub._channels):
                self.server.channels.get(channel, set()).discard(pubsub)
            pubsub.push(None)


class FakeRedisFactory:
    def __init__(self) -> None:
        self.server = FakeServer()
        self.instances: list[FakeRedis] = []
        self.offline = False

    def from_url(self, *_args: Any, **_kwargs: Any) -> FakeRedis:
        client = FakeRedis(self.server)
        client.online = not self.offline
        self.instances.append(client)
        return client


@pytest.fixture()
def redis_factory(monkeypatch) -> FakeRedisFactory:
    factory = FakeRedisFactory()
    monkeypatch.setattr(
        "guidelight.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=factory.from_url),
    )
    monkeypatch.setattr("guidelight.realtime.transport._RECOVERY_BASE_DELAY", 0.01)
    monkeypatch.setattr("guidelight.realtime.transport._RECOVERY_MAX_DELAY", 0.05)
    return factory


@pytest.fixture(autouse=True)
def reset_transport_metrics() -> None:
    realtime_transport_restarts_total.reset()
    realtime_publish_errors_total.reset()
    yield
    realtime_transport_restarts_total.reset()
    realtime_publish_errors_total.reset()


@pytest.mark.anyio("asyncio")
async def test_redis_transport_recovers_after_disconnect(redis_factory: FakeRedisFactory) -> None:
    transport = RedisTransport(BrokerConfig(redis_url="redis://fake"))
    await transport.start()

    received: list[dict[str, Any]] = []
    received_event = asyncio.Event()

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)
        received_event.set()

    subscription = await transport.subscribe("store", handler)

    await transport.publish("store", {"value": 1})
    await asyncio.wait_for(received_event.wait(), timeout=1.0)
    received_event.clear()
    received.clear()

    redis_factory.instances[0].fail()
    await asyncio.sleep(0)

    with pytest.raises(TransportUnavailableError):
        await transport.publish("store", {"value": 2})
    assert realtime_publish_errors_total.value("store", "unavailable") == 1

    async def publish_with_retry(payload: dict[str, Any]) -> None:
        for _ in range(40):
            try:
                await transport.publish("store", payload)
                return
            except TransportUnavailableError:
                await asyncio.sleep(0.05)
        raise AssertionError("Redis transport did not recover in time")

    await publish_with_retry({"value": 3})
    await asyncio.wait_for(received_event.wait(), timeout=1.5)

    assert received == [{"value": 3}]
    assert len(redis_factory.instances) >= 2
    assert realtime_transport_restarts_total.value("reader_stopped") + realtime_transport_restarts_total.value(
        "publish_failed"
    ) >= 1

    await subscription.close()
    await transport.stop()


@pytest.mark.anyio("asyncio")
async def test_publish_while_redis_is_down_leaves_reconnect_to_recovery(
    redis_factory: FakeRedisFactory, caplog, monkeypatch
) -> None:
    redis_factory.offline = True
    monkeypatch.setattr(logging.getLogger("guidelight.realtime.transport"), "propagate", True)
    transport = RedisTransport(BrokerConfig(redis_url="redis://fake"))

    with caplog.at_level(logging.DEBUG, logger="guidelight.realtime.transport"):
        for value in range(3):
            with pytest.raises(TransportUnavailableError):
                await transport.publish("store", {"value": value})

    assert [record for record in caplog.records if record.levelno >= logging.ERROR] == []
    assert any("still unavailable" in record.getMessage() for record in caplog.records)
    assert len(redis_factory.instances) == 1
    assert not transport.connected

    await transport.stop()

@pytest.mark.anyio("asyncio")
async def test_unconfigured_transport_refuses_to_publish() -> None:
    transport = RedisTransport(BrokerConfig(redis_url=None))
    await transport.start()

    assert not transport.configured
    with pytest.raises(TransportUnavailableError):
        await transport.publish("store", {"collection": "x"})


@pytest.mark.anyio("asyncio")
async def test_store_writes_refresh_listeners_on_other_nodes(tmp_path, redis_factory: FakeRedisFactory) -> None:
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'shared.db'}")
    create_schema(engine)
    factory = build_session_factory(engine)

    transport_a = RedisTransport(BrokerConfig(redis_url="redis://fake", node_id="a"))
    transport_b = RedisTransport(BrokerConfig(redis_url="redis://fake", node_id="b"))
    await transport_a.start()
    await transport_b.start()
    node_a = SqlDocumentStore(factory, transport=transport_a, node_id="a")
    node_b = SqlDocumentStore(factory, transport=transport_b, node_id="b")
    await node_a.start()
    await node_b.start()

    seen: list[int] = []
    refreshed = asyncio.Event()

    async def listener(snapshot: QuerySnapshot) -> None:
        seen.append(len(snapshot))
        if len(snapshot):
            refreshed.set()

    await node_b.subscribe(Query("group_messages").where("group_id", "==", "g1"), listener)
    await node_a.add("group_messages", {"group_id": "g1", "content": "from node a"})
    await asyncio.wait_for(refreshed.wait(), timeout=1.0)

    assert seen == [0, 1]

    await node_a.close()
    await node_b.close()
    await transport_a.stop()
    await transport_b.stop()
    engine.dispose()


@pytest.mark.anyio("asyncio")
async def test_store_warns_once_when_broker_is_down(tmp_path, caplog) -> None:
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'local.db'}")
    create_schema(engine)
    transport = RedisTransport(BrokerConfig(redis_url=None))
    store = SqlDocumentStore(build_session_factory(engine), transport=transport, node_id="solo")

    with caplog.at_level(logging.WARNING, logger="guidelight.store.sql"):
        await store.set("profiles", "u1", {"username": "alice"})
        await store.set("profiles", "u2", {"username": "bob"})

    warnings = [record for record in caplog.records if "local-only" in record.getMessage()]
    assert len(warnings) == 1
    assert (await store.get("profiles", "u2")).get("username") == "bob"
    engine.dispose()
