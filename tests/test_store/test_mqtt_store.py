"""Tests for the MQTT-backed remote store."""

from __future__ import annotations

import asyncio
import json

import aiomqtt
import pytest

from solaris.config.schema import MQTTConfig
from solaris.errors import RemoteStoreError
from solaris.relays.codec import to_wire
from solaris.store.mqtt import _QUEUE_SIZE, MQTTStore


class FakeMQTTClient:
    """Stands in for MQTTClient; ``deliver`` plays an incoming message."""

    def __init__(self) -> None:
        self.subscriptions: dict = {}
        self.published: list[tuple[str, str, bool]] = []
        self.connected = False
        self.connect_error: Exception | None = None
        self._drop = asyncio.Event()

    def subscribe(self, topic, callback) -> None:
        self.subscriptions[topic] = callback

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def publish(self, topic: str, payload: str, retain: bool = False) -> None:
        if not self.connected:
            raise aiomqtt.MqttError("MQTT client not connected")
        self.published.append((topic, payload, retain))

    async def listen(self) -> None:
        await self._drop.wait()
        raise aiomqtt.MqttError("connection lost")

    def drop(self) -> None:
        self._drop.set()

    async def deliver(self, topic_filter: str, topic: str, payload: str) -> None:
        await self.subscriptions[topic_filter](topic, payload)


@pytest.fixture
def client() -> FakeMQTTClient:
    return FakeMQTTClient()


@pytest.fixture
def mqtt_store(client: FakeMQTTClient) -> MQTTStore:
    return MQTTStore(MQTTConfig(topic_prefix="home"), client=client)


class TestMQTTStore:
    def test_subscribes_relay_and_telemetry_topics(self, client, mqtt_store) -> None:
        assert set(client.subscriptions) == {"home/relay/+", "home/telemetry"}

    @pytest.mark.asyncio
    async def test_write_publishes_retained_record(self, client, mqtt_store) -> None:
        await client.connect()
        await mqtt_store.write_relay(3, "Fan", to_wire(True))
        topic, payload, retain = client.published[0]
        assert topic == "home/relay/3"
        assert json.loads(payload) == {"name": "Fan", "state": False}
        assert retain is True

    @pytest.mark.asyncio
    async def test_write_when_disconnected_raises(self, mqtt_store) -> None:
        with pytest.raises(RemoteStoreError, match="relay 1"):
            await mqtt_store.write_relay(1, "A", to_wire(False))

    @pytest.mark.asyncio
    async def test_relay_messages_become_relay_maps(self, client, mqtt_store) -> None:
        events = mqtt_store.relay_events()
        first = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)
        await client.deliver("home/relay/+", "home/relay/2", '{"name": "Lights", "state": true}')
        assert await first == {"2": {"name": "Lights", "state": True}}
        await mqtt_store.close()

    @pytest.mark.asyncio
    async def test_bad_payloads_skipped(self, client, mqtt_store) -> None:
        events = mqtt_store.relay_events()
        nxt = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)
        await client.deliver("home/relay/+", "home/relay/x", '{"state": true}')
        await client.deliver("home/relay/+", "home/relay/1", "not json")
        await client.deliver("home/relay/+", "home/relay/1", "")
        await client.deliver("home/relay/+", "home/relay/1", '{"state": false}')
        assert await nxt == {"1": {"state": False}}
        await mqtt_store.close()

    @pytest.mark.asyncio
    async def test_telemetry_messages(self, client, mqtt_store) -> None:
        events = mqtt_store.telemetry_events()
        nxt = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)
        await client.deliver("home/telemetry", "home/telemetry", "[1, 2]")
        await client.deliver("home/telemetry", "home/telemetry", '{"batteryLevel": 42}')
        assert await nxt == {"batteryLevel": 42}
        await mqtt_store.close()

    @pytest.mark.asyncio
    async def test_connection_loss_ends_streams(self, client, mqtt_store) -> None:
        events = mqtt_store.relay_events()
        nxt = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)
        client.drop()
        with pytest.raises(RemoteStoreError, match="connection lost"):
            await nxt
        assert client.connected is False

    @pytest.mark.asyncio
    async def test_connect_failure_raises_store_error(self, client, mqtt_store) -> None:
        client.connect_error = aiomqtt.MqttError("refused")
        with pytest.raises(RemoteStoreError, match="refused"):
            await mqtt_store.relay_events().__anext__()

    @pytest.mark.asyncio
    async def test_connection_loss_reaches_both_streams_when_queue_full(self, client, mqtt_store) -> None:
        for _ in range(_QUEUE_SIZE):
            await client.deliver("home/relay/+", "home/relay/1", '{"state": true}')

        telemetry = mqtt_store.telemetry_events()
        nxt = asyncio.create_task(telemetry.__anext__())
        await asyncio.sleep(0)
        client.drop()
        with pytest.raises(RemoteStoreError, match="connection lost"):
            await nxt

        received = 0
        with pytest.raises(RemoteStoreError, match="connection lost"):
            async for _ in mqtt_store.relay_events():
                received += 1
        assert received == _QUEUE_SIZE - 1
        await mqtt_store.close()
