"""MQTT remote store using retained JSON records.

Layout under the configured prefix:
  {prefix}/relay/{id}    retained {"name": ..., "state": <wire bool>}
  {prefix}/telemetry     {"voltage": ..., "batteryLevel": ..., "timestamp": ...}

Retained relay records replay on subscribe, which gives the initial snapshot;
later publishes arrive as single-relay deltas.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import aiomqtt

from solaris.config.schema import MQTTConfig
from solaris.errors import RemoteStoreError
from solaris.mqtt.client import MQTTClient
from solaris.mqtt.topics import build_topics, relay_id_from_topic, relay_topic
from solaris.relays.base import RelayId
from solaris.relays.codec import WireState
from solaris.store.base import RawRelayMap, RawTelemetry

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 256


def _put_error(queue: asyncio.Queue, error: Exception) -> None:
    """Queue a stream-ending error, evicting the oldest pending item if full.

    Retained relay records replay on reconnect, so an evicted record is not lost.
    """
    if queue.full():
        queue.get_nowait()
        logger.warning("Store queue full, dropped oldest pending message")
    queue.put_nowait(error)


class MQTTStore:
    """Remote store backed by an MQTT broker."""

    def __init__(self, config: MQTTConfig, client: MQTTClient | None = None) -> None:
        self._config = config
        self._prefix = config.topic_prefix
        self._topics = build_topics(self._prefix)
        self._client = client or MQTTClient(config)
        self._relay_queue: asyncio.Queue[RawRelayMap | Exception] = asyncio.Queue(_QUEUE_SIZE)
        self._telemetry_queue: asyncio.Queue[RawTelemetry | Exception] = asyncio.Queue(_QUEUE_SIZE)
        self._listen_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()

        self._client.subscribe(self._topics["relay_all"], self._on_relay_message)
        self._client.subscribe(self._topics["telemetry"], self._on_telemetry_message)

    @property
    def client(self) -> MQTTClient:
        return self._client

    async def _ensure_listening(self) -> None:
        async with self._connect_lock:
            if self._listen_task is not None and not self._listen_task.done():
                return
            try:
                await self._client.connect()
            except aiomqtt.MqttError as e:
                raise RemoteStoreError(f"MQTT connect failed: {e}") from e
            self._listen_task = asyncio.create_task(self._listen(), name="mqtt_store_listener")

    async def _listen(self) -> None:
        try:
            await self._client.listen()
            error: Exception = RemoteStoreError("MQTT message stream ended")
        except aiomqtt.MqttError as e:
            error = RemoteStoreError(f"MQTT connection lost: {e}")
        logger.warning("%s", error)
        await self._client.disconnect()
        for queue in (self._relay_queue, self._telemetry_queue):
            _put_error(queue, error)

    async def _on_relay_message(self, topic: str, payload: str) -> None:
        relay_id = relay_id_from_topic(self._prefix, topic)
        if relay_id is None:
            logger.warning("Ignoring relay message on unexpected topic %s", topic)
            return
        if not payload:
            # Cleared retained message
            return
        try:
            record = json.loads(payload)
        except ValueError:
            logger.warning("Ignoring undecodable relay payload on %s: %r", topic, payload)
            return
        await self._relay_queue.put({str(relay_id): record})

    async def _on_telemetry_message(self, topic: str, payload: str) -> None:
        try:
            record = json.loads(payload)
        except ValueError:
            logger.warning("Ignoring undecodable telemetry payload on %s: %r", topic, payload)
            return
        if not isinstance(record, dict):
            logger.warning("Ignoring non-object telemetry payload on %s", topic)
            return
        await self._telemetry_queue.put(record)

    async def write_relay(self, relay_id: RelayId, display_name: str, wire: WireState) -> None:
        """Publish the relay record, retained so late subscribers see it."""
        payload = json.dumps({"name": display_name, "state": wire.raw})
        try:
            await self._client.publish(relay_topic(self._prefix, relay_id), payload, retain=True)
        except aiomqtt.MqttError as e:
            raise RemoteStoreError(f"write of relay {relay_id} failed: {e}") from e

    async def relay_events(self) -> AsyncIterator[RawRelayMap]:
        await self._ensure_listening()
        while True:
            item = await self._relay_queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def telemetry_events(self) -> AsyncIterator[RawTelemetry]:
        await self._ensure_listening()
        while True:
            item = await self._telemetry_queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        if self._listen_task is not None:
            self._listen_task.cancel()
            await asyncio.gather(self._listen_task, return_exceptions=True)
            self._listen_task = None
        await self._client.disconnect()
