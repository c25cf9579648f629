"""Async MQTT client wrapper using aiomqtt."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Coroutine

import aiomqtt

from solaris.config.schema import MQTTConfig

logger = logging.getLogger(__name__)

# Type alias for message callback: (topic, payload) -> None
MessageCallback = Callable[[str, str], Coroutine[Any, Any, None]]


class MQTTClient:
    """Async MQTT client wrapping aiomqtt.

    Holds one broker connection, provides publish, and dispatches incoming
    messages to callbacks registered per topic filter (wildcards allowed).
    A failed publish drops the connection. With ``reconnect_on_publish`` the
    next publish connects again, for clients that never run ``listen()``.
    """

    def __init__(self, config: MQTTConfig, reconnect_on_publish: bool = False) -> None:
        self._config = config
        self._reconnect_on_publish = reconnect_on_publish
        self._client: aiomqtt.Client | None = None
        self._stack: contextlib.AsyncExitStack | None = None
        self._connected = False
        self._subscriptions: dict[str, MessageCallback] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the MQTT broker. Raises aiomqtt.MqttError on failure."""
        if self._connected:
            return
        client = aiomqtt.Client(
            hostname=self._config.broker_host,
            port=self._config.broker_port,
            username=self._config.username or None,
            password=self._config.password or None,
        )
        logger.info(
            "MQTT connecting to %s:%d",
            self._config.broker_host, self._config.broker_port,
        )
        stack = contextlib.AsyncExitStack()
        self._client = await stack.enter_async_context(client)
        self._stack = stack
        self._connected = True

    async def disconnect(self) -> None:
        """Disconnect from the broker."""
        self._connected = False
        stack, self._stack, self._client = self._stack, None, None
        if stack is not None:
            try:
                await stack.aclose()
            except aiomqtt.MqttError as e:
                logger.debug("MQTT disconnect error: %s", e)

    async def publish(self, topic: str, payload: str, retain: bool = False) -> None:
        """Publish a message to a topic. Raises aiomqtt.MqttError if not connected or on failure."""
        if not self._connected and self._reconnect_on_publish:
            await self.connect()
        if not self._connected or self._client is None:
            raise aiomqtt.MqttError("MQTT client not connected")
        try:
            await self._client.publish(topic, payload, qos=1, retain=retain)
        except aiomqtt.MqttError:
            logger.warning("MQTT publish to %s failed, dropping connection", topic)
            await self.disconnect()
            raise

    def subscribe(self, topic: str, callback: MessageCallback) -> None:
        """Register a subscription callback for a topic filter."""
        self._subscriptions[topic] = callback

    async def listen(self) -> None:
        """Subscribe to all registered filters and dispatch messages until the connection drops."""
        if not self._connected or self._client is None:
            raise aiomqtt.MqttError("MQTT client not connected")

        client = self._client
        try:
            for topic in self._subscriptions:
                await client.subscribe(topic, qos=1)

            async for message in client.messages:
                topic = str(message.topic)
                payload = message.payload.decode() if isinstance(message.payload, bytes) else str(message.payload)

                for topic_filter, callback in self._subscriptions.items():
                    if not message.topic.matches(topic_filter):
                        continue
                    try:
                        await callback(topic, payload)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("MQTT callback error for %s", topic)
        finally:
            self._connected = False
