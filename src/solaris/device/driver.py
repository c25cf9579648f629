"""Device-side relay pin driver.

Follows relay states as observed from the remote store and drives one output
pin per relay. The reference relay board is normally-closed and energizes on
a LOW input, so with ``active_low`` a logical ON drives LOW.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable, Coroutine, Protocol

from solaris.mqtt.topics import relay_pin_topic
from solaris.relays.base import RelayId, RelayLogicalState

logger = logging.getLogger(__name__)

# Type for an async MQTT publish function: (topic, payload, retain) -> None
MQTTPublishFn = Callable[[str, str, bool], Coroutine[Any, Any, None]]


class PinLevel(str, enum.Enum):
    HIGH = "HIGH"
    LOW = "LOW"


def level_for(logical_on: bool, active_low: bool = True) -> PinLevel:
    """Pin level that puts a relay in the given logical state."""
    if active_low:
        return PinLevel.LOW if logical_on else PinLevel.HIGH
    return PinLevel.HIGH if logical_on else PinLevel.LOW


class PinWriter(Protocol):
    """Something that can set an output pin for a relay."""

    async def set_pin(self, relay_id: RelayId, level: PinLevel) -> None:
        ...


class MQTTPinWriter:
    """Publishes pin levels to ``{prefix}/device/relay/{id}/pin``.

    Uses an externally-provided publish function so it shares the
    application's MQTT connection.
    """

    def __init__(self, publish_fn: MQTTPublishFn, topic_prefix: str = "solaris") -> None:
        self._publish = publish_fn
        self._prefix = topic_prefix

    async def set_pin(self, relay_id: RelayId, level: PinLevel) -> None:
        await self._publish(relay_pin_topic(self._prefix, relay_id), level.value, True)


class DevicePinDriver:
    """Listens to relay observations and writes changed pin levels in order."""

    def __init__(self, writer: PinWriter, active_low: bool = True) -> None:
        self._writer = writer
        self._active_low = active_low
        self._levels: dict[RelayId, PinLevel] = {}
        self._queue: asyncio.Queue[tuple[RelayId, PinLevel]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._write_failures = 0

    @property
    def levels(self) -> dict[RelayId, PinLevel]:
        """Last level queued per relay."""
        return dict(self._levels)

    @property
    def write_failures(self) -> int:
        return self._write_failures

    def on_observed(self, states: list[RelayLogicalState]) -> None:
        """RelayStateIngest listener: queue a pin write for every level change."""
        for state in states:
            level = level_for(state.logical_on, self._active_low)
            if self._levels.get(state.relay_id) == level:
                continue
            self._levels[state.relay_id] = level
            self._queue.put_nowait((state.relay_id, level))

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="device_pin_driver")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def drain(self) -> None:
        """Write every queued level now. Used when no worker task is running."""
        while not self._queue.empty():
            await self._write(*self._queue.get_nowait())

    async def _run(self) -> None:
        while True:
            relay_id, level = await self._queue.get()
            await self._write(relay_id, level)

    async def _write(self, relay_id: RelayId, level: PinLevel) -> None:
        try:
            await self._writer.set_pin(relay_id, level)
            logger.debug("Relay %d pin -> %s", relay_id, level.value)
        except Exception as e:
            self._write_failures += 1
            # Forget the level so the next observation retries it
            if self._levels.get(relay_id) == level:
                del self._levels[relay_id]
            logger.error("Failed to set relay %d pin %s: %s", relay_id, level.value, e)
