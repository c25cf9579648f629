"""Protocol for the shared remote store (Firebase, MQTT, etc.)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from solaris.relays.base import RelayId
from solaris.relays.codec import WireState

# A raw relay map as read from the store: id -> {"name": ..., "state": bool}
RawRelayMap = dict[str, Any]
# A raw telemetry record: {"voltage": ..., "batteryLevel": ..., "timestamp": ...}
RawTelemetry = dict[str, Any]


@runtime_checkable
class RemoteStore(Protocol):
    """Protocol for all remote store backends.

    Implementations: FirebaseStore, MQTTStore.
    """

    async def write_relay(self, relay_id: RelayId, display_name: str, wire: WireState) -> None:
        """Write one relay's stored record. Raises RemoteStoreError on failure."""
        ...

    def relay_events(self) -> AsyncIterator[RawRelayMap]:
        """Yield the initial relay map, then partial deltas, in arrival order."""
        ...

    def telemetry_events(self) -> AsyncIterator[RawTelemetry]:
        """Yield the latest telemetry record on connect, then each new one."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...
