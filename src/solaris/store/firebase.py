"""Firebase Realtime Database store over the REST API.

Reads use the REST streaming protocol (``Accept: text/event-stream``): the
server sends a ``put`` of the whole location on connect, then ``put``/``patch``
events with a path relative to the streamed location. Writes are plain
``PUT <path>.json`` requests.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx

from solaris.config.schema import FirebaseConfig
from solaris.errors import RemoteStoreError
from solaris.relays.base import RelayId
from solaris.relays.codec import WireState
from solaris.store.base import RawRelayMap, RawTelemetry
from solaris.telemetry.ingest import latest_entry

logger = logging.getLogger(__name__)

_STATE_KEYS = ("state", "wireState")


@dataclass(frozen=True)
class StreamEvent:
    """One server-sent event."""

    event: str
    data: str


class ServerSentEventParser:
    """Incremental text/event-stream parser fed one line at a time."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> StreamEvent | None:
        """Consume a line; returns an event when a blank line terminates one."""
        if line == "":
            if not self._event and not self._data:
                return None
            event = StreamEvent(event=self._event or "message", data="\n".join(self._data))
            self._event = ""
            self._data = []
            return event
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


def _segments(path: str) -> list[str]:
    return [s for s in path.split("/") if s]


def _expand(path: str, data: Any) -> Iterator[tuple[list[str], Any]]:
    """Yield (segments, value) leaves for a put at ``path``."""
    segments = _segments(path)
    if not segments and isinstance(data, list):
        for index, record in enumerate(data):
            if record is not None:
                yield [str(index)], record
    elif not segments and isinstance(data, dict):
        for key, record in data.items():
            yield _segments(str(key)), record
    else:
        yield segments, data


def relay_event_to_map(event: str, path: str, data: Any) -> RawRelayMap:
    """Translate a stream event on the relay location into a raw relay map.

    Handles full snapshots (object or list form), single relay records
    (``/3``), single fields (``/3/state``) and multi-location patches.
    Records without a state value (e.g. a name-only edit) are dropped.
    """
    if event == "patch" and isinstance(data, dict):
        leaves: Iterable[tuple[list[str], Any]] = (
            leaf for key, value in data.items() for leaf in _expand(f"{path}/{key}", value)
        )
    else:
        leaves = _expand(path, data)

    relay_map: dict[str, dict[str, Any]] = {}
    for segments, value in leaves:
        if not segments or value is None:
            continue
        relay_key = segments[0]
        if len(segments) == 1:
            if isinstance(value, dict):
                relay_map.setdefault(relay_key, {}).update(value)
            else:
                logger.warning("Ignoring non-object relay record at /%s: %r", relay_key, value)
        elif len(segments) == 2:
            relay_map.setdefault(relay_key, {})[segments[1]] = value

    complete = {}
    for key, record in relay_map.items():
        if any(k in record for k in _STATE_KEYS):
            complete[key] = record
        else:
            logger.debug("Relay event for %s carries no state, skipping", key)
    return complete


def telemetry_event_to_record(event: str, path: str, data: Any) -> RawTelemetry | None:
    """Translate a stream event on the telemetry location into one record."""
    segments = _segments(path)
    if not segments:
        record = latest_entry(data)
    elif len(segments) == 1:
        record = data if isinstance(data, dict) else None
    elif len(segments) == 2:
        record = {segments[1]: data}
    else:
        record = None
    return dict(record) if record else None


class FirebaseStore:
    """Remote store backed by a Firebase Realtime Database."""

    def __init__(
        self,
        config: FirebaseConfig,
        write_timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
        stream_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.database_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(write_timeout_seconds),
        )
        # Server keep-alives arrive every ~30 s
        self._stream_client = stream_client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=90.0, write=10.0, pool=10.0),
        )
        self._owns_client = client is None
        self._owns_stream_client = stream_client is None

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.strip('/')}.json"

    def _params(self) -> dict[str, str]:
        return {"auth": self._config.auth_secret} if self._config.auth_secret else {}

    async def write_relay(self, relay_id: RelayId, display_name: str, wire: WireState) -> None:
        """PUT ``{relay_path}/{id}`` with the stored record shape."""
        url = self._url(f"{self._config.relay_path}/{relay_id}")
        try:
            resp = await self._client.put(
                url,
                params=self._params(),
                json={"name": display_name, "state": wire.raw},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"write of relay {relay_id} failed: {e}") from e
        logger.debug("Firebase relay %d written (wire=%s)", relay_id, wire.raw)

    async def relay_events(self) -> AsyncIterator[RawRelayMap]:
        async for event, path, data in self._stream(self._config.relay_path):
            relay_map = relay_event_to_map(event, path, data)
            if relay_map:
                yield relay_map

    async def telemetry_events(self) -> AsyncIterator[RawTelemetry]:
        params = {"orderBy": '"timestamp"', "limitToLast": "1"}
        async for event, path, data in self._stream(self._config.telemetry_path, params):
            record = telemetry_event_to_record(event, path, data)
            if record:
                yield record

    async def _stream(
        self, path: str, extra_params: dict[str, str] | None = None,
    ) -> AsyncIterator[tuple[str, str, Any]]:
        """Yield (event, path, data) for put/patch events until the stream ends."""
        params = {**self._params(), **(extra_params or {})}
        parser = ServerSentEventParser()
        url = self._url(path)
        logger.info("Firebase stream opening: %s", path)
        try:
            async with self._stream_client.stream(
                "GET", url, params=params, headers={"Accept": "text/event-stream"},
            ) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    sse = parser.feed(line)
                    if sse is None or sse.event == "keep-alive":
                        continue
                    if sse.event in ("cancel", "auth_revoked"):
                        raise RemoteStoreError(f"stream {path} closed by server: {sse.event} {sse.data}")
                    if sse.event not in ("put", "patch"):
                        continue
                    try:
                        payload = json.loads(sse.data)
                    except ValueError:
                        logger.warning("Ignoring undecodable stream payload on %s: %r", path, sse.data)
                        continue
                    if not isinstance(payload, dict) or "path" not in payload:
                        logger.warning("Ignoring malformed stream payload on %s: %r", path, payload)
                        continue
                    yield sse.event, str(payload["path"]), payload.get("data")
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"stream {path} failed: {e}") from e
        logger.info("Firebase stream ended: %s", path)

    async def close(self) -> None:
        """Close the HTTP clients if we own them."""
        if self._owns_client:
            await self._client.aclose()
        if self._owns_stream_client:
            await self._stream_client.aclose()
