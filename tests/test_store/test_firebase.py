"""Tests for the Firebase store: SSE parsing, event mapping and HTTP calls."""

from __future__ import annotations

import json

import httpx
import pytest

from solaris.config.schema import FirebaseConfig
from solaris.errors import RemoteStoreError
from solaris.relays.codec import to_wire
from solaris.store.firebase import (
    FirebaseStore,
    ServerSentEventParser,
    relay_event_to_map,
    telemetry_event_to_record,
)


def _sse(*events: tuple[str, object]) -> bytes:
    chunks = []
    for name, payload in events:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        chunks.append(f"event: {name}\ndata: {data}\n\n")
    return "".join(chunks).encode()


def _store(handler) -> FirebaseStore:
    transport = httpx.MockTransport(handler)
    config = FirebaseConfig(database_url="https://db.example.com/", auth_secret="s3cret")
    return FirebaseStore(
        config,
        client=httpx.AsyncClient(transport=transport),
        stream_client=httpx.AsyncClient(transport=transport),
    )


# ── SSE parser ────────────────────────────────────────────────


class TestServerSentEventParser:
    def test_event_terminated_by_blank_line(self) -> None:
        parser = ServerSentEventParser()
        assert parser.feed("event: put") is None
        assert parser.feed('data: {"path": "/"}') is None
        event = parser.feed("")
        assert event.event == "put"
        assert event.data == '{"path": "/"}'

    def test_multiline_data_and_comments(self) -> None:
        parser = ServerSentEventParser()
        for line in (": comment", "data: a", "data: b"):
            parser.feed(line)
        event = parser.feed("")
        assert event.event == "message"
        assert event.data == "a\nb"

    def test_blank_lines_alone_yield_nothing(self) -> None:
        parser = ServerSentEventParser()
        assert parser.feed("") is None


# ── Event mapping ─────────────────────────────────────────────


class TestRelayEventToMap:
    def test_full_snapshot_object(self) -> None:
        data = {"1": {"name": "A", "state": True}, "2": {"name": "B", "state": False}}
        assert relay_event_to_map("put", "/", data) == data

    def test_full_snapshot_list(self) -> None:
        data = [None, {"name": "A", "state": True}]
        assert relay_event_to_map("put", "/", data) == {"1": {"name": "A", "state": True}}

    def test_single_record(self) -> None:
        assert relay_event_to_map("put", "/3", {"name": "C", "state": False}) == {
            "3": {"name": "C", "state": False}
        }

    def test_single_state_field(self) -> None:
        assert relay_event_to_map("put", "/3/state", True) == {"3": {"state": True}}

    def test_name_only_update_dropped(self) -> None:
        assert relay_event_to_map("put", "/3/name", "Heater") == {}

    def test_patch_with_nested_paths(self) -> None:
        relay_map = relay_event_to_map("patch", "/", {"1/state": False, "2": {"state": True}})
        assert relay_map == {"1": {"state": False}, "2": {"state": True}}

    def test_deleted_relay_ignored(self) -> None:
        assert relay_event_to_map("put", "/2", None) == {}


class TestTelemetryEventToRecord:
    def test_root_put_picks_latest(self) -> None:
        data = {
            "-a": {"batteryLevel": 60, "timestamp": 1},
            "-b": {"batteryLevel": 58, "timestamp": 2},
        }
        assert telemetry_event_to_record("put", "/", data) == {"batteryLevel": 58, "timestamp": 2}

    def test_new_child(self) -> None:
        assert telemetry_event_to_record("put", "/-c", {"voltage": 12}) == {"voltage": 12}

    def test_field_update(self) -> None:
        assert telemetry_event_to_record("put", "/-c/batteryLevel", 44) == {"batteryLevel": 44}

    def test_empty(self) -> None:
        assert telemetry_event_to_record("put", "/", None) is None


# ── HTTP ──────────────────────────────────────────────────────


class TestFirebaseStore:
    @pytest.mark.asyncio
    async def test_write_relay_puts_wire_record(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        store = _store(handler)
        await store.write_relay(2, "Lights", to_wire(True))

        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path == "/app/switchStates/2.json"
        assert request.url.params["auth"] == "s3cret"
        assert json.loads(request.content) == {"name": "Lights", "state": False}
        await store.close()

    @pytest.mark.asyncio
    async def test_write_failure_raises_store_error(self) -> None:
        store = _store(lambda request: httpx.Response(401, json={"error": "Permission denied"}))
        with pytest.raises(RemoteStoreError, match="relay 4"):
            await store.write_relay(4, "TV", to_wire(False))

    @pytest.mark.asyncio
    async def test_relay_stream_yields_snapshot_then_deltas(self) -> None:
        body = _sse(
            ("put", {"path": "/", "data": {"1": {"name": "A", "state": True}}}),
            ("keep-alive", "null"),
            ("put", {"path": "/1/state", "data": False}),
            ("patch", {"path": "/", "data": {"2": {"state": True}}}),
        )

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["accept"] == "text/event-stream"
            assert request.url.path == "/app/switchStates.json"
            return httpx.Response(200, content=body)

        store = _store(handler)
        events = [e async for e in store.relay_events()]
        assert events == [
            {"1": {"name": "A", "state": True}},
            {"1": {"state": False}},
            {"2": {"state": True}},
        ]

    @pytest.mark.asyncio
    async def test_telemetry_stream_orders_by_timestamp(self) -> None:
        body = _sse(("put", {"path": "/", "data": {"-a": {"batteryLevel": 61, "timestamp": 5}}}))

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["orderBy"] == '"timestamp"'
            assert request.url.params["limitToLast"] == "1"
            return httpx.Response(200, content=body)

        store = _store(handler)
        events = [e async for e in store.telemetry_events()]
        assert events == [{"batteryLevel": 61, "timestamp": 5}]

    @pytest.mark.asyncio
    async def test_cancel_event_raises(self) -> None:
        body = _sse(("cancel", "null"))
        store = _store(lambda request: httpx.Response(200, content=body))
        with pytest.raises(RemoteStoreError, match="cancel"):
            async for _ in store.relay_events():
                pass

    @pytest.mark.asyncio
    async def test_undecodable_payload_skipped(self) -> None:
        body = _sse(("put", "{not json"), ("put", {"path": "/2", "data": {"state": True}}))
        store = _store(lambda request: httpx.Response(200, content=body))
        events = [e async for e in store.relay_events()]
        assert events == [{"2": {"state": True}}]

    @pytest.mark.asyncio
    async def test_http_error_raises_store_error(self) -> None:
        store = _store(lambda request: httpx.Response(503))
        with pytest.raises(RemoteStoreError):
            async for _ in store.telemetry_events():
                pass
