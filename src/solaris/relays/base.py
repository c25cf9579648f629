"""Relay state records and the parser for stored relay maps."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from solaris.errors import MalformedInputError
from solaris.relays.codec import WireState

logger = logging.getLogger(__name__)

RelayId = int

# Keys used by the remote store, with the long-form aliases also accepted
_NAME_KEYS = ("name", "displayName")
_STATE_KEYS = ("state", "wireState")


def default_display_name(relay_id: RelayId) -> str:
    return f"Switch {relay_id}"


@dataclass(frozen=True)
class RelayWireState:
    """A relay record as stored remotely."""

    relay_id: RelayId
    display_name: str | None
    wire: WireState


@dataclass(frozen=True)
class RelayLogicalState:
    """Application-facing relay state. ``logical_on`` True means powered."""

    relay_id: RelayId
    display_name: str
    logical_on: bool

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.relay_id, "name": self.display_name, "on": self.logical_on}


def parse_relay_id(key: object) -> RelayId:
    """Parse a store key into a relay id (positive int)."""
    if isinstance(key, bool):
        raise MalformedInputError(f"invalid relay id {key!r}")
    try:
        relay_id = int(str(key).strip().lstrip("/"))
    except ValueError:
        raise MalformedInputError(f"invalid relay id {key!r}") from None
    if relay_id < 1:
        raise MalformedInputError(f"invalid relay id {key!r}")
    return relay_id


def parse_wire_record(relay_id: RelayId, record: object) -> RelayWireState:
    """Parse one stored relay record (``{"name": ..., "state": bool}``)."""
    if not isinstance(record, Mapping):
        raise MalformedInputError(f"relay {relay_id}: record is not an object: {record!r}")

    state_value = next((record[k] for k in _STATE_KEYS if k in record), None)
    if state_value is None:
        raise MalformedInputError(f"relay {relay_id}: missing state")
    try:
        wire = WireState.parse(state_value)
    except ValueError as e:
        raise MalformedInputError(f"relay {relay_id}: {e}") from None

    name = next((record[k] for k in _NAME_KEYS if k in record), None)
    display_name = str(name) if name not in (None, "") else None
    return RelayWireState(relay_id=relay_id, display_name=display_name, wire=wire)


def iter_relay_entries(raw: Mapping[Any, Any] | list[Any]) -> Iterator[tuple[object, object]]:
    """Yield (key, record) pairs from a stored relay map.

    The store serialises dense integer keys as a list (index = id, with
    ``None`` holes), so both shapes are accepted.
    """
    if isinstance(raw, list):
        for index, record in enumerate(raw):
            if record is not None:
                yield index, record
    elif isinstance(raw, Mapping):
        yield from raw.items()
    else:
        logger.warning("Ignoring relay map of unexpected type %s", type(raw).__name__)
