"""Wire/logical relay state codec.

Relays are wired normally-closed, so the stored value is active-low:
``False`` on the wire means the relay is energized (ON). Application code
works with logical booleans where ``True`` always means ON.

The wire value is wrapped in :class:`WireState` so it can't be mistaken for a
logical boolean. ``to_logical`` is used only when decoding inbound store data
and ``to_wire`` only when encoding outbound writes.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class WireState:
    """A relay state as stored remotely (active-low)."""

    raw: bool

    def __bool__(self) -> bool:
        raise TypeError("WireState has no truth value; decode it with to_logical()")

    @classmethod
    def parse(cls, value: object) -> WireState:
        """Build from a stored JSON value. Only real booleans are accepted."""
        if isinstance(value, bool):
            return cls(value)
        raise ValueError(f"wire state must be a boolean, got {value!r}")


def to_logical(wire: WireState) -> bool:
    """Decode a wire state into logical ON/OFF."""
    assert isinstance(wire, WireState), f"to_logical() expects WireState, got {type(wire).__name__}"
    return not wire.raw


def to_wire(logical_on: bool) -> WireState:
    """Encode a logical ON/OFF into the wire state to store."""
    assert isinstance(logical_on, bool), f"to_wire() expects bool, got {type(logical_on).__name__}"
    return WireState(not logical_on)
