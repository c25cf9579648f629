"""Relay state ingest: the locally held logical view of every relay."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from solaris.errors import MalformedInputError, UnknownRelayError
from solaris.relays.base import (
    RelayId,
    RelayLogicalState,
    default_display_name,
    iter_relay_entries,
    parse_relay_id,
    parse_wire_record,
)
from solaris.relays.codec import to_logical

logger = logging.getLogger(__name__)

ObservationListener = Callable[[list[RelayLogicalState]], None]


class RelayStateIngest:
    """Consumes stored relay maps and keeps the last-known logical state per relay.

    The initial full snapshot and later partial deltas go through the same
    ``on_remote_relay_map`` path. Only ids whose logical state changed (or that
    were seen for the first time) are reported.
    """

    def __init__(self, relay_ids: Iterable[RelayId] | None = None) -> None:
        self._allowed: frozenset[RelayId] | None = (
            frozenset(relay_ids) if relay_ids is not None else None
        )
        self._states: dict[RelayId, RelayLogicalState] = {}
        self._listeners: list[ObservationListener] = []

    @property
    def relay_ids(self) -> frozenset[RelayId] | None:
        return self._allowed

    def add_listener(self, listener: ObservationListener) -> None:
        """Register a callback receiving the states decoded from each remote observation.

        Optimistic local updates are not reported; listeners only see what the
        store reports.
        """
        self._listeners.append(listener)

    def check_relay_id(self, relay_id: RelayId) -> None:
        """Raise UnknownRelayError if ``relay_id`` isn't configured."""
        if self._allowed is not None and relay_id not in self._allowed:
            raise UnknownRelayError(relay_id)

    def on_remote_relay_map(self, raw: Mapping[Any, Any] | list[Any]) -> list[RelayId]:
        """Apply a full or partial relay map read from the store.

        Returns:
            Sorted ids that are newly observed or whose logical state changed.
        """
        changed: list[RelayId] = []
        observed: list[RelayLogicalState] = []

        for key, record in iter_relay_entries(raw):
            try:
                relay_id = parse_relay_id(key)
                self.check_relay_id(relay_id)
                wire_state = parse_wire_record(relay_id, record)
            except UnknownRelayError as e:
                logger.warning("Rejecting relay record: %s", e)
                continue
            except MalformedInputError as e:
                logger.warning("Ignoring malformed relay record: %s", e)
                continue

            logical_on = to_logical(wire_state.wire)
            prior = self._states.get(relay_id)
            display_name = (
                wire_state.display_name
                or (prior.display_name if prior is not None else None)
                or default_display_name(relay_id)
            )

            if prior is None or prior.logical_on != logical_on:
                changed.append(relay_id)
                logger.debug(
                    "Relay %d observed %s (was %s)",
                    relay_id,
                    "ON" if logical_on else "OFF",
                    "unseen" if prior is None else ("ON" if prior.logical_on else "OFF"),
                )

            state = RelayLogicalState(
                relay_id=relay_id,
                display_name=display_name,
                logical_on=logical_on,
            )
            self._states[relay_id] = state
            observed.append(state)

        changed.sort()
        if observed:
            self._notify(observed)
        return changed

    # ── Local view ───────────────────────────────────────────

    def get(self, relay_id: RelayId) -> RelayLogicalState | None:
        return self._states.get(relay_id)

    def snapshot(self) -> list[RelayLogicalState]:
        """All held relay states, sorted by id."""
        return [self._states[rid] for rid in sorted(self._states)]

    def logical_map(self) -> dict[RelayId, bool]:
        return {rid: s.logical_on for rid, s in sorted(self._states.items())}

    def unobserved_ids(self) -> list[RelayId]:
        """Configured ids with no held state yet, sorted."""
        if self._allowed is None:
            return []
        return sorted(self._allowed.difference(self._states))

    # ── Optimistic update hooks (used by ReconciliationWriter) ───

    def apply_local(
        self, relay_id: RelayId, logical_on: bool, display_name: str | None = None,
    ) -> RelayLogicalState | None:
        """Set a relay's local state ahead of remote confirmation.

        Returns the prior state (None if the relay was never observed).
        """
        self.check_relay_id(relay_id)
        prior = self._states.get(relay_id)
        name = display_name or (prior.display_name if prior else default_display_name(relay_id))
        self._states[relay_id] = RelayLogicalState(
            relay_id=relay_id, display_name=name, logical_on=logical_on,
        )
        return prior

    def restore_local(
        self, relay_id: RelayId, prior: RelayLogicalState | None, expected_on: bool,
    ) -> bool:
        """Roll a relay back to ``prior`` if it still holds the optimistic value.

        A newer remote observation that already changed the relay wins.
        Returns True if the rollback was applied.
        """
        current = self._states.get(relay_id)
        if current is None or current.logical_on != expected_on:
            return False
        if prior is None:
            del self._states[relay_id]
        else:
            self._states[relay_id] = prior
        return True

    def _notify(self, observed: list[RelayLogicalState]) -> None:
        for listener in self._listeners:
            try:
                listener(list(observed))
            except Exception:
                logger.exception("Relay observation listener error")
