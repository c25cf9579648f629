"""Reconciliation writer: pushes desired relay states to the remote store.

Every apply follows the same three steps:
1. Optimistically update the local view.
2. Write each relay remotely, concurrently, each bounded by a timeout.
3. Roll back the local view for every relay whose write failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from solaris.control.policy import AllocationDecision
from solaris.errors import RemoteStoreError, RemoteWriteError
from solaris.relays.base import RelayId, RelayLogicalState, default_display_name
from solaris.relays.codec import to_wire
from solaris.relays.ingest import RelayStateIngest
from solaris.store.base import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200


@dataclass
class RelayCommand:
    """A write issued to one relay."""

    relay_id: RelayId
    on: bool
    source: str  # "automation", "manual", ...
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = False
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "relay_id": self.relay_id,
            "on": self.on,
            "source": self.source,
            "issued_at": self.issued_at.isoformat(),
            "success": self.success,
            "error": self.error,
        }


@dataclass
class ApplyResult:
    """Outcome of one apply call."""

    applied: list[RelayId] = field(default_factory=list)
    failed: dict[RelayId, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def error(self) -> RemoteWriteError | None:
        return RemoteWriteError(self.failed) if self.failed else None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "applied": sorted(self.applied),
            "failed": {str(rid): reason for rid, reason in sorted(self.failed.items())},
        }


class ReconciliationWriter:
    """Applies desired logical relay states with optimistic update and rollback."""

    def __init__(
        self,
        store: RemoteStore,
        ingest: RelayStateIngest,
        name_for: Callable[[RelayId], str] | None = None,
        write_timeout_seconds: float = 5.0,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self._store = store
        self._ingest = ingest
        self._name_for = name_for or default_display_name
        self._timeout = write_timeout_seconds
        self._history: deque[RelayCommand] = deque(maxlen=history_size)

    @property
    def history(self) -> list[RelayCommand]:
        """Recent commands, newest last."""
        return list(self._history)

    async def apply_decision(self, decision: AllocationDecision) -> ApplyResult:
        return await self.apply(decision.per_relay, source="automation")

    async def apply_toggle(self, relay_id: RelayId, on: bool) -> ApplyResult:
        return await self.apply({relay_id: on}, source="manual")

    async def apply(self, desired: Mapping[RelayId, bool], source: str = "manual") -> ApplyResult:
        """Apply desired logical states.

        Raises:
            UnknownRelayError: a relay id isn't configured. Raised before any
                local or remote change is made.
        """
        for relay_id in desired:
            self._ingest.check_relay_id(relay_id)

        targets = sorted(desired.items())
        priors: dict[RelayId, RelayLogicalState | None] = {}
        names: dict[RelayId, str] = {}
        for relay_id, on in targets:
            held = self._ingest.get(relay_id)
            names[relay_id] = held.display_name if held is not None else self._name_for(relay_id)
            priors[relay_id] = self._ingest.apply_local(relay_id, on, names[relay_id])

        results = await asyncio.gather(
            *(self._write(relay_id, names[relay_id], on) for relay_id, on in targets),
            return_exceptions=True,
        )

        outcome = ApplyResult()
        for (relay_id, on), result in zip(targets, results):
            command = RelayCommand(relay_id=relay_id, on=on, source=source)
            if isinstance(result, BaseException):
                reason = _describe(result)
                outcome.failed[relay_id] = reason
                command.error = reason
                reverted = self._ingest.restore_local(relay_id, priors[relay_id], expected_on=on)
                logger.warning(
                    "Relay %d write failed (%s), %s",
                    relay_id, reason,
                    "reverted local state" if reverted else "local state already superseded",
                )
            else:
                outcome.applied.append(relay_id)
                command.success = True
            self._history.append(command)

        logger.info(
            "Applied %s relay states: ok=%s failed=%s",
            source, outcome.applied, sorted(outcome.failed),
        )
        return outcome

    async def _write(self, relay_id: RelayId, display_name: str, on: bool) -> None:
        await asyncio.wait_for(
            self._store.write_relay(relay_id, display_name, to_wire(on)),
            timeout=self._timeout,
        )


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    if isinstance(exc, RemoteStoreError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"
