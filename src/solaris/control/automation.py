"""Automation controller: telemetry → threshold guard → policy → writer.

Telemetry is processed in arrival order and never waits for an automation run;
a guard fire schedules the run as a separate task. At most one run is in
flight at a time and triggers arriving meanwhile are dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from solaris.control.policy import AllocationDecision, AllocationPolicy
from solaris.control.threshold import ThresholdGuard
from solaris.errors import ForecastUnavailableError
from solaris.forecast.base import Forecast
from solaris.forecast.cache import ForecastCache
from solaris.logging.context import bind_context, unbind_context
from solaris.relays.ingest import RelayStateIngest
from solaris.relays.writer import ApplyResult, ReconciliationWriter
from solaris.telemetry.ingest import TelemetryIngest, TelemetryUpdate

logger = logging.getLogger(__name__)

STATUS_APPLIED = "applied"
STATUS_BUSY = "busy"
STATUS_DEFERRED = "deferred"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class AutomationOutcome:
    """Result of one automation request."""

    status: str
    reason: str
    detail: str = ""
    decision: AllocationDecision | None = None
    result: ApplyResult | None = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "detail": self.detail,
            "decision": self.decision.to_dict() if self.decision else None,
            "result": self.result.to_dict() if self.result else None,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class AutomationStats:
    runs: int = 0
    applied: int = 0
    busy: int = 0
    deferred: int = 0
    failed: int = 0


class AutomationController:
    """Coordinates the ingest components, the guard, the policy and the writer."""

    def __init__(
        self,
        telemetry: TelemetryIngest,
        relays: RelayStateIngest,
        guard: ThresholdGuard,
        policy: AllocationPolicy,
        writer: ReconciliationWriter,
        forecasts: ForecastCache,
        preferences: str = "",
    ) -> None:
        self.telemetry = telemetry
        self.relays = relays
        self.guard = guard
        self.policy = policy
        self.writer = writer
        self.forecasts = forecasts
        self._preferences = preferences
        self._lock = asyncio.Lock()
        self._run_ids = itertools.count(1)
        self._pending_reason: str | None = None
        self._tasks: set[asyncio.Task] = set()
        self.last_decision: AllocationDecision | None = None
        self.last_outcome: AutomationOutcome | None = None
        self.stats = AutomationStats()

        forecasts.add_listener(self._on_forecast)

    # ── Preferences ──────────────────────────────────────────

    @property
    def preferences(self) -> str:
        return self._preferences

    def set_preferences(self, text: str) -> None:
        self._preferences = text.strip()
        logger.info("User preferences updated (%d chars)", len(self._preferences))

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def deferred_reason(self) -> str | None:
        return self._pending_reason

    # ── Event handlers ───────────────────────────────────────

    def handle_telemetry(self, raw: Mapping[str, Any]) -> TelemetryUpdate | None:
        """Ingest one telemetry record and fire automation on a threshold crossing."""
        update = self.telemetry.on_snapshot(raw)
        if update is None:
            return None

        level = update.snapshot.battery_level
        if level is None:
            return update

        if self.guard.observe(level):
            self._schedule("low_battery")
        elif not self.guard.armed and self._pending_reason == "low_battery":
            logger.info("Battery recovered, dropping deferred automation (%s)", self._pending_reason)
            self._pending_reason = None
        return update

    def handle_relay_map(self, raw: Mapping[Any, Any] | list[Any]) -> list[int]:
        changed = self.relays.on_remote_relay_map(raw)
        if changed:
            logger.info("Relay states changed remotely: %s", changed)
        return changed

    def _schedule(self, reason: str) -> asyncio.Task:
        task = asyncio.create_task(self.run_automation(reason), name=f"automation_{reason}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Automation run ───────────────────────────────────────

    async def run_automation(self, reason: str = "manual") -> AutomationOutcome:
        """Decide and apply a relay allocation, unless a run is already in flight."""
        if self._lock.locked():
            logger.info("Automation already running, dropping %s trigger", reason)
            self.stats.busy += 1
            return AutomationOutcome(status=STATUS_BUSY, reason=reason, detail="automation already running")

        async with self._lock:
            run_id = next(self._run_ids)
            bind_context(automation_run=run_id, reason=reason)
            try:
                outcome = await self._run(reason)
            finally:
                unbind_context("automation_run", "reason")

        self.last_outcome = outcome
        return outcome

    async def _run(self, reason: str) -> AutomationOutcome:
        self.stats.runs += 1
        snapshot = self.telemetry.latest
        if snapshot is None or snapshot.battery_level is None:
            logger.warning("No battery level yet, skipping automation")
            return AutomationOutcome(status=STATUS_SKIPPED, reason=reason, detail="no battery level received yet")

        try:
            forecast = await self.forecasts.get(snapshot)
        except ForecastUnavailableError as e:
            self._pending_reason = reason
            self.stats.deferred += 1
            logger.warning("Automation deferred until a forecast is available: %s", e)
            return AutomationOutcome(status=STATUS_DEFERRED, reason=reason, detail=str(e))
        self._pending_reason = None

        decision = self.policy.decide(
            battery=snapshot.battery_level,
            power=snapshot.power,
            forecast=forecast,
            preferences=self._preferences,
        )
        self.last_decision = decision
        logger.info("Automation decision: %s", decision.rationale)

        result = await self.writer.apply_decision(decision)
        if result.success:
            self.stats.applied += 1
            return AutomationOutcome(status=STATUS_APPLIED, reason=reason, decision=decision, result=result)

        self.stats.failed += 1
        error = result.error
        logger.error("Automation apply incomplete: %s", error)
        return AutomationOutcome(
            status=STATUS_FAILED, reason=reason, detail=str(error), decision=decision, result=result,
        )

    async def _on_forecast(self, forecast: Forecast) -> None:
        reason = self._pending_reason
        if reason is None or self._lock.locked():
            return
        if reason == "low_battery" and not self.guard.armed:
            self._pending_reason = None
            return
        logger.info("Forecast available, resuming deferred automation (%s)", reason)
        self._schedule(reason)

    async def close(self) -> None:
        """Wait for scheduled runs to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
