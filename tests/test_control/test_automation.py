"""Tests for the automation controller."""

from __future__ import annotations

import asyncio

import pytest

from solaris.control.automation import AutomationController
from solaris.errors import ForecastUnavailableError


def _relay_map() -> dict:
    return {str(i): {"name": f"Switch {i}", "state": True} for i in range(1, 6)}


async def _settle(controller: AutomationController) -> None:
    await asyncio.sleep(0)
    await controller.close()


class TestTelemetryTrigger:
    @pytest.mark.asyncio
    async def test_crossing_schedules_one_run(self, controller, store) -> None:
        controller.handle_relay_map(_relay_map())
        controller.handle_telemetry({"batteryLevel": 50, "voltage": 12, "current": 2})
        controller.handle_telemetry({"batteryLevel": 35})
        await _settle(controller)

        assert controller.stats.runs == 1
        assert controller.last_outcome.status == "applied"
        assert controller.last_outcome.reason == "low_battery"
        # 35% is between bands: very_low cap of 1
        assert controller.relays.logical_map() == {1: True, 2: False, 3: False, 4: False, 5: False}
        assert len(store.writes) == 5

    @pytest.mark.asyncio
    async def test_no_run_without_crossing(self, controller) -> None:
        for level in (80, 70, 60, 50, 45):
            controller.handle_telemetry({"batteryLevel": level})
        await _settle(controller)
        assert controller.stats.runs == 0

    @pytest.mark.asyncio
    async def test_malformed_telemetry_ignored(self, controller) -> None:
        assert controller.handle_telemetry({"batteryLevel": "low"}) is None
        assert controller.telemetry.latest is None

    @pytest.mark.asyncio
    async def test_guard_fires_twice_for_two_excursions(self, controller) -> None:
        for level in (50, 35, 20, 15, 45, 30, 10):
            controller.handle_telemetry({"batteryLevel": level})
            await _settle(controller)
        assert controller.guard.state.fire_count == 2
        assert controller.stats.runs == 2
        # Second fire happened at 30%
        assert controller.last_decision.band == "very_low"


class TestInFlightGuard:
    @pytest.mark.asyncio
    async def test_concurrent_request_is_dropped(self, controller, store) -> None:
        controller.handle_telemetry({"batteryLevel": 65})
        store.hang_ids = {1}

        first = asyncio.create_task(controller.run_automation("manual"))
        await asyncio.sleep(0.01)
        second = await controller.run_automation("manual")
        outcome = await first

        assert second.status == "busy"
        assert outcome.status == "failed"
        assert controller.stats.busy == 1
        assert outcome.result.failed == {1: "timeout"}

    @pytest.mark.asyncio
    async def test_run_without_battery_level_is_skipped(self, controller) -> None:
        outcome = await controller.run_automation("manual")
        assert outcome.status == "skipped"


class TestForecastDeferral:
    @pytest.mark.asyncio
    async def test_run_deferred_without_forecast(self, controller, forecast_provider, store) -> None:
        forecast_provider.error = ForecastUnavailableError("service down")
        controller.handle_telemetry({"batteryLevel": 65})
        outcome = await controller.run_automation("manual")
        assert outcome.status == "deferred"
        assert controller.deferred_reason == "manual"
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_deferred_run_resumes_on_forecast(self, controller, forecast_provider, store) -> None:
        forecast_provider.error = ForecastUnavailableError("service down")
        controller.handle_telemetry({"batteryLevel": 50})
        controller.handle_telemetry({"batteryLevel": 30})
        await _settle(controller)
        assert controller.last_outcome.status == "deferred"

        forecast_provider.error = None
        await controller.forecasts.refresh()
        await _settle(controller)

        assert controller.last_outcome.status == "applied"
        assert controller.deferred_reason is None
        assert len(store.writes) == 5

    @pytest.mark.asyncio
    async def test_recovery_cancels_deferred_low_battery_run(self, controller, forecast_provider, store) -> None:
        forecast_provider.error = ForecastUnavailableError("service down")
        controller.handle_telemetry({"batteryLevel": 50})
        controller.handle_telemetry({"batteryLevel": 30})
        await _settle(controller)
        controller.handle_telemetry({"batteryLevel": 55})
        assert controller.deferred_reason is None

        forecast_provider.error = None
        await controller.forecasts.refresh()
        await _settle(controller)
        assert store.writes == []


class TestPreferences:
    @pytest.mark.asyncio
    async def test_preferences_drive_ranking(self, controller) -> None:
        controller.set_preferences("  Switch 5 is essential  ")
        assert controller.preferences == "Switch 5 is essential"
        controller.handle_telemetry({"batteryLevel": 45})
        outcome = await controller.run_automation("manual")
        assert outcome.decision.on_ids == [1, 5]
