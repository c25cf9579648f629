"""Shared test fixtures for Solaris."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from solaris.config.manager import ConfigManager
from solaris.config.schema import AppConfig
from solaris.control.automation import AutomationController
from solaris.control.policy import AllocationPolicy
from solaris.control.threshold import ThresholdGuard
from solaris.errors import RemoteStoreError
from solaris.forecast.base import Forecast, ForecastProvider
from solaris.forecast.cache import ForecastCache
from solaris.relays.codec import WireState
from solaris.relays.ingest import RelayStateIngest
from solaris.relays.writer import ReconciliationWriter
from solaris.telemetry.ingest import TelemetryIngest


class FakeStore:
    """In-memory RemoteStore recording writes.

    ``fail_ids`` makes writes for those relays raise RemoteStoreError and
    ``hang_ids`` makes them block until cancelled.
    """

    def __init__(self) -> None:
        self.writes: list[tuple[int, str, WireState]] = []
        self.fail_ids: set[int] = set()
        self.hang_ids: set[int] = set()
        self.relay_maps: list = []
        self.telemetry: list = []
        self.closed = False

    async def write_relay(self, relay_id: int, display_name: str, wire: WireState) -> None:
        if relay_id in self.hang_ids:
            await asyncio.Event().wait()
        if relay_id in self.fail_ids:
            raise RemoteStoreError(f"write of relay {relay_id} rejected")
        self.writes.append((relay_id, display_name, wire))

    async def relay_events(self):
        for relay_map in self.relay_maps:
            yield relay_map

    async def telemetry_events(self):
        for record in self.telemetry:
            yield record

    async def close(self) -> None:
        self.closed = True


class FakeForecastProvider(ForecastProvider):
    """Returns a fixed forecast, or raises the configured error."""

    def __init__(self, forecast: Forecast | None = None, error: Exception | None = None) -> None:
        self.forecast = forecast or Forecast(predicted_usage=1.5, usage_pattern_summary="", provider="fake")
        self.error = error
        self.calls = 0

    async def fetch_forecast(self, telemetry=None) -> Forecast:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.forecast


@pytest.fixture
def config() -> AppConfig:
    """Provide a default test configuration."""
    return AppConfig()


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    """Provide a config manager with test paths."""
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text("store:\n  backend: firebase\n")
    user = tmp_path / "config.yaml"
    mgr = ConfigManager(defaults_path=defaults, user_path=user)
    mgr.load()
    return mgr


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def relay_ingest(config: AppConfig) -> RelayStateIngest:
    return RelayStateIngest(config.relay_ids)


@pytest.fixture
def writer(store: FakeStore, relay_ingest: RelayStateIngest, config: AppConfig) -> ReconciliationWriter:
    return ReconciliationWriter(
        store=store,
        ingest=relay_ingest,
        name_for=config.relay_name,
        write_timeout_seconds=0.2,
    )


@pytest.fixture
def forecast_provider() -> FakeForecastProvider:
    return FakeForecastProvider()


@pytest.fixture
def controller(
    config: AppConfig,
    relay_ingest: RelayStateIngest,
    writer: ReconciliationWriter,
    forecast_provider: FakeForecastProvider,
) -> AutomationController:
    return AutomationController(
        telemetry=TelemetryIngest(),
        relays=relay_ingest,
        guard=ThresholdGuard(config.automation.threshold_pct),
        policy=AllocationPolicy(config.policy, config.relays),
        writer=writer,
        forecasts=ForecastCache(forecast_provider),
        preferences=config.policy.preferences,
    )
