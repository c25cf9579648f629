"""Static forecast provider backed by configured values."""

from __future__ import annotations

from solaris.config.schema import ForecastConfig
from solaris.forecast.base import Forecast, ForecastProvider
from solaris.telemetry.snapshot import TelemetrySnapshot


class StaticForecastProvider(ForecastProvider):
    """Returns the configured predicted usage and pattern text.

    Used when no forecasting service is configured.
    """

    def __init__(self, config: ForecastConfig) -> None:
        self._config = config

    async def fetch_forecast(self, telemetry: TelemetrySnapshot | None = None) -> Forecast:
        return Forecast(
            predicted_usage=self._config.static_predicted_usage,
            usage_pattern_summary=self._config.static_usage_pattern,
            provider="static",
        )
