"""HTTP forecast provider for an external usage-prediction service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from solaris.config.schema import ForecastConfig
from solaris.errors import ForecastUnavailableError
from solaris.forecast.base import Forecast, ForecastProvider
from solaris.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)

_USAGE_KEYS = ("predictedUsage", "predictedConsumption", "predicted_usage")
_PATTERN_KEYS = ("usagePatternSummary", "userUsagePatterns", "usage_pattern_summary")


class HttpForecastProvider(ForecastProvider):
    """POSTs the current telemetry to a prediction endpoint.

    Expected response: ``{"predictedUsage": number, "usagePatternSummary": text}``
    (the ``predictedConsumption``/``userUsagePatterns`` spellings are accepted too).
    """

    def __init__(self, config: ForecastConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._owns_client = client is None

    async def fetch_forecast(self, telemetry: TelemetrySnapshot | None = None) -> Forecast:
        headers = {"Authorization": f"Bearer {self._config.api_key}"} if self._config.api_key else {}
        payload: dict[str, Any] = {"telemetry": telemetry.to_dict() if telemetry else None}
        try:
            resp = await self._client.post(self._config.url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ForecastUnavailableError(f"forecast request failed: {e}") from e

        return parse_forecast(data)

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()


def parse_forecast(data: Any) -> Forecast:
    """Build a Forecast from a service response body."""
    if not isinstance(data, dict):
        raise ForecastUnavailableError(f"unexpected forecast response: {data!r}")

    usage = next((data[k] for k in _USAGE_KEYS if k in data), None)
    if isinstance(usage, bool) or not isinstance(usage, (int, float)):
        raise ForecastUnavailableError(f"forecast response has no predicted usage: {data!r}")

    pattern = next((data[k] for k in _PATTERN_KEYS if k in data), "")
    return Forecast(
        predicted_usage=float(usage),
        usage_pattern_summary=str(pattern or ""),
        provider="http",
    )
