"""Forecast cache holding the last good forecast until explicitly refreshed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from solaris.errors import ForecastUnavailableError
from solaris.forecast.base import Forecast, ForecastProvider
from solaris.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)

ForecastListener = Callable[[Forecast], Awaitable[None]]


class ForecastCache:
    """Caches the provider's forecast.

    ``get()`` fetches only when nothing is cached; ``refresh()`` always fetches.
    Concurrent fetches are coalesced behind one lock. Listeners run after
    every successful fetch.
    """

    def __init__(self, provider: ForecastProvider) -> None:
        self._provider = provider
        self._forecast: Forecast | None = None
        self._lock = asyncio.Lock()
        self._listeners: list[ForecastListener] = []
        self._last_error: str = ""

    @property
    def forecast(self) -> Forecast | None:
        return self._forecast

    @property
    def last_error(self) -> str:
        return self._last_error

    def add_listener(self, listener: ForecastListener) -> None:
        self._listeners.append(listener)

    async def get(self, telemetry: TelemetrySnapshot | None = None) -> Forecast:
        """Return the cached forecast, fetching one if none is cached."""
        if self._forecast is not None:
            return self._forecast
        return await self.refresh(telemetry)

    async def refresh(self, telemetry: TelemetrySnapshot | None = None) -> Forecast:
        """Fetch a new forecast, replacing the cached one on success.

        Raises:
            ForecastUnavailableError: the provider failed; the previous
                forecast (if any) stays cached.
        """
        async with self._lock:
            try:
                forecast = await self._provider.fetch_forecast(telemetry)
            except ForecastUnavailableError as e:
                self._last_error = str(e)
                logger.warning("Forecast unavailable: %s", e)
                raise
            self._forecast = forecast
            self._last_error = ""
            logger.info(
                "Forecast updated: predicted_usage=%.2f provider=%s",
                forecast.predicted_usage, forecast.provider,
            )

        for listener in self._listeners:
            try:
                await listener(forecast)
            except Exception:
                logger.exception("Forecast listener error")
        return forecast
