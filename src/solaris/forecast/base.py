"""Forecast model and abstract provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from solaris.telemetry.snapshot import TelemetrySnapshot


@dataclass(frozen=True)
class Forecast:
    """Predicted usage plus a free-text usage pattern summary.

    Produced by an external forecasting collaborator and treated as opaque.
    """

    predicted_usage: float
    usage_pattern_summary: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_usage": self.predicted_usage,
            "usage_pattern_summary": self.usage_pattern_summary,
            "fetched_at": self.fetched_at.isoformat(),
            "provider": self.provider,
        }


class ForecastProvider(ABC):
    """Abstract base for forecast collaborators."""

    @abstractmethod
    async def fetch_forecast(self, telemetry: TelemetrySnapshot | None = None) -> Forecast:
        """Fetch a fresh forecast. Raises ForecastUnavailableError on failure."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
