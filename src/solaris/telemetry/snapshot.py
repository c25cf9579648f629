"""Telemetry data model for energy readings."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Latest merged energy reading from the controller.

    Any field may be None until the controller has reported it at least once.
    """

    voltage: float | None = None  # Volts RMS
    current: float | None = None  # Amps RMS
    battery_level: float | None = None  # 0-100 %
    power: float | None = None  # Watts, voltage * current when both known
    temperature: float | None = None  # °C
    humidity: float | None = None  # % RH
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
