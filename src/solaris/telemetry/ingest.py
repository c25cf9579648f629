"""Telemetry ingest: merges partial readings into a single held snapshot."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from solaris.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)

# Snapshot field -> keys accepted in stored records (camelCase as the
# controller writes them, snake_case for local producers)
_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "voltage": ("voltage",),
    "current": ("current",),
    "battery_level": ("batteryLevel", "battery_level"),
    "power": ("power",),
    "temperature": ("temperature",),
    "humidity": ("humidity",),
}


@dataclass(frozen=True)
class TelemetryUpdate:
    """Result of ingesting one raw record."""

    snapshot: TelemetrySnapshot
    changed: bool  # battery level differs from the previous snapshot
    previous_battery_level: float | None = None


def _parse_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp: epoch ms/seconds, ISO-8601 string or datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    number = _parse_number(value)
    if number is None or number < 0:
        return None
    # Server timestamps are epoch milliseconds
    if number > 1e11:
        number /= 1000.0
    try:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_fields(raw: Mapping[str, Any]) -> dict[str, float]:
    """Extract recognised numeric fields from a raw record."""
    fields: dict[str, float] = {}
    for name, keys in _FIELD_KEYS.items():
        for key in keys:
            if key not in raw:
                continue
            number = _parse_number(raw[key])
            if number is None:
                logger.debug("Ignoring unparseable telemetry field %s=%r", key, raw[key])
                continue
            if name == "battery_level" and not 0.0 <= number <= 100.0:
                logger.warning("Ignoring out-of-range battery level %r", raw[key])
                continue
            fields[name] = number
            break
    return fields


class TelemetryIngest:
    """Holds the single current telemetry snapshot.

    Each raw record is resolved against the previous snapshot: missing fields
    carry forward, present fields replace. No history is kept.
    """

    def __init__(self) -> None:
        self._latest: TelemetrySnapshot | None = None
        self._ingested = 0
        self._ignored = 0

    @property
    def latest(self) -> TelemetrySnapshot | None:
        return self._latest

    @property
    def ingested_count(self) -> int:
        return self._ingested

    @property
    def ignored_count(self) -> int:
        return self._ignored

    def on_snapshot(self, raw: Mapping[str, Any]) -> TelemetryUpdate | None:
        """Merge a raw (possibly partial) record into the held snapshot.

        Returns None when the record has no recognisable numeric field; the
        held snapshot is unchanged in that case.
        """
        if not isinstance(raw, Mapping):
            self._ignored += 1
            logger.warning("Ignoring telemetry record of type %s", type(raw).__name__)
            return None

        fields = parse_fields(raw)
        if not fields:
            self._ignored += 1
            logger.debug("Ignoring telemetry record with no numeric fields: %r", raw)
            return None

        prev = self._latest or TelemetrySnapshot()
        merged: dict[str, float | None] = {
            name: fields.get(name, getattr(prev, name)) for name in _FIELD_KEYS
        }
        if merged["voltage"] is not None and merged["current"] is not None:
            merged["power"] = merged["voltage"] * merged["current"]

        timestamp = parse_timestamp(raw.get("timestamp")) or datetime.now(timezone.utc)
        snapshot = TelemetrySnapshot(timestamp=timestamp, **merged)

        previous_level = self._latest.battery_level if self._latest is not None else None
        changed = snapshot.battery_level != previous_level
        self._latest = snapshot
        self._ingested += 1

        if changed:
            logger.info(
                "Battery level %s%% -> %s%%",
                "?" if previous_level is None else f"{previous_level:.1f}",
                "?" if snapshot.battery_level is None else f"{snapshot.battery_level:.1f}",
            )
        return TelemetryUpdate(
            snapshot=snapshot, changed=changed, previous_battery_level=previous_level,
        )


def latest_entry(data: Any) -> Mapping[str, Any] | None:
    """Pick the newest record from a keyed collection of pushed telemetry entries.

    Entries are ordered by their ``timestamp`` (missing timestamps sort first),
    then by key, which for store push ids is chronological.
    """
    if not isinstance(data, Mapping) or not data:
        return None
    entries = [(k, v) for k, v in data.items() if isinstance(v, Mapping)]
    if not entries:
        return None

    def _order(item: tuple[Any, Mapping[str, Any]]) -> tuple[float, str]:
        key, record = item
        ts = parse_timestamp(record.get("timestamp"))
        return (ts.timestamp() if ts else float("-inf"), str(key))

    return max(entries, key=_order)[1]
