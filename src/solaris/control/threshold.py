"""Low-battery latch that fires once per excursion below the threshold.

Two states:
- disarmed (initial): automation may fire. A drop from >= T to < T fires and arms.
- armed: already fired for this excursion. Recovery to >= T disarms.

Every other transition is a no-op, including the first observation after
start-up (no previous level to compare against).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = 40.0


@dataclass
class ThresholdLatch:
    """Latch state. ``armed`` True means the current excursion already fired."""

    armed: bool = False
    last_level: float | None = None
    fire_count: int = 0


class ThresholdGuard:
    """Edge detector for downward crossings of a battery threshold."""

    def __init__(self, threshold_pct: float = DEFAULT_THRESHOLD_PCT) -> None:
        self._threshold = threshold_pct
        self._state = ThresholdLatch()

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def state(self) -> ThresholdLatch:
        return self._state

    @property
    def armed(self) -> bool:
        return self._state.armed

    def observe(self, level: float) -> bool:
        """Feed a new battery level. Returns True exactly when automation should fire."""
        prev = self._state.last_level
        self._state.last_level = level
        t = self._threshold

        if prev is None:
            return False

        if not self._state.armed:
            if prev >= t and level < t:
                self._state.armed = True
                self._state.fire_count += 1
                logger.warning(
                    "Battery crossed below %.0f%% (%.1f%% -> %.1f%%), requesting automation",
                    t, prev, level,
                )
                return True
            return False

        if level >= t:
            self._state.armed = False
            logger.info("Battery recovered to %.1f%% (>= %.0f%%), low-battery latch reset", level, t)
        return False
