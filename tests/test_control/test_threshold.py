"""Tests for the low-battery threshold guard."""

from __future__ import annotations

from solaris.control.threshold import ThresholdGuard


def _fires(levels: list[float], threshold: float = 40.0) -> list[bool]:
    guard = ThresholdGuard(threshold)
    return [guard.observe(level) for level in levels]


class TestThresholdGuard:
    def test_fires_once_per_excursion(self) -> None:
        fires = _fires([50, 35, 20, 15, 45, 30, 10])
        assert fires == [False, True, False, False, False, True, False]
        assert sum(fires) == 2

    def test_first_observation_never_fires(self) -> None:
        assert _fires([20]) == [False]
        assert _fires([20, 15, 10]) == [False, False, False]

    def test_starting_below_then_recovering_arms_nothing(self) -> None:
        assert _fires([20, 45, 39]) == [False, False, True]

    def test_exact_threshold_is_above(self) -> None:
        assert _fires([40, 39.9]) == [False, True]
        assert _fires([41, 40]) == [False, False]

    def test_recovery_to_threshold_disarms(self) -> None:
        guard = ThresholdGuard(40)
        guard.observe(50)
        assert guard.observe(30) is True
        assert guard.armed
        assert guard.observe(40) is False
        assert not guard.armed
        assert guard.observe(39) is True
        assert guard.state.fire_count == 2

    def test_repeated_levels_do_not_refire(self) -> None:
        assert _fires([50, 30, 30, 30]) == [False, True, False, False]

    def test_custom_threshold(self) -> None:
        assert _fires([80, 60, 55], threshold=70) == [False, True, False]
