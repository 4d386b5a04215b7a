"""
Unit tests for StructureDetector.

Covers:
  - Pivot lows: strict inequality, edge bars never confirmed
  - has_higher_low on raw pivot sequences
  - higher_low over the trailing 20-bar window
  - 20-day high excludes the current bar; None when history is short
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import numpy as np
import pandas as pd
import pytest

from swingwatch.strategy.structure_detector import (
    StructureDetector, StructuralContext, has_higher_low,
)


# ── Fixtures ────────────────────────────────────────────────────────────────

def make_bars(lows, highs=None) -> pd.DataFrame:
    lows = np.asarray(lows, dtype=float)
    highs = lows + 2.0 if highs is None else np.asarray(highs, dtype=float)
    df = pd.DataFrame({
        "open":   (lows + highs) / 2,
        "high":   highs,
        "low":    lows,
        "close":  (lows + highs) / 2,
        "volume": 1_000_000.0,
    })
    df.index = pd.date_range("2024-01-01", periods=len(lows), freq="B", name="date")
    return df


def v_shape(depth: float, width: int = 5, top: float = 20.0) -> list:
    """A single dip reaching `depth` in the middle, `width` bars wide (odd)."""
    half = width // 2
    return [top - (top - depth) * (1 - abs(i - half) / (half + 1)) for i in range(width)]


# ── Pivot lows ──────────────────────────────────────────────────────────────

class TestFindPivotLows:
    def test_simple_dip(self):
        det = StructureDetector()
        assert det.find_pivot_lows(np.array([5, 4, 3, 4, 5])) == [2]

    def test_equal_neighbour_is_not_a_pivot(self):
        det = StructureDetector()
        assert det.find_pivot_lows(np.array([5, 3, 3, 4, 5, 6])) == []

    def test_edges_never_confirmed(self):
        det = StructureDetector()
        # Lowest values sit in the first / last two bars
        assert det.find_pivot_lows(np.array([1, 2, 5, 6, 5, 2, 1])) == []

    def test_two_pivots(self):
        det = StructureDetector()
        lows = [9, 8, 7, 8, 9, 8, 7.5, 8, 9]
        assert det.find_pivot_lows(np.array(lows)) == [2, 6]

    def test_custom_lookback(self):
        det = StructureDetector(pivot_lookback=1)
        assert det.find_pivot_lows(np.array([3, 2, 3, 2.5, 3])) == [1, 3]


class TestHasHigherLow:
    """
    Only the last two pivots, in chronological order, are compared.

    [10, 9, 11] is therefore True: the latest pivot 11 sits above the 9
    before it, whatever came earlier. Reading that sequence as False would
    need an "every pivot rises" rule, which would also reject a trend that
    recovered from one lower low.
    """

    def test_rising_pair(self):
        assert has_higher_low([9, 11]) is True

    def test_latest_pivot_below_prior_is_false(self):
        assert has_higher_low([10, 11, 9]) is False
        assert has_higher_low([11, 10, 9]) is False

    def test_only_latest_pair_counts(self):
        assert has_higher_low([12, 9, 11]) is True

    def test_recovery_after_lower_low(self):
        assert has_higher_low([10, 9, 11]) is True

    def test_too_few_pivots(self):
        assert has_higher_low([]) is False
        assert has_higher_low([10]) is False

    def test_equal_pivots_are_not_higher(self):
        assert has_higher_low([10, 10]) is False


class TestHigherLowWindow:
    def test_higher_low_detected(self):
        lows = [20.0] * 5 + v_shape(10) + [20.0] * 2 + v_shape(11) + [20.0] * 3
        assert len(lows) == 20
        assert StructureDetector().higher_low(make_bars(lows)) is True

    def test_lower_low_rejected(self):
        lows = [20.0] * 5 + v_shape(11) + [20.0] * 2 + v_shape(10) + [20.0] * 3
        assert StructureDetector().higher_low(make_bars(lows)) is False

    def test_only_trailing_window_is_searched(self):
        # A low pivot 30 bars back must not pair with the recent one
        old = [20.0] * 5 + v_shape(5) + [20.0] * 20
        recent = [20.0] * 7 + v_shape(12) + [20.0] * 8
        assert StructureDetector().higher_low(make_bars(old + recent)) is False

    def test_short_history_is_false(self):
        lows = v_shape(10) + v_shape(11) + [20.0] * 3
        assert StructureDetector().higher_low(make_bars(lows)) is False


class TestHigh20D:
    def test_excludes_current_bar(self):
        highs = list(range(100, 120)) + [500]
        df = make_bars(np.zeros(21), highs=highs)
        assert StructureDetector().high_20d(df) == 119.0

    def test_window_is_twenty_bars(self):
        highs = [999] + [50.0] * 20 + [10.0]
        df = make_bars(np.zeros(22), highs=highs)
        assert StructureDetector().high_20d(df) == 50.0

    def test_short_history_is_none(self):
        df = make_bars(np.zeros(20))
        assert StructureDetector().high_20d(df) is None


class TestContext:
    def test_context_bundles_both(self):
        lows = [20.0] * 6 + v_shape(10) + [20.0] * 2 + v_shape(11) + [20.0] * 3
        ctx = StructureDetector().context(make_bars(lows))
        assert isinstance(ctx, StructuralContext)
        assert ctx.higher_low is True
        assert ctx.high_20d == pytest.approx(22.0)

    def test_default_context_is_unconfirmed(self):
        ctx = StructuralContext()
        assert ctx.higher_low is False
        assert ctx.high_20d is None
        assert ctx.to_dict() == {"higher_low": False, "high_20d": None}
