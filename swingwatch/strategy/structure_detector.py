"""
Structure Detector

Structural confirmation for an uptrend on daily candles:

  1. Pivot lows: a bar whose low is strictly below the `pivot_lookback`
     lows on each side of it.
  2. Higher low: the most recent pivot low inside the trailing window sits
     above the pivot low before it.
  3. 20-day high: the highest high of the `window` bars before the current
     bar. A close above it is a breakout.

Not enough bars is not an error: higher_low comes back False and high_20d
comes back None, and the watch-status engine treats both as "unconfirmed".
"""
import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from . import watch_config as _cfg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StructuralContext:
    higher_low: bool = False          # latest pivot low > prior pivot low (trailing window)
    high_20d: Optional[float] = None  # max high of the window before the current bar

    def to_dict(self) -> dict:
        return asdict(self)


def has_higher_low(pivot_values: Sequence[float]) -> bool:
    """True iff the latest pivot-low value exceeds the one before it."""
    if len(pivot_values) < 2:
        return False
    return pivot_values[-1] > pivot_values[-2]


class StructureDetector:
    def __init__(self, pivot_lookback: Optional[int] = None, window: Optional[int] = None):
        self.pivot_lookback = pivot_lookback if pivot_lookback is not None else _cfg.PIVOT_LOOKBACK
        self.window = window if window is not None else _cfg.STRUCTURE_WINDOW

    def find_pivot_lows(self, lows: np.ndarray) -> List[int]:
        """
        Indices of pivot lows.

        Bars closer than pivot_lookback to either edge can't be confirmed
        and are never reported.
        """
        n = self.pivot_lookback
        lows = np.asarray(lows, dtype=float)
        idxs = []
        for i in range(n, len(lows) - n):
            left = lows[i - n:i]
            right = lows[i + 1:i + n + 1]
            if lows[i] < left.min() and lows[i] < right.min():
                idxs.append(i)
        return idxs

    def higher_low(self, frame: pd.DataFrame) -> bool:
        if len(frame) < self.window:
            return False
        lows = frame["low"].to_numpy(dtype=float)[-self.window:]
        pivots = self.find_pivot_lows(lows)
        return has_higher_low([lows[i] for i in pivots])

    def high_20d(self, frame: pd.DataFrame) -> Optional[float]:
        if len(frame) < self.window + 1:
            return None
        return float(frame["high"].iloc[-(self.window + 1):-1].max())

    def context(self, frame: pd.DataFrame) -> StructuralContext:
        """Structural context as of the last bar of `frame`."""
        ctx = StructuralContext(
            higher_low=self.higher_low(frame),
            high_20d=self.high_20d(frame),
        )
        logger.debug(f"structure: {len(frame)} bars → {ctx}")
        return ctx
