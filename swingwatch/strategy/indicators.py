"""
indicators.py: Daily Indicator Series
======================================

Vectorised EMA / RSI / ATR / relative volume / turnover / slope series over
a normalised candle frame (DatetimeIndex, columns open/high/low/close/volume).

Every series here is causal: the value at bar i depends only on bars ≤ i.
That lets the simulators compute each series once for the whole history and
index into it per bar, instead of recomputing on candles[:i+1] every day.

Warm-up bars are NaN, never 0. Callers convert NaN → None at the snapshot
boundary (see snapshot.build_snapshot).
"""
import logging

import numpy as np
import pandas as pd

from . import watch_config as _cfg

logger = logging.getLogger(__name__)


def ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average, NaN until `period` values are seen."""
    return series.ewm(span=period, adjust=False, min_periods=period).mean()


def rsi(closes: pd.Series, period: int = 14) -> pd.Series:
    """
    Wilder RSI. NaN during warm-up.

    All gains, no losses → 100. No movement at all → 50.
    """
    delta = closes.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)
    avg_gain = gain.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    rs = avg_gain / avg_loss.replace(0, np.nan)
    out = 100 - (100 / (1 + rs))

    warm = avg_gain.notna() & avg_loss.notna()
    out = out.where(~(warm & (avg_loss == 0) & (avg_gain > 0)), 100.0)
    out = out.where(~(warm & (avg_loss == 0) & (avg_gain == 0)), 50.0)
    return out


def true_range(frame: pd.DataFrame) -> pd.Series:
    """True range; the first bar has no previous close and uses high - low."""
    prev_close = frame["close"].shift(1)
    ranges = pd.concat(
        [
            frame["high"] - frame["low"],
            (frame["high"] - prev_close).abs(),
            (frame["low"] - prev_close).abs(),
        ],
        axis=1,
    )
    return ranges.max(axis=1, skipna=True)


def atr(frame: pd.DataFrame, period: int = 14) -> pd.Series:
    """Wilder-smoothed average true range. NaN during warm-up."""
    return true_range(frame).ewm(alpha=1 / period, min_periods=period, adjust=False).mean()


def relative_volume(
    volume: pd.Series,
    window: int = 20,
    include_current: bool = True,
) -> pd.Series:
    """
    Today's volume over the trailing `window`-bar mean.

    include_current=True  : the mean covers today and the window-1 bars before it.
    include_current=False : the mean covers the `window` bars before today.

    Falls back to 1.0 where the mean is zero or not yet available.
    """
    base = volume if include_current else volume.shift(1)
    avg = base.rolling(window, min_periods=window).mean()
    rel = volume / avg.replace(0, np.nan)
    return rel.fillna(1.0)


def avg_turnover(frame: pd.DataFrame, window: int = 20) -> pd.Series:
    """Trailing mean of close × volume. NaN until `window` bars exist."""
    turnover = frame["close"] * frame["volume"]
    return turnover.rolling(window, min_periods=window).mean()


def pct_slope(series: pd.Series, bars: int = 5) -> pd.Series:
    """
    Fractional change over `bars` bars: (v - v[-bars]) / v[-bars].

    Needs bars+1 non-null values in the trailing window, else 0.0.
    A zero base value also yields 0.0.
    """
    base = series.shift(bars)
    enough = series.notna().astype(float).rolling(bars + 1, min_periods=bars + 1).sum() == bars + 1
    slope = (series - base) / base.replace(0, np.nan)
    return slope.where(enough, 0.0).fillna(0.0)


def compute_indicator_frame(candles: pd.DataFrame) -> pd.DataFrame:
    """
    All indicator series the engine and simulators consume, aligned to candles.

    Columns: ema20, ema50, ema20_slope, ema50_slope, rsi14, atr14,
    rel_volume (trailing window incl. today), rel_volume_prior (window
    before today), turnover20.
    """
    out = pd.DataFrame(index=candles.index)
    if candles.empty:
        for col in ("ema20", "ema50", "ema20_slope", "ema50_slope", "rsi14",
                    "atr14", "rel_volume", "rel_volume_prior", "turnover20"):
            out[col] = pd.Series(dtype=float)
        return out

    closes = candles["close"].astype(float)
    out["ema20"] = ema(closes, _cfg.EMA_FAST)
    out["ema50"] = ema(closes, _cfg.EMA_SLOW)
    out["ema20_slope"] = pct_slope(out["ema20"], _cfg.SLOPE_BARS)
    out["ema50_slope"] = pct_slope(out["ema50"], _cfg.SLOPE_BARS)
    out["rsi14"] = rsi(closes, _cfg.RSI_PERIOD)
    out["atr14"] = atr(candles, _cfg.ATR_PERIOD)
    out["rel_volume"] = relative_volume(candles["volume"], _cfg.VOLUME_WINDOW, include_current=True)
    out["rel_volume_prior"] = relative_volume(candles["volume"], _cfg.VOLUME_WINDOW, include_current=False)
    out["turnover20"] = avg_turnover(candles, _cfg.VOLUME_WINDOW)

    logger.debug(f"indicators: {len(candles)} bars → first full ema50 at "
                 f"{out['ema50'].first_valid_index()}")
    return out
