"""
Setup Detector

Daily market regime + named setup label, the vocabulary the strategy
backtester matches a strategy label against.

  Regime : Bullish Trend / Bearish Trend / Consolidation
  Setup  : Pullback / Breakout / Reversal / Trend Following / Near Breakout / Hold

Setups are checked in that priority; the first match wins. Missing
indicators mean Hold, never an error.

Also: the 0–10 heuristic edge score shown when no backtest exists yet,
ATR stop/target suggestion, and a simple range-based support/resistance.
"""
import logging
from enum import Enum
from typing import Optional

import pandas as pd

from . import watch_config as _cfg

logger = logging.getLogger(__name__)


class Regime(Enum):
    BULLISH_TREND = "Bullish Trend"
    BEARISH_TREND = "Bearish Trend"
    CONSOLIDATION = "Consolidation"


class Setup(Enum):
    PULLBACK        = "Pullback"
    BREAKOUT        = "Breakout"
    REVERSAL        = "Reversal"
    TREND_FOLLOWING = "Trend Following"
    NEAR_BREAKOUT   = "Near Breakout"
    HOLD            = "Hold"


STRATEGY_LABELS = [s.value for s in Setup if s is not Setup.HOLD]

# Setup thresholds. Kept local: they define the label vocabulary, not the
# watchlist gates tuned through levers.
BREAKOUT_REL_VOL        = 1.5
REVERSAL_RSI            = 30.0
REVERSAL_REL_VOL        = 1.3
TREND_FOLLOWING_RSI_MAX = 70.0
NEAR_BREAKOUT_DIST_PCT  = 0.5


def detect_regime(close: float, ema20: Optional[float], ema50: Optional[float]) -> Regime:
    if ema20 is None or ema50 is None:
        return Regime.CONSOLIDATION
    if ema20 > ema50 and close > ema20:
        return Regime.BULLISH_TREND
    if ema20 < ema50 and close < ema20:
        return Regime.BEARISH_TREND
    return Regime.CONSOLIDATION


def detect_setup(
    close: float,
    ema20: Optional[float],
    ema50: Optional[float],
    rsi14: Optional[float],
    rel_vol: float,
    regime: Optional[Regime] = None,
) -> Setup:
    if ema20 is None or ema50 is None or rsi14 is None or ema20 == 0:
        return Setup.HOLD
    if regime is None:
        regime = detect_regime(close, ema20, ema50)

    above_ema20 = close > ema20
    above_ema50 = close > ema50
    stacked = ema20 > ema50
    dist_pct = abs((close - ema20) / ema20) * 100

    if regime is Regime.BULLISH_TREND and above_ema50 and not above_ema20 and rsi14 < 50:
        return Setup.PULLBACK
    if regime is Regime.CONSOLIDATION and rel_vol > BREAKOUT_REL_VOL and above_ema20:
        return Setup.BREAKOUT
    if regime is Regime.BEARISH_TREND and rsi14 < REVERSAL_RSI and rel_vol > REVERSAL_REL_VOL:
        return Setup.REVERSAL
    if (regime is Regime.BULLISH_TREND and above_ema20 and stacked
            and 50 < rsi14 < TREND_FOLLOWING_RSI_MAX):
        return Setup.TREND_FOLLOWING
    if (regime is Regime.CONSOLIDATION and stacked
            and dist_pct <= NEAR_BREAKOUT_DIST_PCT and 40 <= rsi14 <= 60):
        return Setup.NEAR_BREAKOUT
    return Setup.HOLD


def heuristic_edge_score(regime: Regime, setup: Setup,
                         rsi14: Optional[float], rel_vol: float) -> float:
    """
    0–10 rule-of-thumb score for instruments without a backtest.

    Base 5; regime ±2; RSI 40–60 +1, RSI <30 or >70 −1; volume >1.5 +1,
    <0.8 −0.5; any setup other than Hold +0.5. Clamped, 1 decimal.
    """
    score = 5.0
    if regime is Regime.BULLISH_TREND:
        score += 2
    elif regime is Regime.BEARISH_TREND:
        score -= 2
    if rsi14 is not None:
        if 40 <= rsi14 <= 60:
            score += 1
        if rsi14 < 30 or rsi14 > 70:
            score -= 1
    if rel_vol > 1.5:
        score += 1
    if rel_vol < 0.8:
        score -= 0.5
    if setup is not Setup.HOLD:
        score += 0.5
    return max(0.0, min(10.0, round(score, 1)))


def suggest_stop_target(entry: float, atr14: float,
                        risk_multiple: Optional[float] = None,
                        reward_multiple: Optional[float] = None) -> dict:
    risk_multiple = _cfg.STOP_ATR_MULTIPLE if risk_multiple is None else risk_multiple
    reward_multiple = _cfg.TARGET_ATR_MULTIPLE if reward_multiple is None else reward_multiple
    stop = entry - atr14 * risk_multiple
    target = entry + atr14 * reward_multiple
    initial_r = entry - stop
    return {
        "stop":            round(stop, 2),
        "target":          round(target, 2),
        "initial_r":       round(initial_r, 2),
        "rr_ratio":        round((target - entry) / initial_r, 2) if initial_r > 0 else 0.0,
        "atr_used":        atr14,
        "risk_multiple":   risk_multiple,
        "reward_multiple": reward_multiple,
    }


def support_resistance(candles: pd.DataFrame, lookback: int = 50) -> dict:
    """Lowest low / highest high of the last `lookback` bars; None fields when short."""
    if len(candles) < lookback:
        return {"support": None, "resistance": None, "range": None, "range_pct": None}
    recent = candles.iloc[-lookback:]
    support = float(recent["low"].min())
    resistance = float(recent["high"].max())
    return {
        "support":    round(support, 2),
        "resistance": round(resistance, 2),
        "range":      round(resistance - support, 2),
        "range_pct":  round((resistance - support) / support * 100, 2) if support else None,
    }
