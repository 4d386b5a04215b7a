"""
snapshot.py: Evaluation Input Types
====================================

Strict, explicitly-optional structs that carry one bar's worth of state
into the watch-status engine, plus the builders that derive them from a
candle frame.

"Not yet available" is None, never 0. A snapshot built during indicator
warm-up has ema50=None; the engine refuses it with ContractViolation
instead of guessing.
"""
import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Iterable, Optional, Union

import pandas as pd

from .indicators import compute_indicator_frame
from .structure_detector import StructureDetector, StructuralContext

logger = logging.getLogger(__name__)

CANDLE_COLUMNS = ["open", "high", "low", "close", "volume"]


class ContractViolation(ValueError):
    """A required numeric field is missing or non-finite. Always a caller bug."""


# ── Candles ────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CandleBar:
    date:   date
    open:   float
    high:   float
    low:    float
    close:  float
    volume: float


def to_frame(candles: Union[pd.DataFrame, Iterable]) -> pd.DataFrame:
    """
    Normalise candles into the frame every component consumes.

    Accepts a DataFrame (DatetimeIndex or a 'date' column, any column case),
    a list of CandleBar, or a list of dicts with the CandleBar keys.
    Result: ascending DatetimeIndex named 'date', unique dates (last one wins),
    float columns open/high/low/close/volume.
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
        df.columns = [str(c).lower() for c in df.columns]
    else:
        rows = [asdict(c) if isinstance(c, CandleBar) else dict(c) for c in candles]
        df = pd.DataFrame(rows, columns=["date"] + CANDLE_COLUMNS)

    if "date" in df.columns:
        df = df.set_index("date")
    if df.empty:
        return pd.DataFrame(columns=CANDLE_COLUMNS, index=pd.DatetimeIndex([], name="date"), dtype=float)

    missing = [c for c in CANDLE_COLUMNS if c not in df.columns]
    if missing:
        raise ContractViolation(f"candles missing column(s): {missing}")

    df.index = pd.DatetimeIndex(pd.to_datetime(df.index))
    if df.index.tz is not None:
        df.index = df.index.tz_localize(None)
    df.index.name = "date"
    df = df[CANDLE_COLUMNS].astype(float).sort_index(kind="stable")
    return df[~df.index.duplicated(keep="last")]


# ── Snapshot + contexts ────────────────────────────────────────────────────
@dataclass(frozen=True)
class IndicatorSnapshot:
    close:           float
    high:            float
    low:             float
    ema20:           Optional[float]
    ema50:           Optional[float]
    ema20_slope:     float = 0.0      # 5-bar fractional change, 0.0 when unavailable
    ema50_slope:     float = 0.0
    rsi14:           Optional[float] = None
    relative_volume: float = 1.0
    avg_turnover:    Optional[float] = None
    atr14:           Optional[float] = None
    bar_date:        Optional[date] = None


@dataclass(frozen=True)
class VolumeContext:
    rel_vol:      float = 1.0
    avg_turnover: Optional[float] = None


@dataclass(frozen=True)
class RobustnessContext:
    edge_score:   Optional[float] = None   # 0–100, from historical performance
    total_trades: Optional[int] = None     # sample size behind edge_score


@dataclass(frozen=True)
class HistoryContext:
    prev_status:           Optional[str] = None    # WatchStatus value of the previous evaluation
    last_invalidated_date: Optional[date] = None
    days_in_watchlist:     int = 0


@dataclass(frozen=True)
class WatchEvaluationInput:
    snapshot:   IndicatorSnapshot
    structure:  StructuralContext = field(default_factory=StructuralContext)
    volume:     VolumeContext = field(default_factory=VolumeContext)
    robustness: RobustnessContext = field(default_factory=RobustnessContext)
    history:    HistoryContext = field(default_factory=HistoryContext)
    as_of:      date = field(default_factory=date.today)

    def validate(self) -> None:
        """Raise ContractViolation naming the first missing/non-finite field."""
        snap = self.snapshot
        required = {
            "close": snap.close,
            "ema20": snap.ema20,
            "ema50": snap.ema50,
            "rsi14": snap.rsi14,
            "ema20_slope": snap.ema20_slope,
            "ema50_slope": snap.ema50_slope,
            "rel_vol": self.volume.rel_vol,
        }
        for name, value in required.items():
            if value is None:
                raise ContractViolation(f"required field '{name}' is missing")
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ContractViolation(f"required field '{name}' is not finite: {value!r}")
        if snap.ema20 == 0:
            raise ContractViolation("required field 'ema20' is zero")

        # Optional fields may be None, never NaN: a NaN compares False and
        # would slip through the liquidity and edge gates.
        optional = {
            "avg_turnover": self.volume.avg_turnover,
            "edge_score": self.robustness.edge_score,
            "total_trades": self.robustness.total_trades,
        }
        for name, value in optional.items():
            if value is None:
                continue
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ContractViolation(f"optional field '{name}' is not finite: {value!r}")


def _opt(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


def build_snapshot(
    candles: pd.DataFrame,
    indicators: pd.DataFrame,
    position: int = -1,
    rel_volume_col: str = "rel_volume",
) -> IndicatorSnapshot:
    """Flat snapshot of bar `position` (iloc) from a candle frame and its indicator frame."""
    bar = candles.iloc[position]
    ind = indicators.iloc[position]
    return IndicatorSnapshot(
        close=float(bar["close"]),
        high=float(bar["high"]),
        low=float(bar["low"]),
        ema20=_opt(ind["ema20"]),
        ema50=_opt(ind["ema50"]),
        ema20_slope=float(ind["ema20_slope"]),
        ema50_slope=float(ind["ema50_slope"]),
        rsi14=_opt(ind["rsi14"]),
        relative_volume=float(ind[rel_volume_col]),
        avg_turnover=_opt(ind["turnover20"]),
        atr14=_opt(ind["atr14"]),
        bar_date=_as_date(candles.index[position]),
    )


def build_watch_input(
    candles: pd.DataFrame,
    indicators: Optional[pd.DataFrame] = None,
    edge_score: Optional[float] = None,
    total_trades: Optional[int] = None,
    history: Optional[HistoryContext] = None,
    as_of: Optional[date] = None,
    with_turnover: bool = True,
    detector: Optional[StructureDetector] = None,
) -> WatchEvaluationInput:
    """
    Everything evaluate() needs, as of the LAST bar of `candles`.

    `indicators` may be a precomputed frame covering at least the same bars
    (extra trailing rows are ignored); it is computed here when omitted.
    with_turnover=False leaves avg_turnover unset so the liquidity gate stays
    inert, which is how historical replays run.
    """
    candles = to_frame(candles)
    if candles.empty:
        raise ContractViolation("cannot build an evaluation input from zero candles")
    if indicators is None:
        indicators = compute_indicator_frame(candles)
    else:
        indicators = indicators.loc[:candles.index[-1]]

    snap = build_snapshot(candles, indicators)
    if not with_turnover:
        snap = IndicatorSnapshot(**{**asdict(snap), "avg_turnover": None})
    structure = (detector or StructureDetector()).context(candles)

    return WatchEvaluationInput(
        snapshot=snap,
        structure=structure,
        volume=VolumeContext(rel_vol=snap.relative_volume, avg_turnover=snap.avg_turnover),
        robustness=RobustnessContext(edge_score=edge_score, total_trades=total_trades),
        history=history or HistoryContext(),
        as_of=as_of or date.today(),
    )
