"""
backtest_schema.py: Canonical backtest result schema
=====================================================
Single source of truth for the data contract between the two simulators
(strategy_backtest.run_backtest, walk_forward.simulate) and any consumer
(the runner, the journal, tests).

Canonical field names
---------------------
  total_trades    closed trades                               [was: total_signals]
  win_rate        percent 0..100 (e.g. 29.0 = 29%)
  avg_win         mean return_pct of winners (profit > 0)
  avg_loss        mean return_pct of losers (≤ 0, negative on a loss)
  total_return    percent on starting equity
  max_drawdown    peak-to-trough drawdown, percent of peak    [was: max_dd_pct]
  sharpe_ratio    mean / population std of per-trade fractional returns × sqrt(252)

Backward-compat aliases
-----------------------
  BacktestResult.get("total_signals")  → total_trades
  BacktestResult["max_dd_pct"]         → max_drawdown
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..strategy import watch_config as _cfg


_ALIASES: Dict[str, str] = {
    "total_signals": "total_trades",
    "max_dd_pct":    "max_drawdown",
    "sharpe":        "sharpe_ratio",
}


class ExitReason:
    STOP_LOSS      = "STOP_LOSS"
    TARGET_HIT     = "TARGET_HIT"
    RSI_OVERBOUGHT = "RSI_OVERBOUGHT"
    INVALIDATED    = "INVALIDATED"
    TIME_EXIT      = "TIME_EXIT"
    END_OF_DATA    = "END_OF_DATA"
    OPEN           = "OPEN"


@dataclass(frozen=True)
class BacktestTrade:
    entry_date:      date
    entry_price:     float
    exit_date:       Optional[date]     # None only for a still-open walk-forward trade
    exit_price:      float              # mark price for an open trade
    shares:          int
    stop:            float
    target:          Optional[float]    # None when the strategy has no profit target
    profit_absolute: float
    return_pct:      float              # percent
    r_multiple:      float              # 0 when initial risk ≤ 0
    exit_reason:     str
    days_in_trade:   int = 0

    @property
    def is_open(self) -> bool:
        return self.exit_date is None

    @property
    def is_winner(self) -> bool:
        return self.profit_absolute > 0


def close_trade(entry_date: date, entry_price: float, shares: int, stop: float,
                target: Optional[float], exit_date: Optional[date], exit_price: float,
                exit_reason: str, days_in_trade: int = 0) -> BacktestTrade:
    """Realise a position into an immutable BacktestTrade."""
    profit = (exit_price - entry_price) * shares
    cost = entry_price * shares
    risk = entry_price - stop
    return BacktestTrade(
        entry_date=entry_date,
        entry_price=entry_price,
        exit_date=exit_date,
        exit_price=exit_price,
        shares=shares,
        stop=stop,
        target=target,
        profit_absolute=profit,
        return_pct=profit / cost * 100 if cost else 0.0,
        r_multiple=(exit_price - entry_price) / risk if risk > 0 else 0.0,
        exit_reason=exit_reason,
        days_in_trade=days_in_trade,
    )


# ── Stats helpers ───────────────────────────────────────────────────────────
def sharpe_ratio(returns: Sequence[float]) -> float:
    """Annualised mean / population std of fractional per-trade returns."""
    if len(returns) < 1:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = arr.std(ddof=0)
    if std == 0 or not math.isfinite(std):
        return 0.0
    return float(arr.mean() / std * math.sqrt(_cfg.TRADING_DAYS_PER_YEAR))


def max_drawdown_pct(equity_curve: Sequence[float]) -> float:
    """Largest peak-to-trough decline of an equity curve, percent of the peak."""
    peak = None
    worst = 0.0
    for eq in equity_curve:
        if peak is None or eq > peak:
            peak = eq
        if peak and peak > 0:
            worst = max(worst, (peak - eq) / peak * 100)
    return worst


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


@dataclass
class BacktestResult:
    """Typed result returned by run_backtest()."""

    ticker:         str   = ""
    strategy_label: str   = ""
    evaluation_date: Optional[date] = None

    # ── Core performance ─────────────────────────────────────────────────
    total_trades:   int   = 0
    wins:           int   = 0
    losses:         int   = 0
    win_rate:       float = 0.0   # percent
    avg_win:        float = 0.0   # mean return_pct of winners
    avg_loss:       float = 0.0   # mean return_pct of losers
    total_return:   float = 0.0   # percent
    max_drawdown:   float = 0.0   # percent of peak
    sharpe_ratio:   float = 0.0
    final_equity:   float = 0.0

    trades: List[BacktestTrade] = field(default_factory=list)

    @classmethod
    def from_trades(cls, trades: List[BacktestTrade], final_equity: float,
                    starting_equity: float, max_drawdown: float, **meta) -> "BacktestResult":
        winners = [t for t in trades if t.is_winner]
        losers = [t for t in trades if not t.is_winner]
        n = len(trades)
        return cls(
            total_trades=n,
            wins=len(winners),
            losses=len(losers),
            win_rate=len(winners) / n * 100 if n else 0.0,
            avg_win=_mean([t.return_pct for t in winners]),
            avg_loss=_mean([t.return_pct for t in losers]),
            total_return=(final_equity - starting_equity) / starting_equity * 100,
            max_drawdown=max_drawdown,
            sharpe_ratio=sharpe_ratio([t.return_pct / 100 for t in trades]),
            final_equity=final_equity,
            trades=list(trades),
            **meta,
        )

    # ── Dict-style access (backward compat) ─────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        actual = _ALIASES.get(key, key)
        return getattr(self, actual, default)

    def __getitem__(self, key: str) -> Any:
        actual = _ALIASES.get(key, key)
        try:
            return getattr(self, actual)
        except AttributeError:
            raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        return hasattr(self, _ALIASES.get(key, key))

    def to_dict(self) -> Dict[str, Any]:
        """Flat dict with canonical names (dates stay date objects)."""
        return asdict(self)


@dataclass
class WalkForwardSummary:
    total_trades:       int   = 0     # closed trades only
    open_trades:        int   = 0
    winners:            int   = 0
    losers:             int   = 0
    win_rate:           float = 0.0   # percent
    avg_win:            float = 0.0   # mean return_pct, percent
    avg_loss:           float = 0.0   # mean return_pct, percent (≤ 0)
    avg_win_loss_ratio: float = 0.0   # avg_win / |avg_loss|, 0 when avg_loss == 0
    edge_score:         float = 0.0   # win fraction × ratio × 100
    total_return:       float = 0.0   # compounded, percent
    max_drawdown:       float = 0.0   # compounded equity curve, percent
    sharpe_ratio:       float = 0.0

    @classmethod
    def from_trades(cls, trades: List[BacktestTrade]) -> "WalkForwardSummary":
        closed = [t for t in trades if not t.is_open]
        winners = [t for t in closed if t.return_pct > 0]
        losers = [t for t in closed if t.return_pct <= 0]
        n = len(closed)

        win_frac = len(winners) / n if n else 0.0
        avg_win = _mean([t.return_pct for t in winners])
        avg_loss = _mean([t.return_pct for t in losers])
        ratio = avg_win / abs(avg_loss) if avg_loss != 0 else 0.0

        equity = [1.0]
        for t in closed:
            equity.append(equity[-1] * (1 + t.return_pct / 100))

        return cls(
            total_trades=n,
            open_trades=len(trades) - n,
            winners=len(winners),
            losers=len(losers),
            win_rate=win_frac * 100,
            avg_win=avg_win,
            avg_loss=avg_loss,
            avg_win_loss_ratio=ratio,
            edge_score=win_frac * ratio * 100,
            total_return=(equity[-1] - 1) * 100,
            max_drawdown=max_drawdown_pct(equity),
            sharpe_ratio=sharpe_ratio([t.return_pct / 100 for t in closed]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WalkForwardResult:
    ticker:         str = ""
    start_date:     Optional[date] = None
    end_date:       Optional[date] = None
    bars_evaluated: int = 0           # bars with warm indicators inside the window
    trades:         List[BacktestTrade] = field(default_factory=list)
    summary:        WalkForwardSummary = field(default_factory=WalkForwardSummary)

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
