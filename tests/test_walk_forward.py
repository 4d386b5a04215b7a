"""
Unit tests for the walk-forward signal evaluator.

The engine is scripted (monkeypatched evaluate) for the trade lifecycle so
each exit path can be pinned to a bar; one run uses the real engine.

Covers:
  - lookback_start / argument validation
  - Warm-up and pre-window bars are skipped; end_date truncates
  - Replay inputs: no turnover, edge or history
  - Entry at the close on READY / BREAKOUT_READY, stop/target from ATR14
  - No exit check on the entry bar
  - Exit order: stop, target, invalidation, time
  - Open trade at the end of data
  - Summary: edge score, compounded return and drawdown
  - Real engine: an uptrend with pullbacks enters and exits on ATR levels
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import date

import numpy as np
import pandas as pd
import pytest

from swingwatch.backtest import walk_forward
from swingwatch.backtest.backtest_schema import ExitReason, WalkForwardSummary, close_trade
from swingwatch.backtest.walk_forward import lookback_start, simulate
from swingwatch.strategy.indicators import compute_indicator_frame
from swingwatch.strategy.snapshot import HistoryContext, build_watch_input
from swingwatch.strategy.watch_status import (
    Diagnostics, Momentum, VolumeState, WatchAction, WatchEvaluationResult, WatchStatus,
    evaluate,
)


# ── Fixtures ────────────────────────────────────────────────────────────────

def make_sideways(n: int = 120) -> pd.DataFrame:
    """Closes alternate 100 / 100.5 with ±0.5 wicks: every true range is 1.0."""
    closes = np.where(np.arange(n) % 2 == 0, 100.0, 100.5)
    df = pd.DataFrame({
        "open":   closes,
        "high":   closes + 0.5,
        "low":    closes - 0.5,
        "close":  closes,
        "volume": np.full(n, 1_000_000.0),
    })
    df.index = pd.date_range("2024-01-01", periods=n, freq="B", name="date")
    return df


def make_trending_waves(n: int = 200) -> pd.DataFrame:
    """
    Uptrend with pullbacks: close = 100 + 0.5·t + 2·sin(t/2), ±0.2 wicks.

    Each ~12.6-bar cycle rises ~7.7 and gives back ~1.4, so a strict pivot
    low forms every cycle and each one is higher than the last. Volume
    peaks about three bars after every trough, where the new leg clears
    the prior 20-day high on hot RSI.
    """
    t = np.arange(n)
    closes = 100 + 0.5 * t + 2.0 * np.sin(t / 2.0)
    trough_phase = 4 * np.pi / 3
    volume = 1_000_000.0 * (1 + 0.9 * np.cos(t / 2.0 - (trough_phase + 1.5)))
    df = pd.DataFrame({
        "open":   closes,
        "high":   closes + 0.2,
        "low":    closes - 0.2,
        "close":  closes,
        "volume": volume,
    })
    df.index = pd.date_range("2024-01-01", periods=n, freq="B", name="date")
    return df


def scripted_engine(statuses: dict):
    """evaluate() stand-in returning statuses keyed by as_of; WAIT_PULLBACK otherwise."""
    calls = []

    def _evaluate(inp):
        calls.append(inp)
        status = statuses.get(inp.as_of, WatchStatus.WAIT_PULLBACK)
        return WatchEvaluationResult(
            status=status,
            action=WatchAction.WAIT,
            reason="scripted",
            diagnostics=Diagnostics(0.0, Momentum.CALM, VolumeState.NORMAL),
        )

    return _evaluate, calls


def day(df, i) -> date:
    return df.index[i].date()


# ── Window handling ─────────────────────────────────────────────────────────

class TestWindow:
    def test_lookback_start(self):
        assert lookback_start(date(2024, 7, 15)) == date(2024, 1, 15)
        assert lookback_start("2024-07-15", months=3) == date(2024, 4, 15)

    def test_start_after_end_raises(self):
        with pytest.raises(ValueError):
            simulate(make_sideways(), "2024-06-01", "2024-05-01")

    def test_warmup_bars_skipped(self, monkeypatch):
        df = make_sideways()
        fake, calls = scripted_engine({})
        monkeypatch.setattr(walk_forward, "evaluate", fake)
        r = simulate(df, day(df, 0), day(df, -1))
        # EMA50 is the last indicator to warm up
        assert calls[0].as_of == day(df, 49)
        assert len(calls) == len(df) - 49
        assert r.bars_evaluated == len(df) - 49

    def test_window_inside_warmup_evaluates_nothing(self, monkeypatch):
        df = make_sideways()
        fake, calls = scripted_engine({})
        monkeypatch.setattr(walk_forward, "evaluate", fake)
        r = simulate(df, day(df, 0), day(df, 30))
        assert calls == []
        assert r.bars_evaluated == 0
        assert r.trades == []

    def test_window_bounds(self, monkeypatch):
        df = make_sideways()
        fake, calls = scripted_engine({})
        monkeypatch.setattr(walk_forward, "evaluate", fake)
        simulate(df, day(df, 70), day(df, 90))
        assert calls[0].as_of == day(df, 70)
        assert calls[-1].as_of == day(df, 90)

    def test_replay_inputs_leave_gates_inert(self, monkeypatch):
        df = make_sideways()
        fake, calls = scripted_engine({})
        monkeypatch.setattr(walk_forward, "evaluate", fake)
        simulate(df, day(df, 100), day(df, 100))
        inp = calls[0]
        assert inp.volume.avg_turnover is None
        assert inp.robustness.edge_score is None
        assert inp.robustness.total_trades is None
        assert inp.history == HistoryContext()
        assert inp.snapshot.close == pytest.approx(df["close"].iloc[100])


# ── Trade lifecycle ─────────────────────────────────────────────────────────

class TestTrades:
    def _run(self, monkeypatch, df, statuses, start=0, end=-1):
        fake, _ = scripted_engine(statuses)
        monkeypatch.setattr(walk_forward, "evaluate", fake)
        return simulate(df, day(df, start), day(df, end), ticker="TEST")

    def test_time_exit(self, monkeypatch):
        df = make_sideways()
        r = self._run(monkeypatch, df, {day(df, 60): WatchStatus.READY})

        assert len(r.trades) == 1
        t = r.trades[0]
        assert t.entry_date == day(df, 60)
        assert t.entry_price == df["close"].iloc[60]
        assert t.shares == 1
        assert t.stop == pytest.approx(t.entry_price - 2.0)
        assert t.target == pytest.approx(t.entry_price + 4.0)
        assert t.exit_reason == ExitReason.TIME_EXIT
        assert t.exit_date == day(df, 80)
        assert t.days_in_trade == 20
        assert t.exit_price == df["close"].iloc[80]

    def test_entry_bar_not_checked_then_stop(self, monkeypatch):
        df = make_sideways()
        df.loc[df.index[60], "low"] = 90.0
        df.loc[df.index[63], "low"] = 90.0
        r = self._run(monkeypatch, df, {day(df, 60): WatchStatus.READY})

        t = r.trades[0]
        assert t.entry_date == day(df, 60)
        assert t.exit_reason == ExitReason.STOP_LOSS
        assert t.exit_date == day(df, 63)
        assert t.exit_price == pytest.approx(t.stop)
        assert t.days_in_trade == 3
        assert t.r_multiple == pytest.approx(-1.0)

    def test_target_hit(self, monkeypatch):
        df = make_sideways()
        df.loc[df.index[62], "high"] = 200.0
        r = self._run(monkeypatch, df, {day(df, 60): WatchStatus.BREAKOUT_READY})

        t = r.trades[0]
        assert t.exit_reason == ExitReason.TARGET_HIT
        assert t.exit_price == pytest.approx(t.target)
        assert t.r_multiple == pytest.approx(2.0)

    def test_stop_beats_target_on_same_bar(self, monkeypatch):
        df = make_sideways()
        df.loc[df.index[62], "high"] = 200.0
        df.loc[df.index[62], "low"] = 50.0
        r = self._run(monkeypatch, df, {day(df, 60): WatchStatus.READY})
        assert r.trades[0].exit_reason == ExitReason.STOP_LOSS

    def test_invalidated_exits_at_close(self, monkeypatch):
        df = make_sideways()
        statuses = {day(df, 60): WatchStatus.READY, day(df, 65): WatchStatus.INVALIDATED}
        r = self._run(monkeypatch, df, statuses)

        t = r.trades[0]
        assert t.exit_reason == ExitReason.INVALIDATED
        assert t.exit_date == day(df, 65)
        assert t.exit_price == df["close"].iloc[65]

    def test_non_ready_status_does_not_enter(self, monkeypatch):
        df = make_sideways()
        r = self._run(monkeypatch, df, {day(df, 60): WatchStatus.WATCH_RECLAIM})
        assert r.trades == []

    def test_open_trade_at_end(self, monkeypatch):
        df = make_sideways()
        r = self._run(monkeypatch, df, {day(df, -5): WatchStatus.READY})

        t = r.trades[0]
        assert t.is_open
        assert t.exit_date is None
        assert t.exit_reason == ExitReason.OPEN
        assert t.exit_price == df["close"].iloc[-1]
        assert t.days_in_trade == 4
        assert r.summary.open_trades == 1
        assert r.summary.total_trades == 0

    def test_reentry_after_exit(self, monkeypatch):
        df = make_sideways()
        statuses = {
            day(df, 60): WatchStatus.READY,
            day(df, 61): WatchStatus.INVALIDATED,
            day(df, 62): WatchStatus.READY,
        }
        r = self._run(monkeypatch, df, statuses, end=70)
        assert [t.entry_date for t in r.trades] == [day(df, 60), day(df, 62)]
        assert r.trades[1].exit_reason == ExitReason.OPEN


class TestRealEngine:
    def test_uptrend_with_pullbacks_trades(self):
        df = make_trending_waves()
        r = simulate(df, day(df, 0), day(df, -1), ticker="WAVE")
        assert r.bars_evaluated == len(df) - 49
        assert len(r.trades) >= 1
        assert r.summary.total_trades >= 1

        ind = compute_indicator_frame(df)
        exit_reasons = {v for k, v in vars(ExitReason).items() if not k.startswith("_")}
        for t in r.trades:
            atr = ind["atr14"].loc[pd.Timestamp(t.entry_date)]
            assert t.entry_price == pytest.approx(df["close"].loc[pd.Timestamp(t.entry_date)])
            assert t.stop == pytest.approx(t.entry_price - 2.0 * atr)
            assert t.target == pytest.approx(t.entry_price + 4.0 * atr)
            assert t.exit_reason in exit_reasons

        first = r.trades[0]
        inp = build_watch_input(df.loc[:pd.Timestamp(first.entry_date)],
                                with_turnover=False, as_of=first.entry_date)
        assert evaluate(inp).status in (WatchStatus.READY, WatchStatus.BREAKOUT_READY)

    def test_sideways_market_never_trades(self):
        df = make_sideways()
        r = simulate(df, day(df, 0), day(df, -1))
        assert r.trades == []
        assert r.summary.total_trades == 0
        assert r.summary.edge_score == 0.0
        assert r.start_date == day(df, 0)


# ── Summary ─────────────────────────────────────────────────────────────────

def _trade(ret_pct: float, open_: bool = False):
    exit_date = None if open_ else date(2024, 2, 1)
    return close_trade(date(2024, 1, 2), 100.0, 1, 95.0, 110.0,
                       exit_date, 100.0 + ret_pct, ExitReason.OPEN if open_ else ExitReason.TIME_EXIT)


class TestSummary:
    def test_mixed_trades(self):
        s = WalkForwardSummary.from_trades(
            [_trade(10), _trade(-5), _trade(5), _trade(3, open_=True)]
        )
        assert s.total_trades == 3
        assert s.open_trades == 1
        assert s.winners == 2 and s.losers == 1
        assert s.win_rate == pytest.approx(200 / 3)
        assert s.avg_win == pytest.approx(7.5)
        assert s.avg_loss == pytest.approx(-5.0)
        assert s.avg_win_loss_ratio == pytest.approx(1.5)
        assert s.edge_score == pytest.approx(100.0)
        assert s.total_return == pytest.approx((1.10 * 0.95 * 1.05 - 1) * 100)
        assert s.max_drawdown == pytest.approx(5.0)

    def test_no_losers_means_zero_ratio(self):
        s = WalkForwardSummary.from_trades([_trade(4), _trade(6)])
        assert s.win_rate == 100.0
        assert s.avg_win_loss_ratio == 0.0
        assert s.edge_score == 0.0

    def test_breakeven_counts_as_loser(self):
        s = WalkForwardSummary.from_trades([_trade(0)])
        assert s.losers == 1
        assert s.avg_loss == 0.0

    def test_empty(self):
        s = WalkForwardSummary.from_trades([])
        assert s.total_trades == 0
        assert s.total_return == 0.0
        assert s.max_drawdown == 0.0
        assert s.to_dict()["edge_score"] == 0.0
