"""
Walk-Forward Signal Evaluator

Replays the watch-status engine day by day over [start_date, end_date] and
trades its ready signals, answering "has READY historically paid?".

Per bar with warm indicators:
  • build the evaluation input from the trailing history (as_of = bar date,
    no turnover / edge / history, so the liquidity, edge and cooldown gates
    stay inert during replay) and call evaluate()
  • flat and READY / BREAKOUT_READY → enter at the close,
        stop   = close − STOP_ATR_MULTIPLE   × ATR14
        target = close + TARGET_ATR_MULTIPLE × ATR14
  • in a trade (from the bar after entry): days_in_trade += 1, then exit on
        low ≤ stop              → STOP_LOSS  at stop
        high ≥ target           → TARGET_HIT at target
        status INVALIDATED      → INVALIDATED at close
        days ≥ MAX_DAYS_IN_TRADE → TIME_EXIT at close

A trade still open after the last bar is reported with exit_date=None,
exit_reason OPEN and unrealised metrics at the last close.

Fetch LOOKBACK_MONTHS of history before start_date (see lookback_start) or
the first weeks of the window will be skipped as warm-up.
"""
import logging
from datetime import date
from typing import Optional, Union

import pandas as pd

from ..strategy import watch_config as _cfg
from ..strategy.indicators import compute_indicator_frame
from ..strategy.snapshot import build_watch_input, to_frame
from ..strategy.structure_detector import StructureDetector
from ..strategy.watch_status import WatchStatus, evaluate
from .backtest_schema import (
    ExitReason, WalkForwardResult, WalkForwardSummary, close_trade,
)

logger = logging.getLogger(__name__)

_WARM_COLUMNS = ["ema20", "ema50", "rsi14", "atr14"]


def _to_date(value: Union[str, date, pd.Timestamp]) -> date:
    return pd.Timestamp(value).date()


def lookback_start(start_date: Union[str, date], months: Optional[int] = None) -> date:
    """Recommended first fetch date for a walk-forward starting at start_date."""
    months = _cfg.LOOKBACK_MONTHS if months is None else months
    return (pd.Timestamp(start_date) - pd.DateOffset(months=months)).date()


def simulate(
    candles,
    start_date: Union[str, date],
    end_date: Union[str, date],
    ticker: str = "",
) -> WalkForwardResult:
    candles = to_frame(candles)
    start, end = _to_date(start_date), _to_date(end_date)
    if start > end:
        raise ValueError(f"simulate: start_date {start} is after end_date {end}")

    candles = candles.loc[:pd.Timestamp(end)]
    ind = compute_indicator_frame(candles)
    detector = StructureDetector()

    trades = []
    trade = None      # dict(entry_date, entry_price, stop, target, days)
    last_close = None
    evaluated = 0

    for i, ts in enumerate(candles.index):
        bar_date = ts.date()
        if bar_date < start:
            continue
        if ind[_WARM_COLUMNS].iloc[i].isna().any():
            continue

        inp = build_watch_input(
            candles.iloc[:i + 1],
            ind.iloc[:i + 1],
            as_of=bar_date,
            with_turnover=False,
            detector=detector,
        )
        result = evaluate(inp)
        evaluated += 1

        bar = candles.iloc[i]
        close, high, low = float(bar["close"]), float(bar["high"]), float(bar["low"])
        last_close = close

        if trade is None:
            if result.is_ready:
                atr14 = float(ind["atr14"].iat[i])
                trade = dict(
                    entry_date=bar_date,
                    entry_price=close,
                    stop=close - _cfg.STOP_ATR_MULTIPLE * atr14,
                    target=close + _cfg.TARGET_ATR_MULTIPLE * atr14,
                    days=0,
                )
                logger.debug(f"[{ticker or '-'}] {bar_date} ENTER @ {close:.2f} "
                             f"({result.status.value}) stop {trade['stop']:.2f} "
                             f"target {trade['target']:.2f}")
            continue

        trade["days"] += 1
        exit_price = None
        reason = None
        if low <= trade["stop"]:
            exit_price, reason = trade["stop"], ExitReason.STOP_LOSS
        elif high >= trade["target"]:
            exit_price, reason = trade["target"], ExitReason.TARGET_HIT
        elif result.status is WatchStatus.INVALIDATED:
            exit_price, reason = close, ExitReason.INVALIDATED
        elif trade["days"] >= _cfg.MAX_DAYS_IN_TRADE:
            exit_price, reason = close, ExitReason.TIME_EXIT

        if exit_price is not None:
            closed = close_trade(
                trade["entry_date"], trade["entry_price"], 1, trade["stop"], trade["target"],
                bar_date, exit_price, reason, days_in_trade=trade["days"],
            )
            trades.append(closed)
            logger.debug(f"[{ticker or '-'}] {bar_date} EXIT {reason} @ {exit_price:.2f} "
                         f"({closed.return_pct:+.2f}%, {closed.r_multiple:+.2f}R)")
            trade = None

    if trade is not None:
        still_open = close_trade(
            trade["entry_date"], trade["entry_price"], 1, trade["stop"], trade["target"],
            None, last_close, ExitReason.OPEN, days_in_trade=trade["days"],
        )
        trades.append(still_open)

    summary = WalkForwardSummary.from_trades(trades)
    logger.info(
        f"[{ticker or '-'}] walk-forward {start}→{end}: {evaluated} bars evaluated | "
        f"{summary.total_trades} closed, {summary.open_trades} open | "
        f"WR {summary.win_rate:.1f}% | edge {summary.edge_score:.1f} | "
        f"return {summary.total_return:+.2f}% | maxDD {summary.max_drawdown:.2f}%"
    )
    return WalkForwardResult(
        ticker=ticker,
        start_date=start,
        end_date=end,
        bars_evaluated=evaluated,
        trades=trades,
        summary=summary,
    )
