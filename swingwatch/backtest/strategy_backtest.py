"""
Strategy Backtest Simulator

Single-position, fixed-equity replay of one setup label across a daily
candle history.

Per bar from BACKTEST_WARMUP_BARS onward:
  • indicators as of that bar (EMA20/EMA50/RSI14/ATR14, relative volume
    against the 20 bars BEFORE it)
  • regime + setup label via setup_detector
  • flat and setup == strategy_label → buy floor(equity / close) shares,
    stop = close − STOP_ATR_MULTIPLE × ATR14
  • in a position (including one opened on this bar):
        low ≤ stop      → exit at stop   (STOP_LOSS)
        RSI14 > RSI_EXIT → exit at close (RSI_OVERBOUGHT)
    realise profit, update equity, peak and max drawdown

After the last bar an open position is marked to the last close
(END_OF_DATA). The forced close does not touch max drawdown.

Indicators are computed once over the whole history. Every series is
causal, so bar i sees exactly what recomputing on candles[:i+1] would give.
"""
import logging
import math
from datetime import date
from typing import Optional

import pandas as pd

from ..strategy import watch_config as _cfg
from ..strategy.indicators import compute_indicator_frame
from ..strategy.setup_detector import detect_regime, detect_setup
from ..strategy.snapshot import to_frame
from .backtest_schema import BacktestResult, ExitReason, close_trade

logger = logging.getLogger(__name__)


def _num(value) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def run_backtest(
    candles,
    strategy_label: str,
    ticker: str = "",
    starting_equity: Optional[float] = None,
    evaluation_date: Optional[date] = None,
) -> BacktestResult:
    """
    Replay `strategy_label` over `candles` and return aggregate statistics.

    Labels that never match (including unknown ones) produce an empty
    result, as does a history too short to clear the warm-up.
    """
    candles = to_frame(candles)
    start_eq = _cfg.STARTING_EQUITY if starting_equity is None else float(starting_equity)
    meta = dict(
        ticker=ticker,
        strategy_label=strategy_label,
        evaluation_date=evaluation_date or date.today(),
    )

    warmup = _cfg.BACKTEST_WARMUP_BARS
    if len(candles) <= warmup:
        logger.info(f"[{ticker or '-'}] {strategy_label}: {len(candles)} bars, "
                    f"need > {warmup}. No backtest.")
        return BacktestResult.from_trades([], start_eq, start_eq, 0.0, **meta)

    ind = compute_indicator_frame(candles)
    dates = [ts.date() for ts in candles.index]
    lows = candles["low"].to_numpy()
    closes = candles["close"].to_numpy()

    equity = start_eq
    peak = start_eq
    max_dd = 0.0
    trades = []
    pos = None   # dict(entry_price, shares, entry_date, stop, entry_idx)

    for i in range(warmup, len(candles)):
        close = float(closes[i])
        ema20 = _num(ind["ema20"].iat[i])
        ema50 = _num(ind["ema50"].iat[i])
        rsi14 = _num(ind["rsi14"].iat[i])
        atr14 = _num(ind["atr14"].iat[i])
        rel_vol = float(ind["rel_volume_prior"].iat[i])

        if pos is None and atr14 is not None:
            regime = detect_regime(close, ema20, ema50)
            setup = detect_setup(close, ema20, ema50, rsi14, rel_vol, regime)
            if setup.value == strategy_label:
                shares = math.floor(equity / close) if close > 0 else 0
                if shares > 0:
                    pos = dict(
                        entry_price=close,
                        shares=shares,
                        entry_date=dates[i],
                        stop=close - _cfg.STOP_ATR_MULTIPLE * atr14,
                        entry_idx=i,
                    )
                    logger.debug(f"[{ticker or '-'}] {dates[i]} ENTER {strategy_label} "
                                 f"{shares} @ {close:.2f} stop {pos['stop']:.2f}")

        if pos is None:
            continue

        exit_price = None
        reason = None
        if lows[i] <= pos["stop"]:
            exit_price, reason = pos["stop"], ExitReason.STOP_LOSS
        elif rsi14 is not None and rsi14 > _cfg.RSI_EXIT:
            exit_price, reason = close, ExitReason.RSI_OVERBOUGHT

        if exit_price is not None:
            trade = close_trade(
                pos["entry_date"], pos["entry_price"], pos["shares"], pos["stop"], None,
                dates[i], exit_price, reason, days_in_trade=i - pos["entry_idx"],
            )
            trades.append(trade)
            equity += trade.profit_absolute
            peak = max(peak, equity)
            if peak > 0:
                max_dd = max(max_dd, (peak - equity) / peak * 100)
            logger.debug(f"[{ticker or '-'}] {dates[i]} EXIT {reason} @ {exit_price:.2f} "
                         f"P&L {trade.profit_absolute:+.2f} equity {equity:.2f}")
            pos = None

    if pos is not None:
        last = len(candles) - 1
        trade = close_trade(
            pos["entry_date"], pos["entry_price"], pos["shares"], pos["stop"], None,
            dates[last], float(closes[last]), ExitReason.END_OF_DATA,
            days_in_trade=last - pos["entry_idx"],
        )
        trades.append(trade)
        equity += trade.profit_absolute

    result = BacktestResult.from_trades(trades, equity, start_eq, max_dd, **meta)
    logger.info(
        f"[{ticker or '-'}] {strategy_label}: {result.total_trades} trades | "
        f"WR {result.win_rate:.1f}% | return {result.total_return:+.2f}% | "
        f"maxDD {result.max_drawdown:.2f}% | Sharpe {result.sharpe_ratio:.2f}"
    )
    return result
