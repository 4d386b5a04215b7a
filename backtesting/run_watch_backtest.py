"""
Watchlist Runner: evaluate / backtest / walk-forward from the command line
===========================================================================

Thin orchestration around the pure core: fetch candles (yfinance), feed the
previous day's journal state back in, run one of three modes, print the
result and journal it.

  evaluate     today's watch status for a ticker (uses the journal for
               prev status / last invalidation / days on watchlist)
  backtest     strategy-label backtest over [start, end]
  walkforward  replay the watch-status engine over [start, end]

Usage:
    python -m backtesting.run_watch_backtest --ticker AAPL
    python -m backtesting.run_watch_backtest --ticker AAPL --mode backtest \\
        --strategy "Trend Following" --start 2023-01-01
    python -m backtesting.run_watch_backtest --ticker VOLV-B.ST --mode walkforward \\
        --start 2024-01-01 --end 2024-12-31 --lever MIN_ADJUSTED_EDGE=60
"""
import argparse
import logging
import os
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv

from swingwatch.backtest.strategy_backtest import run_backtest
from swingwatch.backtest.walk_forward import lookback_start, simulate
from swingwatch.data.market_data import MarketData, NoMarketData
from swingwatch.execution.watch_journal import JOURNAL_PATH, WatchJournal
from swingwatch.strategy import watch_config as _cfg
from swingwatch.strategy.setup_detector import (
    STRATEGY_LABELS, detect_regime, detect_setup, heuristic_edge_score,
    suggest_stop_target, support_resistance,
)
from swingwatch.strategy.snapshot import ContractViolation, build_watch_input
from swingwatch.strategy.watch_status import evaluate

load_dotenv(Path(__file__).resolve().parents[1] / ".env")

logger = logging.getLogger("swingwatch.runner")

# Calendar days of history fetched for a single-day evaluation (EMA50 warm-up).
EVALUATE_LOOKBACK_DAYS = 365


def _setup_logging(verbose: bool = False) -> None:
    log_dir = Path(os.getenv("SWINGWATCH_LOG_DIR", str(Path.home() / "swingwatch" / "logs"))).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_dir / "swingwatch.log"),
            logging.StreamHandler(),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Swing watchlist: evaluate / backtest / walk-forward",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Lever system. Override any watch_config constant without editing source:

  --lever KEY=VALUE       Set one lever (repeat for multiple)
  --profile NAME          Load profiles/<name>.json (applied before --lever flags)

Strategy labels (backtest mode): """ + ", ".join(STRATEGY_LABELS) + ", all")
    parser.add_argument("--ticker",  required=True,        help="Instrument symbol, e.g. AAPL")
    parser.add_argument("--mode",    default="evaluate",
                        choices=["evaluate", "backtest", "walkforward"])
    parser.add_argument("--strategy", default="Trend Following",
                        help="Setup label to backtest, or 'all'")
    parser.add_argument("--start",   default=None,         help="Start date YYYY-MM-DD (default: one year ago)")
    parser.add_argument("--end",     default=None,         help="End date YYYY-MM-DD (default: today)")
    parser.add_argument("--edge-score", type=float, default=None, dest="edge_score",
                        help="Historical edge score 0-100 (evaluate mode)")
    parser.add_argument("--total-trades", type=int, default=None, dest="total_trades",
                        help="Backtest trade count behind --edge-score (evaluate mode)")
    parser.add_argument("--profile", default=os.getenv("SWINGWATCH_PROFILE"),
                        help="Load profiles/<name>.json lever profile")
    parser.add_argument("--lever",   action="append",      default=[],
                        metavar="KEY=VALUE",
                        help="Override a watch_config lever (e.g. --lever MIN_AVG_TURNOVER=1e6)")
    parser.add_argument("--journal", default=str(JOURNAL_PATH), help="Journal path (.jsonl)")
    parser.add_argument("--no-journal", action="store_true", default=False,
                        help="Do not read or write the journal")
    parser.add_argument("--verbose", action="store_true", default=False, help="DEBUG logging")
    return parser


def apply_config(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Profile first, then individual --lever flags. Errors go through parser.error."""
    if args.profile:
        try:
            applied = _cfg.load_profile(args.profile)
            print(f"  Profile '{args.profile}' loaded: {applied}")
        except (FileNotFoundError, ValueError) as e:
            parser.error(str(e))

    if args.lever:
        overrides = {}
        for kv in args.lever:
            if "=" not in kv:
                parser.error(f"--lever must be KEY=VALUE, got: '{kv}'")
            k, v = kv.split("=", 1)
            overrides[k.strip()] = v.strip()
        try:
            applied = _cfg.apply_levers(overrides)
            print(f"  Levers applied: {applied}")
        except ValueError as e:
            parser.error(str(e))


def _parse_date(parser, value, default):
    if value is None:
        return default
    try:
        return date.fromisoformat(value)
    except ValueError:
        parser.error(f"bad date '{value}', expected YYYY-MM-DD")


def run_evaluate(md: MarketData, journal, args, end: date) -> int:
    candles = md.get_daily_candles(args.ticker, end - timedelta(days=EVALUATE_LOOKBACK_DAYS), end)
    if candles.empty:
        print(f"No bars for {args.ticker} up to {end}.")
        return 1
    as_of = candles.index[-1].date()
    history = journal.history_for(args.ticker, as_of) if journal else None
    inp = build_watch_input(
        candles,
        edge_score=args.edge_score,
        total_trades=args.total_trades,
        history=history,
        as_of=as_of,
    )
    try:
        inp.validate()
    except ContractViolation as e:
        logger.warning(f"{args.ticker}: {e}")
        print(f"{args.ticker}: not enough history for an evaluation "
              f"({len(candles)} bars up to {as_of}, {e}).")
        return 1
    result = evaluate(inp)

    print(f"\n{args.ticker} @ {as_of}: {result.status.value} / {result.action.value}")
    print(f"  {result.reason}")
    d = result.diagnostics
    print(f"  dist EMA20 {d.dist_ema20_pct:+.2f}% | RSI zone {d.rsi_zone.value} | "
          f"volume {d.volume_state.value}")
    if result.time_warning:
        print(f"  ⚠ {result.time_warning}")
    _print_setup_context(candles, inp, args.edge_score)
    if journal:
        journal.log_evaluation(args.ticker, as_of, result)
    return 0


def _print_setup_context(candles, inp, edge_score) -> None:
    """Regime / setup label, fallback edge score, ATR stop-target and range levels."""
    snap = inp.snapshot
    regime = detect_regime(snap.close, snap.ema20, snap.ema50)
    setup = detect_setup(snap.close, snap.ema20, snap.ema50, snap.rsi14,
                         inp.volume.rel_vol, regime)
    line = f"  {regime.value} | setup {setup.value}"
    if edge_score is None:
        line += (f" | heuristic edge "
                 f"{heuristic_edge_score(regime, setup, snap.rsi14, inp.volume.rel_vol):.1f}/10")
    print(line)
    if snap.atr14:
        st = suggest_stop_target(snap.close, snap.atr14)
        print(f"  stop {st['stop']:.2f} | target {st['target']:.2f} | "
              f"1R {st['initial_r']:.2f} | R:R {st['rr_ratio']:.2f}")
    sr = support_resistance(candles)
    if sr["support"] is not None:
        print(f"  support {sr['support']:.2f} | resistance {sr['resistance']:.2f} | "
              f"range {sr['range_pct']:.2f}%")


def run_strategy_backtest(md: MarketData, journal, args, start: date, end: date) -> int:
    labels = STRATEGY_LABELS if args.strategy == "all" else [args.strategy]
    candles = md.get_daily_candles(args.ticker, start, end)
    if candles.empty:
        print(f"No bars for {args.ticker} between {start} and {end}.")
        return 1
    tags = _cfg.get_model_tags()
    print(f"\n{args.ticker} {start} → {end} | {len(candles)} bars | model: {','.join(tags)}")
    for label in labels:
        r = run_backtest(candles, label, ticker=args.ticker, evaluation_date=end)
        print(f"  {label:<16} trades {r.total_trades:>3} | WR {r.win_rate:5.1f}% | "
              f"avgW {r.avg_win:+6.2f}% avgL {r.avg_loss:+6.2f}% | "
              f"ret {r.total_return:+7.2f}% | DD {r.max_drawdown:5.2f}% | "
              f"Sharpe {r.sharpe_ratio:5.2f}")
        if journal:
            summary = {k: v for k, v in r.to_dict().items() if k != "trades"}
            journal.log_backtest(args.ticker, "backtest", label, summary, tags)
    return 0


def run_walkforward(md: MarketData, journal, args, start: date, end: date) -> int:
    candles = md.get_daily_candles(args.ticker, lookback_start(start), end)
    if candles.empty:
        print(f"No bars for {args.ticker} up to {end}.")
        return 1
    result = simulate(candles, start, end, ticker=args.ticker)
    if result.bars_evaluated == 0:
        print(f"No bars with warm indicators for {args.ticker} between {start} and {end}.")
        return 1
    s = result.summary
    tags = _cfg.get_model_tags()
    print(f"\n{args.ticker} walk-forward {start} → {end} | model: {','.join(tags)}")
    for t in result.trades:
        exit_part = f"{t.exit_date} @ {t.exit_price:.2f}" if t.exit_date else "open"
        print(f"  {t.entry_date} @ {t.entry_price:.2f} → {exit_part:<24} "
              f"{t.exit_reason:<12} {t.return_pct:+6.2f}% {t.r_multiple:+5.2f}R "
              f"({t.days_in_trade}d)")
    print(f"  closed {s.total_trades} | open {s.open_trades} | WR {s.win_rate:.1f}% | "
          f"W/L {s.avg_win_loss_ratio:.2f} | edge {s.edge_score:.1f} | "
          f"ret {s.total_return:+.2f}% | DD {s.max_drawdown:.2f}% | Sharpe {s.sharpe_ratio:.2f}")
    if journal:
        journal.log_backtest(args.ticker, "walkforward", "watch_status", s.to_dict(), tags)
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    apply_config(parser, args)

    end = _parse_date(parser, args.end, date.today())
    start = _parse_date(parser, args.start, end - timedelta(days=365))
    if start > end:
        parser.error(f"--start {start} is after --end {end}")

    journal = None if args.no_journal else WatchJournal(Path(args.journal))
    md = MarketData()
    try:
        if args.mode == "evaluate":
            return run_evaluate(md, journal, args, end)
        if args.mode == "backtest":
            return run_strategy_backtest(md, journal, args, start, end)
        return run_walkforward(md, journal, args, start, end)
    except NoMarketData as e:
        logger.error(f"No market data: {e}")
        print(f"No market data for {args.ticker}: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
