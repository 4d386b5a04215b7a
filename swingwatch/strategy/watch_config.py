"""
watch_config.py: Single Source of Truth for Watchlist Thresholds
==================================================================

THIS IS THE ONLY PLACE THESE CONSTANTS ARE DEFINED.

The watch-status engine (watch_status.py), the setup detector, the strategy
backtester and the walk-forward evaluator all import from here. If a
threshold needs to change, change it HERE, never inline in a consumer.

LEVER SYSTEM
============
Every threshold is a named lever. To run a one-off experiment without
editing source code, use the runner's --lever and --profile flags:

    python3 -m backtesting.run_watch_backtest --ticker AAPL --mode walkforward \\
        --lever MIN_ADJUSTED_EDGE=60 \\
        --lever READY_COOLDOWN_DAYS=5

Or load a named profile:

    python3 -m backtesting.run_watch_backtest --ticker AAPL --profile strict_edge

apply_levers(overrides) patches module globals at runtime. Consumers import
this module by reference (from . import watch_config as _cfg) and therefore
see the patched values on the next call.
"""
import json
import math
import sys as _sys
from pathlib import Path

# ── Liquidity gate ─────────────────────────────────────────────────────────
# Minimum 20-day average turnover (close × volume, currency units).
# Anything thinner is removed from the watchlist outright.
MIN_AVG_TURNOVER: float = 5_000_000.0

# ── Trend health ───────────────────────────────────────────────────────────
# Depth below EMA20 (percent) still treated as a reclaim attempt rather
# than a broken trend. The zone is [-RECLAIM_DEPTH_PCT, 0).
RECLAIM_DEPTH_PCT: float = 1.0

# ── Proximity zones (distance from EMA20, percent) ─────────────────────────
# FAR > FAR_PCT ≥ APPROACHING > APPROACHING_PCT ≥ NEAR > NEAR_PCT ≥ PERFECT ≥ 0
FAR_PCT:         float = 4.0
APPROACHING_PCT: float = 2.0
NEAR_PCT:        float = 1.0

# ── Momentum zones (RSI14) ─────────────────────────────────────────────────
# WEAK < RSI_WEAK ≤ CALM ≤ RSI_CALM_MAX < WARM ≤ RSI_WARM_MAX < HOT
RSI_WEAK:     float = 40.0
RSI_CALM_MAX: float = 55.0
RSI_WARM_MAX: float = 65.0

# ── Volume states (relative volume) ────────────────────────────────────────
VOLUME_LOW:  float = 0.5
VOLUME_HIGH: float = 1.5

# Relative volume needed to promote a pullback to READY.
READY_MIN_REL_VOL: float = 1.0

# Relative volume needed to call a HOT close above the breakout level
# BREAKOUT_READY instead of BREAKOUT_ONLY.
BREAKOUT_MIN_REL_VOL: float = 1.2

# ── Edge confidence ────────────────────────────────────────────────────────
# Fewer backtest trades than this = sample too thin to trust any edge.
MIN_BACKTEST_TRADES: int = 30

# Trade count at which the edge score is taken at face value.
# Below it the score is scaled by sqrt(trades / FULL_CONFIDENCE_TRADES).
FULL_CONFIDENCE_TRADES: int = 50

# Confidence-adjusted edge a ready signal must clear.
MIN_ADJUSTED_EDGE: float = 70.0

# ── Cooldown after invalidation (days) ─────────────────────────────────────
READY_COOLDOWN_DAYS:    int = 3
BREAKOUT_COOLDOWN_DAYS: int = 1

# Stand-in for "never invalidated".
NEVER_INVALIDATED_DAYS: int = 999

# ── Time decay (days on watchlist) ─────────────────────────────────────────
WATCHLIST_WARN_DAYS:   int = 10
WATCHLIST_EXPIRE_DAYS: int = 15

# ── Indicator periods ──────────────────────────────────────────────────────
EMA_FAST:       int = 20
EMA_SLOW:       int = 50
RSI_PERIOD:     int = 14
ATR_PERIOD:     int = 14
VOLUME_WINDOW:  int = 20
SLOPE_BARS:     int = 5
PIVOT_LOOKBACK: int = 2
STRUCTURE_WINDOW: int = 20

# ── Strategy backtest ──────────────────────────────────────────────────────
# Bars before this index are indicator warm-up and never traded.
BACKTEST_WARMUP_BARS: int = 50
STARTING_EQUITY:      float = 10_000.0
STOP_ATR_MULTIPLE:    float = 2.0
TARGET_ATR_MULTIPLE:  float = 4.0

# Backtest exits at the close once RSI14 rises above this.
RSI_EXIT: float = 70.0

# Walk-forward time exit.
MAX_DAYS_IN_TRADE: int = 20

# Months of history fetched ahead of a walk-forward window for warm-up.
LOOKBACK_MONTHS: int = 6

# Sharpe annualisation factor.
TRADING_DAYS_PER_YEAR: int = 252


# ── Lever runtime ──────────────────────────────────────────────────────────
# Cross-lever invariants checked against the patched view before anything
# is written back. A failing override leaves every lever untouched.
_INVARIANTS = (
    ("0 ≤ NEAR_PCT < APPROACHING_PCT < FAR_PCT",
     lambda v: 0 <= v["NEAR_PCT"] < v["APPROACHING_PCT"] < v["FAR_PCT"]),
    ("0 ≤ RSI_WEAK < RSI_CALM_MAX < RSI_WARM_MAX ≤ 100",
     lambda v: 0 <= v["RSI_WEAK"] < v["RSI_CALM_MAX"] < v["RSI_WARM_MAX"] <= 100),
    ("0 < RSI_EXIT ≤ 100", lambda v: 0 < v["RSI_EXIT"] <= 100),
    ("0 ≤ VOLUME_LOW < VOLUME_HIGH", lambda v: 0 <= v["VOLUME_LOW"] < v["VOLUME_HIGH"]),
    ("0 ≤ MIN_ADJUSTED_EDGE ≤ 100", lambda v: 0 <= v["MIN_ADJUSTED_EDGE"] <= 100),
    ("WATCHLIST_WARN_DAYS ≤ WATCHLIST_EXPIRE_DAYS",
     lambda v: v["WATCHLIST_WARN_DAYS"] <= v["WATCHLIST_EXPIRE_DAYS"]),
    ("EMA_FAST < EMA_SLOW", lambda v: v["EMA_FAST"] < v["EMA_SLOW"]),
    ("STOP_ATR_MULTIPLE > 0 and TARGET_ATR_MULTIPLE > 0",
     lambda v: v["STOP_ATR_MULTIPLE"] > 0 and v["TARGET_ATR_MULTIPLE"] > 0),
)

# Window lengths: anything below one bar has no meaning.
_PERIOD_LEVERS = (
    "EMA_FAST", "EMA_SLOW", "RSI_PERIOD", "ATR_PERIOD", "VOLUME_WINDOW",
    "SLOPE_BARS", "PIVOT_LOOKBACK", "STRUCTURE_WINDOW", "MAX_DAYS_IN_TRADE",
)

_PROFILES_DIR = Path(__file__).resolve().parents[2] / "profiles"


def _coerce(key: str, existing, raw_val):
    """Convert raw_val (CLI text or JSON number) to the lever's declared type."""
    try:
        val = float(raw_val)
    except (TypeError, ValueError):
        raise ValueError(f"apply_levers: '{key}' needs a number, got {raw_val!r}") from None
    if not math.isfinite(val):
        raise ValueError(f"apply_levers: '{key}' must be finite, got {raw_val!r}")
    if isinstance(existing, int):
        if not val.is_integer():
            raise ValueError(f"apply_levers: '{key}' takes whole numbers, got {raw_val!r}")
        val = int(val)
    if val < 0:
        raise ValueError(f"apply_levers: '{key}' cannot be negative, got {raw_val!r}")
    if key in _PERIOD_LEVERS and val < 1:
        raise ValueError(f"apply_levers: '{key}' must be at least 1 bar, got {raw_val!r}")
    return val


def apply_levers(overrides: dict) -> dict:
    """
    Patch watchlist thresholds at runtime, all or nothing.

    Every lever is numeric: ints stay ints (``"40.0"`` is fine, ``"5.5"``
    is not), floats accept any finite number. Negative values are refused
    and the zone/band levers must keep their ordering, e.g.
    NEAR_PCT < APPROACHING_PCT < FAR_PCT.

    Returns the dict of applied overrides (useful for logging).
    Raises ValueError naming the offending key or invariant.

    Example:
        apply_levers({"MIN_ADJUSTED_EDGE": 60, "READY_COOLDOWN_DAYS": "5"})
    """
    m = _sys.modules[__name__]
    applied = {}
    for key, raw_val in overrides.items():
        if key.startswith("_"):
            raise ValueError(f"apply_levers: '{key}' is private, not a lever")
        if not hasattr(m, key):
            raise ValueError(f"apply_levers: unknown lever '{key}'")
        existing = getattr(m, key)
        if callable(existing):
            raise ValueError(f"apply_levers: '{key}' is a function, not a lever")
        if not isinstance(existing, (int, float)):
            raise ValueError(f"apply_levers: '{key}' is not a lever")
        applied[key] = _coerce(key, existing, raw_val)

    view = {k: getattr(m, k) for k in _DEFAULTS}
    view.update(applied)
    for rule, holds in _INVARIANTS:
        if not holds(view):
            raise ValueError(f"apply_levers: {applied} breaks {rule}")

    for key, val in applied.items():
        setattr(m, key, val)
    return applied


def load_profile(profile_name: str) -> dict:
    """
    Apply profiles/<name>.json. Keys starting with "_" are metadata.
    Returns the dict of applied overrides.
    """
    profile_path = _PROFILES_DIR / f"{profile_name}.json"
    if not profile_path.exists():
        available = sorted(p.stem for p in _PROFILES_DIR.glob("*.json"))
        raise FileNotFoundError(
            f"Profile '{profile_name}' not found at {profile_path}. "
            f"Available: {available}"
        )
    with open(profile_path) as f:
        overrides = json.load(f)
    if not isinstance(overrides, dict):
        raise ValueError(f"Profile '{profile_name}' must be a JSON object of levers")
    levers = {k: v for k, v in overrides.items() if not k.startswith("_")}
    try:
        return apply_levers(levers)
    except ValueError as e:
        raise ValueError(f"Profile '{profile_name}': {e}") from e


def reset_levers() -> None:
    """Restore every lever to its import-time default."""
    apply_levers(dict(_DEFAULTS))


# ── Model tag helper ────────────────────────────────────────────────────────
def get_model_tags() -> list:
    """
    Short tags for every lever that differs from its default, sorted.

    Stamped into runner output so a number can always be traced back to the
    config that produced it. An all-default config yields ["default"].
    """
    m = _sys.modules[__name__]
    tags = []
    for key, default in _DEFAULTS.items():
        current = getattr(m, key)
        if current != default:
            tags.append(f"{key.lower()}_{current}")
    return sorted(tags) or ["default"]


_DEFAULTS = {
    k: v for k, v in vars(_sys.modules[__name__]).items()
    if k.isupper() and not k.startswith("_")
}
