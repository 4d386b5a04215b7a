"""
Watch Status Engine

Turns one bar's WatchEvaluationInput into a watch status with an auditable
reason. Pure: no I/O, no clock, no hidden state. Everything it needs to
remember across days (previous invalidation, days on the watchlist) comes
in through HistoryContext and goes back out on the result.

GATE CHAIN (strict order, earlier gates terminate):

  1. Liquidity       avg turnover below MIN_AVG_TURNOVER → INVALIDATED
  2. Trend health    EMA stack, slopes, higher low; shallow dips below
                     EMA20 survive only as a reclaim inside a healthy trend
  3. Proximity       distance from EMA20 → FAR … TOO_DEEP
  4. Momentum        RSI14 → WEAK / CALM / WARM / HOT
  5. Volume          relative volume → LOW / NORMAL / HIGH
  6. Status rules    STATUS_RULES, folded in order; the LAST matching
                     rule wins
  7. Edge gate       ready signals need a trustworthy backtest edge
  8. Cooldown        ready signals need distance from the last invalidation
  9. Time decay      stale non-ready entries expire; older ones warn

Diagnostics (distance, RSI zone, volume state) are populated on every
result, whichever gate decided it.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, Tuple

from . import watch_config as _cfg
from .snapshot import WatchEvaluationInput

logger = logging.getLogger(__name__)


class WatchStatus(Enum):
    READY          = "READY"
    BREAKOUT_READY = "BREAKOUT_READY"
    BREAKOUT_ONLY  = "BREAKOUT_ONLY"
    WATCH_RECLAIM  = "WATCH_RECLAIM"
    APPROACHING    = "APPROACHING"
    WAIT_PULLBACK  = "WAIT_PULLBACK"
    INVALIDATED    = "INVALIDATED"
    EXPIRED        = "EXPIRED"


class WatchAction(Enum):
    PREPARE_ENTRY          = "PREPARE_ENTRY"
    PREPARE_BREAKOUT_ENTRY = "PREPARE_BREAKOUT_ENTRY"
    WAIT_FOR_CONFIRMATION  = "WAIT_FOR_CONFIRMATION"
    WAIT_FOR_RECLAIM       = "WAIT_FOR_RECLAIM"
    WAIT                   = "WAIT"
    REMOVE_FROM_WATCHLIST  = "REMOVE_FROM_WATCHLIST"


class Proximity(Enum):
    FAR              = "FAR"
    APPROACHING_ZONE = "APPROACHING_ZONE"
    NEAR             = "NEAR"
    PERFECT          = "PERFECT"
    RECLAIM          = "RECLAIM"
    TOO_DEEP         = "TOO_DEEP"


class Momentum(Enum):
    WEAK = "WEAK"
    CALM = "CALM"
    WARM = "WARM"
    HOT  = "HOT"


class VolumeState(Enum):
    LOW    = "LOW"
    NORMAL = "NORMAL"
    HIGH   = "HIGH"


READY_STATUSES = (WatchStatus.READY, WatchStatus.BREAKOUT_READY)


@dataclass(frozen=True)
class Diagnostics:
    dist_ema20_pct: float        # rounded to 2 decimals
    rsi_zone:       Momentum
    volume_state:   VolumeState

    def to_dict(self) -> dict:
        return {
            "dist_ema20_pct": self.dist_ema20_pct,
            "rsi_zone":       self.rsi_zone.value,
            "volume_state":   self.volume_state.value,
        }


@dataclass(frozen=True)
class Classification:
    status: WatchStatus
    action: WatchAction
    reason: str


@dataclass(frozen=True)
class WatchEvaluationResult:
    status:                WatchStatus
    action:                WatchAction
    reason:                str
    diagnostics:           Diagnostics
    last_invalidated_date: Optional[date] = None
    time_warning:          Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status in READY_STATUSES

    def to_dict(self) -> dict:
        return {
            "status":                self.status.value,
            "action":                self.action.value,
            "reason":                self.reason,
            "diagnostics":           self.diagnostics.to_dict(),
            "last_invalidated_date": (self.last_invalidated_date.isoformat()
                                      if self.last_invalidated_date else None),
            "time_warning":          self.time_warning,
        }

    def __str__(self) -> str:
        return f"{self.status.value} / {self.action.value}: {self.reason}"


# ── Classifiers ────────────────────────────────────────────────────────────
def dist_ema20_pct(close: float, ema20: float) -> float:
    return (close - ema20) / ema20 * 100


def classify_proximity(dist_pct: float) -> Proximity:
    if dist_pct > _cfg.FAR_PCT:
        return Proximity.FAR
    if dist_pct > _cfg.APPROACHING_PCT:
        return Proximity.APPROACHING_ZONE
    if dist_pct > _cfg.NEAR_PCT:
        return Proximity.NEAR
    if dist_pct >= 0:
        return Proximity.PERFECT
    if dist_pct >= -_cfg.RECLAIM_DEPTH_PCT:
        return Proximity.RECLAIM
    return Proximity.TOO_DEEP


def classify_momentum(rsi14: float) -> Momentum:
    if rsi14 < _cfg.RSI_WEAK:
        return Momentum.WEAK
    if rsi14 <= _cfg.RSI_CALM_MAX:
        return Momentum.CALM
    if rsi14 <= _cfg.RSI_WARM_MAX:
        return Momentum.WARM
    return Momentum.HOT


def classify_volume(rel_vol: float) -> VolumeState:
    if rel_vol < _cfg.VOLUME_LOW:
        return VolumeState.LOW
    if rel_vol > _cfg.VOLUME_HIGH:
        return VolumeState.HIGH
    return VolumeState.NORMAL


def adjusted_edge_score(edge_score: float, total_trades: int) -> float:
    """
    Edge scaled down for thin samples: edge × sqrt(min(trades / full, 1)).

    Non-decreasing in total_trades; equals edge_score once trades reach
    FULL_CONFIDENCE_TRADES.
    """
    confidence = min(max(total_trades, 0) / _cfg.FULL_CONFIDENCE_TRADES, 1.0)
    return edge_score * math.sqrt(confidence)


# ── Status rules ───────────────────────────────────────────────────────────
@dataclass(frozen=True)
class RuleContext:
    proximity: Proximity
    momentum:  Momentum
    dist_pct:  float
    close:     float
    ema20:     float
    rsi14:     float
    rel_vol:   float
    high_20d:  Optional[float]


@dataclass(frozen=True)
class StatusRule:
    name:    str
    applies: Callable[[RuleContext], bool]
    resolve: Callable[[RuleContext], Classification]


def _pullback_rule(ctx: RuleContext, label: str) -> Classification:
    if ctx.rel_vol >= _cfg.READY_MIN_REL_VOL:
        return Classification(
            WatchStatus.READY, WatchAction.PREPARE_ENTRY,
            f"{label} pullback ({ctx.dist_pct:+.2f}% from EMA20) with calm momentum "
            f"(RSI {ctx.rsi14:.0f}) and volume {ctx.rel_vol:.2f}x",
        )
    return Classification(
        WatchStatus.APPROACHING, WatchAction.WAIT,
        f"{label} pullback but low volume ({ctx.rel_vol:.2f}x, needs "
        f"≥{_cfg.READY_MIN_REL_VOL:.1f}x)",
    )


def _reclaim_rule(ctx: RuleContext) -> Classification:
    if ctx.rel_vol >= _cfg.READY_MIN_REL_VOL:
        return Classification(
            WatchStatus.WATCH_RECLAIM, WatchAction.WAIT_FOR_RECLAIM,
            f"Dipped {ctx.dist_pct:.2f}% below EMA20 in a healthy trend; "
            f"watch for a close back above (volume {ctx.rel_vol:.2f}x)",
        )
    return Classification(
        WatchStatus.APPROACHING, WatchAction.WAIT,
        f"Reclaim attempt on low volume ({ctx.rel_vol:.2f}x, needs "
        f"≥{_cfg.READY_MIN_REL_VOL:.1f}x)",
    )


def _breakout_rule(ctx: RuleContext) -> Classification:
    level = ctx.high_20d if ctx.high_20d is not None else ctx.ema20
    level_name = "20-day high" if ctx.high_20d is not None else "EMA20"
    if ctx.close > level and ctx.rel_vol >= _cfg.BREAKOUT_MIN_REL_VOL:
        return Classification(
            WatchStatus.BREAKOUT_READY, WatchAction.PREPARE_BREAKOUT_ENTRY,
            f"Breakout: close {ctx.close:.2f} above {level_name} {level:.2f} with hot "
            f"momentum (RSI {ctx.rsi14:.0f}) and volume {ctx.rel_vol:.2f}x",
        )
    return Classification(
        WatchStatus.BREAKOUT_ONLY, WatchAction.WAIT_FOR_CONFIRMATION,
        f"Momentum too hot for a pullback entry (RSI {ctx.rsi14:.0f}); wait for a close "
        f"above {level_name} {level:.2f} on ≥{_cfg.BREAKOUT_MIN_REL_VOL:.1f}x volume",
    )


def _too_deep_or_weak(ctx: RuleContext) -> Classification:
    if ctx.proximity is Proximity.TOO_DEEP:
        reason = f"Pullback too deep ({ctx.dist_pct:.2f}% below EMA20)"
    else:
        reason = f"Momentum too weak (RSI {ctx.rsi14:.0f})"
    return Classification(WatchStatus.WAIT_PULLBACK, WatchAction.WAIT, reason)


# Ordered lowest → highest priority. Every matching rule replaces the
# classification built so far.
STATUS_RULES: Tuple[StatusRule, ...] = (
    StatusRule(
        "far",
        lambda c: c.proximity is Proximity.FAR,
        lambda c: Classification(
            WatchStatus.WAIT_PULLBACK, WatchAction.WAIT,
            f"Too extended from EMA20 ({c.dist_pct:.2f}%)",
        ),
    ),
    StatusRule(
        "approaching",
        lambda c: c.proximity is Proximity.APPROACHING_ZONE,
        lambda c: Classification(
            WatchStatus.APPROACHING, WatchAction.WAIT,
            f"Drifting toward the pullback zone ({c.dist_pct:.2f}% from EMA20)",
        ),
    ),
    StatusRule(
        "perfect_calm",
        lambda c: c.proximity is Proximity.PERFECT and c.momentum is Momentum.CALM,
        lambda c: _pullback_rule(c, "Perfect"),
    ),
    StatusRule(
        "near_calm",
        lambda c: c.proximity is Proximity.NEAR and c.momentum is Momentum.CALM,
        lambda c: _pullback_rule(c, "Near"),
    ),
    StatusRule(
        "reclaim_calm",
        lambda c: c.proximity is Proximity.RECLAIM and c.momentum is Momentum.CALM,
        _reclaim_rule,
    ),
    StatusRule(
        "hot_breakout",
        lambda c: c.momentum is Momentum.HOT,
        _breakout_rule,
    ),
    StatusRule(
        "too_deep_or_weak",
        lambda c: c.proximity is Proximity.TOO_DEEP or c.momentum is Momentum.WEAK,
        _too_deep_or_weak,
    ),
)


def resolve_status(ctx: RuleContext) -> Classification:
    """Fold STATUS_RULES over a WAIT_PULLBACK default; last match wins."""
    current = Classification(
        WatchStatus.WAIT_PULLBACK, WatchAction.WAIT,
        f"No setup: {ctx.proximity.value.lower()} EMA20 with "
        f"{ctx.momentum.value.lower()} momentum (RSI {ctx.rsi14:.0f})",
    )
    for rule in STATUS_RULES:
        if rule.applies(ctx):
            current = rule.resolve(ctx)
    return current


# ── Post-resolution gates ──────────────────────────────────────────────────
def _downgrade(reason: str) -> Classification:
    return Classification(WatchStatus.APPROACHING, WatchAction.WAIT, reason)


def edge_gate(cls: Classification, edge_score: Optional[float],
              total_trades: Optional[int]) -> Classification:
    if cls.status not in READY_STATUSES:
        return cls
    if total_trades is not None and total_trades < _cfg.MIN_BACKTEST_TRADES:
        return _downgrade(
            f"Setup OK but too few backtest trades ({total_trades}, "
            f"needs ≥{_cfg.MIN_BACKTEST_TRADES})"
        )
    if edge_score is not None and total_trades is not None:
        adjusted = adjusted_edge_score(edge_score, total_trades)
        if adjusted < _cfg.MIN_ADJUSTED_EDGE:
            return _downgrade(
                f"Setup OK but confidence-adjusted edge too low ({adjusted:.1f}, "
                f"needs ≥{_cfg.MIN_ADJUSTED_EDGE:.0f})"
            )
    elif edge_score is not None and edge_score < _cfg.MIN_ADJUSTED_EDGE:
        return _downgrade(
            f"Setup OK but edge too low ({edge_score:.1f}, "
            f"needs ≥{_cfg.MIN_ADJUSTED_EDGE:.0f})"
        )
    return cls


def days_since_invalidation(last_invalidated: Optional[date], as_of: date) -> int:
    if last_invalidated is None:
        return _cfg.NEVER_INVALIDATED_DAYS
    return (as_of - last_invalidated).days


def cooldown_gate(cls: Classification, last_invalidated: Optional[date],
                  as_of: date) -> Classification:
    if cls.status not in READY_STATUSES:
        return cls
    required = (_cfg.READY_COOLDOWN_DAYS if cls.status is WatchStatus.READY
                else _cfg.BREAKOUT_COOLDOWN_DAYS)
    days = days_since_invalidation(last_invalidated, as_of)
    if days < required:
        return _downgrade(
            f"Too soon after invalidation ({days} days ago, needs {required})"
        )
    return cls


def time_decay_gate(cls: Classification,
                    days_in_watchlist: int) -> Tuple[Classification, Optional[str]]:
    """Returns (classification, time_warning)."""
    if cls.status in READY_STATUSES:
        return cls, None
    if days_in_watchlist >= _cfg.WATCHLIST_EXPIRE_DAYS:
        return Classification(
            WatchStatus.EXPIRED, WatchAction.REMOVE_FROM_WATCHLIST,
            f"No setup after {days_in_watchlist} days on the watchlist; removed",
        ), None
    if days_in_watchlist >= _cfg.WATCHLIST_WARN_DAYS:
        return cls, (
            f"{days_in_watchlist} days on the watchlist without a ready signal; "
            f"auto-removal at {_cfg.WATCHLIST_EXPIRE_DAYS} days"
        )
    return cls, None


# ── Public entry point ─────────────────────────────────────────────────────
def evaluate(inp: WatchEvaluationInput) -> WatchEvaluationResult:
    """
    Classify one bar. Raises ContractViolation on missing/non-finite
    indicators; never raises for well-formed input.
    """
    inp.validate()
    snap = inp.snapshot
    rel_vol = inp.volume.rel_vol
    avg_turnover = inp.volume.avg_turnover

    dist = dist_ema20_pct(snap.close, snap.ema20)
    proximity = classify_proximity(dist)
    momentum = classify_momentum(snap.rsi14)
    volume_state = classify_volume(rel_vol)
    diagnostics = Diagnostics(round(dist, 2), momentum, volume_state)

    def _invalidated(reason: str) -> WatchEvaluationResult:
        logger.debug(f"evaluate {inp.as_of}: INVALIDATED ({reason})")
        return WatchEvaluationResult(
            status=WatchStatus.INVALIDATED,
            action=WatchAction.REMOVE_FROM_WATCHLIST,
            reason=reason,
            diagnostics=diagnostics,
            last_invalidated_date=inp.as_of,
        )

    # 1. Liquidity
    if avg_turnover is not None and avg_turnover < _cfg.MIN_AVG_TURNOVER:
        return _invalidated(
            f"Illiquid: 20-day avg turnover {avg_turnover:,.0f} below "
            f"{_cfg.MIN_AVG_TURNOVER:,.0f} (short {_cfg.MIN_AVG_TURNOVER - avg_turnover:,.0f})"
        )

    # 2. Trend health
    base_trend_ok = (
        snap.ema20 > snap.ema50
        and snap.ema50_slope > 0
        and snap.ema20_slope > 0
        and inp.structure.higher_low
    )
    reclaim_zone = -_cfg.RECLAIM_DEPTH_PCT <= dist < 0
    trend_ok = snap.close > snap.ema20 and base_trend_ok
    if not trend_ok and not reclaim_zone:
        return _invalidated(
            "Trend broken (needs close > EMA20 > EMA50, rising EMAs and a higher low)"
        )
    if reclaim_zone and not base_trend_ok:
        return _invalidated(
            f"Below EMA20 ({dist:.2f}%) without a healthy underlying trend to reclaim"
        )

    # 3–6. Classification + status rules
    ctx = RuleContext(
        proximity=proximity,
        momentum=momentum,
        dist_pct=dist,
        close=snap.close,
        ema20=snap.ema20,
        rsi14=snap.rsi14,
        rel_vol=rel_vol,
        high_20d=inp.structure.high_20d,
    )
    cls = resolve_status(ctx)

    # 7–9. Gates
    cls = edge_gate(cls, inp.robustness.edge_score, inp.robustness.total_trades)
    cls = cooldown_gate(cls, inp.history.last_invalidated_date, inp.as_of)
    cls, time_warning = time_decay_gate(cls, inp.history.days_in_watchlist)

    logger.debug(f"evaluate {inp.as_of}: {cls.status.value} ({cls.reason})")
    return WatchEvaluationResult(
        status=cls.status,
        action=cls.action,
        reason=cls.reason,
        diagnostics=diagnostics,
        last_invalidated_date=inp.history.last_invalidated_date,
        time_warning=time_warning,
    )
