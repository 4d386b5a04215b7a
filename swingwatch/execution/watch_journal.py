"""
Watch Journal: Structured log of every watchlist evaluation.

Format: JSON Lines (.jsonl), one JSON object per line.
File: $SWINGWATCH_JOURNAL, default ~/swingwatch/logs/watch_journal.jsonl

Events:
  WATCH_EVALUATED   one evaluate() result for one ticker on one day
  BACKTEST_RUN      summary of a strategy backtest or walk-forward run

The engine itself is stateless. This journal is where the state it needs
on the next day (previous status, last invalidation, days on the
watchlist) is kept; history_for() rebuilds that HistoryContext.
"""
import json
import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..strategy.snapshot import HistoryContext

logger = logging.getLogger(__name__)

JOURNAL_PATH = Path(os.getenv(
    "SWINGWATCH_JOURNAL",
    str(Path.home() / "swingwatch" / "logs" / "watch_journal.jsonl"),
)).expanduser()

# Statuses that take a ticker off the watchlist; the day count restarts after them.
REMOVAL_STATUSES = ("INVALIDATED", "EXPIRED")


class WatchJournal:
    """
    Append-only evaluation journal. Safe for single-process use.
    """

    def __init__(self, path: Path = JOURNAL_PATH):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    # ── Write ─────────────────────────────────────────────────────────

    def _write(self, entry: dict):
        entry.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        with open(self.path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
        logger.info(f"[JOURNAL] {entry['event']} | {entry.get('ticker', '?')} | "
                    f"{entry.get('status', entry.get('notes', ''))}")

    def log_evaluation(self, ticker: str, as_of: date, result, notes: str = ""):
        """Record a WatchEvaluationResult for `ticker` on `as_of`."""
        self._write({
            "event": "WATCH_EVALUATED",
            "ticker": ticker,
            "as_of": as_of.isoformat(),
            **result.to_dict(),
            "notes": notes,
        })

    def log_backtest(self, ticker: str, mode: str, strategy_label: str,
                     summary: Dict[str, Any], model_tags: Optional[List[str]] = None,
                     notes: str = ""):
        self._write({
            "event": "BACKTEST_RUN",
            "ticker": ticker,
            "mode": mode,
            "strategy_label": strategy_label,
            "summary": summary,
            "model_tags": model_tags or [],
            "notes": notes,
        })

    # ── Read ──────────────────────────────────────────────────────────

    def _load_all(self) -> List[dict]:
        if not self.path.exists():
            return []
        entries = []
        with open(self.path) as f:
            for n, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"[JOURNAL] skipping malformed line {n} in {self.path}")
        return entries

    def evaluations(self, ticker: str, before: Optional[date] = None) -> List[dict]:
        """WATCH_EVALUATED entries for ticker, oldest first, optionally strictly before a date."""
        rows = [
            e for e in self._load_all()
            if e.get("event") == "WATCH_EVALUATED" and e.get("ticker") == ticker
        ]
        if before is not None:
            rows = [e for e in rows if date.fromisoformat(e["as_of"]) < before]
        return sorted(rows, key=lambda e: e["as_of"])

    def history_for(self, ticker: str, as_of: date) -> HistoryContext:
        """
        HistoryContext for evaluating `ticker` on `as_of`, from evaluations before it.

        days_in_watchlist counts from the first evaluation after the most
        recent removal (INVALIDATED / EXPIRED); 0 when the last one was a removal.
        """
        rows = self.evaluations(ticker, before=as_of)
        if not rows:
            return HistoryContext()

        last_invalidated = None
        for e in rows:
            if e.get("last_invalidated_date"):
                last_invalidated = date.fromisoformat(e["last_invalidated_date"])

        active_since = None
        for e in rows:
            if e.get("status") in REMOVAL_STATUSES:
                active_since = None
            elif active_since is None:
                active_since = date.fromisoformat(e["as_of"])

        days = (as_of - active_since).days if active_since else 0
        return HistoryContext(
            prev_status=rows[-1].get("status"),
            last_invalidated_date=last_invalidated,
            days_in_watchlist=days,
        )
