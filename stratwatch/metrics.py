"""Derived metrics — pure functions over source records, no I/O.

Everything here takes ``now`` explicitly so results are reproducible and
display ticks can recompute elapsed values without refetching.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from stratwatch.sources.models import EquityCurvePoint, PaperMetrics, Signal, Trade

EQUITY_RANGES: dict[str, Optional[timedelta]] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "1d": timedelta(days=1),
    "all": None,
}


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ── Signal cadence ──────────────────────────────────────────────────────


def signals_per_hour(signals: list[Signal]) -> float:
    """Average signal rate over the span covered by *signals*.

    Returns 0.0 for fewer than 2 signals or a non-positive span (clock
    skew).  The span runs from the oldest to the newest timestamp in the
    list, so the result does not depend on the order the source used.
    """
    if len(signals) < 2:
        return 0.0
    timestamps = [s.timestamp for s in signals]
    span_hrs = (max(timestamps) - min(timestamps)).total_seconds() / 3600.0
    if span_hrs <= 0:
        return 0.0
    return len(signals) / span_hrs


def newest_signal_time(signals: list[Signal]) -> Optional[datetime]:
    """Timestamp of the most recent signal, or ``None``."""
    if not signals:
        return None
    return max(s.timestamp for s in signals)


# ── Relative time ───────────────────────────────────────────────────────


def time_ago(timestamp: datetime, now: datetime) -> str:
    """Format ``now - timestamp`` for humans, e.g. ``"2h 5m ago"``."""
    ms = (now - timestamp).total_seconds() * 1000.0
    if ms <= 0:
        return "just now"
    secs = _round_half_up(ms / 1000.0)
    if secs < 60:
        return f"{secs}s ago"
    mins = _round_half_up(secs / 60.0)
    if mins < 60:
        return f"{mins}m ago"
    hrs, rem_mins = divmod(mins, 60)
    return f"{hrs}h {rem_mins}m ago" if rem_mins > 0 else f"{hrs}h ago"


# ── Equity drawdown ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class EquityRow:
    """An equity-curve point augmented with its drawdown from peak."""

    timestamp: datetime
    total_equity: float
    unrealised_pnl: float
    realised_pnl: float
    open_positions: int
    drawdown: float  # percent, always <= 0


def drawdown_series(points: list[EquityCurvePoint]) -> list[EquityRow]:
    """Attach percent drawdown from the running equity peak to each point.

    *points* must be ordered by non-decreasing timestamp.
    """
    rows: list[EquityRow] = []
    peak = -math.inf
    for p in points:
        if p.total_equity > peak:
            peak = p.total_equity
        dd = (p.total_equity - peak) / peak * 100.0 if peak > 0 else 0.0
        rows.append(
            EquityRow(
                timestamp=p.timestamp,
                total_equity=p.total_equity,
                unrealised_pnl=p.unrealised_pnl,
                realised_pnl=p.realised_pnl,
                open_positions=p.open_positions,
                drawdown=dd,
            )
        )
    return rows


def equity_window(rows: list[EquityRow], range_key: str) -> list[EquityRow]:
    """Restrict *rows* to the trailing window ending at the newest point."""
    if range_key not in EQUITY_RANGES:
        raise ValueError(f"Unknown equity range: {range_key}")
    span = EQUITY_RANGES[range_key]
    if span is None or not rows:
        return list(rows)
    cutoff = rows[-1].timestamp - span
    return [r for r in rows if r.timestamp >= cutoff]


# ── Hold duration ───────────────────────────────────────────────────────


def hold_seconds(trade: Trade, now: datetime) -> float:
    """Seconds a trade has been (or was) held.

    Open positions count up to *now*; closed trades use their exit time.
    A closed trade without an exit time reports 0.
    """
    if trade.is_open:
        return (now - trade.entry_time).total_seconds()
    if trade.exit_time is None:
        return 0.0
    return (trade.exit_time - trade.entry_time).total_seconds()


def format_hold(seconds: float) -> str:
    """Compact hold-time label: ``"45s"``, ``"12m"``, ``"3h 20m"``."""
    if seconds <= 0:
        return "-"
    secs = _round_half_up(seconds)
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{_round_half_up(secs / 60.0)}m"
    h = secs // 3600
    m = _round_half_up((secs % 3600) / 60.0)
    return f"{h}h {m}m" if m > 0 else f"{h}h"


# ── Roll-ups ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradeStats:
    count: int
    wins: int
    losses: int
    total_pnl: float


def trade_stats(trades: list[Trade]) -> TradeStats:
    """Win/loss counts and net P&L over a (filtered) trade list."""
    return TradeStats(
        count=len(trades),
        wins=sum(1 for t in trades if t.realised_pnl > 0),
        losses=sum(1 for t in trades if t.realised_pnl < 0),
        total_pnl=sum(t.realised_pnl for t in trades),
    )


@dataclass(frozen=True)
class PaperRollup:
    strategies: dict[str, PaperMetrics]
    total_trades: int
    total_pnl: float
    total_wins: int
    win_rate_pct: float


def paper_metrics_rollup(metrics: dict[str, PaperMetrics], platform: str) -> PaperRollup:
    """Aggregate paper-trading metrics for one platform.

    ``metrics.json`` keys are prefixed by platform (``polymarket_pure``),
    so the subset is selected by key prefix.  ``"all"`` keeps everything.
    """
    subset = {
        k: m for k, m in metrics.items()
        if platform == "all" or k.startswith(platform)
    }
    total_trades = sum(m.total_trades for m in subset.values())
    total_wins = sum(m.wins for m in subset.values())
    return PaperRollup(
        strategies=subset,
        total_trades=total_trades,
        total_pnl=sum(m.total_pnl for m in subset.values()),
        total_wins=total_wins,
        win_rate_pct=(total_wins / total_trades * 100.0) if total_trades > 0 else 0.0,
    )
