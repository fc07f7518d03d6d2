"""Sort/filter engine over merged, derived record sets.

Filters are independent pure predicates combined with logical AND, so the
order they are applied in never changes the result set.  Sorting is stable.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from stratwatch.metrics import TradeStats, hold_seconds, trade_stats
from stratwatch.sources.models import ConsensusAlert, FeedTrade, TradeWithStrategy

ASC = "asc"
DESC = "desc"

PNL_ALL = "all"
PNL_WINNERS = "winners"
PNL_LOSERS = "losers"

Predicate = Callable[[TradeWithStrategy], bool]


# ── Sorting ─────────────────────────────────────────────────────────────

TRADE_SORT_KEYS: dict[str, Callable[[TradeWithStrategy, datetime], object]] = {
    "entry_time": lambda t, now: t.entry_time.timestamp(),
    "strategy": lambda t, now: t.strategy.casefold(),
    "asset": lambda t, now: t.asset.casefold(),
    "direction": lambda t, now: t.direction.casefold(),
    "realised_pnl": lambda t, now: t.realised_pnl,
    "hold": lambda t, now: hold_seconds(t, now) if not t.is_open else 0.0,
}

# Keys that open newest/largest-first when first selected.
_DESC_DEFAULT_KEYS = {"entry_time"}


def default_direction(key: str) -> str:
    return DESC if key in _DESC_DEFAULT_KEYS else ASC


@dataclass(frozen=True)
class SortState:
    """Current sort column and direction."""

    key: str = "entry_time"
    direction: str = DESC

    def toggle(self, key: str) -> "SortState":
        """Re-selecting the current key flips direction; a new key resets it."""
        if key not in TRADE_SORT_KEYS:
            raise ValueError(f"Unknown sort key: {key}")
        if key == self.key:
            return SortState(key, ASC if self.direction == DESC else DESC)
        return SortState(key, default_direction(key))


def sort_records(records: list, key_fn: Callable[[object], object], direction: str) -> list:
    """Stable sort of *records* by *key_fn*.

    Equal keys keep their input order in both directions.
    """
    if direction not in (ASC, DESC):
        raise ValueError(f"Unknown sort direction: {direction}")
    return sorted(records, key=key_fn, reverse=direction == DESC)


def sort_trades(
    trades: list[TradeWithStrategy],
    state: SortState,
    now: datetime,
) -> list[TradeWithStrategy]:
    key = TRADE_SORT_KEYS[state.key]
    return sort_records(trades, lambda t: key(t, now), state.direction)


# ── Filtering ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradeFilter:
    """Trade explorer filter selection; ``None`` / ``"all"`` disables a filter."""

    strategy: Optional[str] = None
    asset: Optional[str] = None
    pnl: str = PNL_ALL
    date_from: Optional[date] = None
    date_to: Optional[date] = None  # inclusive: covers the whole day

    def predicates(self) -> list[Predicate]:
        preds: list[Predicate] = []
        if self.strategy and self.strategy != "all":
            preds.append(strategy_is(self.strategy))
        if self.asset and self.asset != "all":
            preds.append(asset_is(self.asset))
        if self.pnl == PNL_WINNERS:
            preds.append(is_winner)
        elif self.pnl == PNL_LOSERS:
            preds.append(is_loser)
        elif self.pnl != PNL_ALL:
            raise ValueError(f"Unknown P&L filter: {self.pnl}")
        if self.date_from or self.date_to:
            preds.append(entry_between(self.date_from, self.date_to))
        return preds


def strategy_is(name: str) -> Predicate:
    return lambda t: t.strategy == name


def asset_is(asset: str) -> Predicate:
    return lambda t: t.asset == asset


def is_winner(t: TradeWithStrategy) -> bool:
    return t.realised_pnl > 0


def is_loser(t: TradeWithStrategy) -> bool:
    return t.realised_pnl < 0


def entry_between(date_from: Optional[date], date_to: Optional[date]) -> Predicate:
    """Entry time within ``[date_from 00:00, date_to + 1 day)`` UTC."""
    lower = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    upper = (
        datetime.combine(date_to, time.min, tzinfo=timezone.utc) + timedelta(days=1)
        if date_to else None
    )

    def pred(t: TradeWithStrategy) -> bool:
        if lower is not None and t.entry_time < lower:
            return False
        if upper is not None and t.entry_time >= upper:
            return False
        return True

    return pred


def apply_filters(records: list, predicates: list[Callable[[object], bool]]) -> list:
    """Keep the records that satisfy every predicate."""
    return [r for r in records if all(p(r) for p in predicates)]


# ── Trade explorer view ─────────────────────────────────────────────────

EMPTY_TRADES_MESSAGE = "No trades match the current filters."


@dataclass(frozen=True)
class TradeView:
    rows: list[TradeWithStrategy]
    stats: TradeStats
    strategy_keys: list[str] = field(default_factory=list)
    asset_keys: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def empty_message(self) -> Optional[str]:
        return EMPTY_TRADES_MESSAGE if self.is_empty else None


def build_trade_view(
    trades: list[TradeWithStrategy],
    flt: TradeFilter,
    sort: SortState,
    now: datetime,
) -> TradeView:
    """Filter then sort the merged trade set for the explorer."""
    rows = sort_trades(apply_filters(trades, flt.predicates()), sort, now)
    return TradeView(
        rows=rows,
        stats=trade_stats(rows),
        strategy_keys=sorted({t.strategy for t in trades}),
        asset_keys=sorted({t.asset for t in trades}),
    )


# ── Feed orderings ──────────────────────────────────────────────────────

_STRENGTH_ORDER = {"STRONG": 0, "MODERATE": 1}
_RESULT_ORDER = {"WIN": 0, "LOSS": 1}


def sort_alerts(alerts: list[ConsensusAlert], by: str = "time") -> list[ConsensusAlert]:
    """Order alert-feed records by ``time``, ``strength``, or ``consensus``."""
    if by == "time":
        return sort_records(alerts, lambda a: a.timestamp, DESC)
    if by == "strength":
        return sort_records(alerts, lambda a: _STRENGTH_ORDER.get(a.strength, 2), ASC)
    if by == "consensus":
        return sort_records(alerts, lambda a: a.consensus_probability, DESC)
    raise ValueError(f"Unknown alert ordering: {by}")


def sort_feed_trades(trades: list[FeedTrade], by: str = "time") -> list[FeedTrade]:
    """Order paper-trade feed records by ``time``, ``pnl``, or ``result``."""
    if by == "time":
        return sort_records(trades, lambda t: t.timestamp, DESC)
    if by == "pnl":
        return sort_records(trades, lambda t: t.pnl or 0.0, DESC)
    if by == "result":
        return sort_records(trades, lambda t: _RESULT_ORDER.get(t.result or "OPEN", 2), ASC)
    raise ValueError(f"Unknown feed trade ordering: {by}")
