"""Source data models — typed representations of dashboard API and feed records.

Each record type has an explicit decoder.  A decoder raises ``ParseError``
when a required field is missing or has the wrong type; list readers discard
the offending record and keep the rest.
"""

import functools
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Callable, Generic, Optional, TypeVar

from stratwatch.sources.errors import ParseError

logger = logging.getLogger("stratwatch.sources")

T = TypeVar("T")


# ── Decoding helpers ────────────────────────────────────────────────────


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 string into an aware UTC ``datetime``.

    Naive timestamps are assumed to be UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        ts = datetime.fromisoformat(value)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _num(raw: dict, key: str, default: Optional[float] = None) -> float:
    value = raw.get(key, default)
    if value is None or isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return float(value)


def _opt_num(raw: dict, key: str) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return float(value)


def _str(raw: dict, key: str) -> str:
    value = raw[key]
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string, got {value!r}")
    return value


def _opt_str(raw: dict, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string, got {value!r}")
    return value


def _decoder(record_name: str):
    """Wrap a decoder so every validation failure becomes a ``ParseError``."""

    def wrap(fn: Callable[[dict], T]) -> Callable[[object], T]:
        @functools.wraps(fn)
        def decode(raw):
            if not isinstance(raw, dict):
                raise ParseError(f"{record_name} record must be an object, got {type(raw).__name__}")
            try:
                return fn(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError(f"Invalid {record_name} record: {exc}") from exc

        return decode

    return wrap


# ── API records ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Strategy:
    """Cumulative statistics snapshot for one strategy."""

    name: str
    enabled: bool
    total_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    total_pnl: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    expectancy: float = 0.0
    avg_hold_minutes: float = 0.0
    exchanges: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Trade:
    """A single trade as reported by a strategy process."""

    id: int
    asset: str
    exchange: str
    direction: str  # "LONG" or "SHORT"
    entry_price: float
    entry_time: datetime
    quantity: float
    realised_pnl: float
    status: str  # "OPEN", "CLOSED", ...
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    def with_strategy(self, strategy: str) -> "TradeWithStrategy":
        """Return a copy tagged with its owning strategy name."""
        values = {f.name: getattr(self, f.name) for f in fields(Trade)}
        return TradeWithStrategy(**values, strategy=strategy)


@dataclass(frozen=True)
class TradeWithStrategy(Trade):
    """A ``Trade`` annotated with the strategy that produced it.

    Only created during aggregation; never sent back to a source.
    """

    strategy: str = ""


@dataclass(frozen=True)
class Signal:
    """A strategy recommendation at a point in time."""

    id: int
    timestamp: datetime
    asset: str
    exchange: str
    direction: str
    confidence: float
    entry_price: Optional[float] = None
    acted_on: bool = False
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class EquityCurvePoint:
    """One sample of the aggregate equity curve."""

    timestamp: datetime
    total_equity: float
    unrealised_pnl: float
    realised_pnl: float
    open_positions: int


@dataclass(frozen=True)
class Summary:
    """Aggregate account snapshot, independent of per-strategy data."""

    total_equity: float
    unrealised_pnl: float
    realised_pnl: float
    open_positions: int
    daily_pnl: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    expectancy: float
    avg_hold_minutes: float
    profit_factor: float
    last_update: Optional[datetime] = None


@dataclass(frozen=True)
class HealthStatus:
    """Service-level heartbeat reported by ``/api/health``."""

    status: str
    timestamp: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.status == "healthy"


@dataclass(frozen=True)
class StrategyDocs:
    """Description and thesis metadata for a strategy."""

    name: str
    description: str = ""
    thesis: str = ""
    extra: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Page(Generic[T]):
    """A paginated list response (trades, signals)."""

    items: list[T]
    total: int
    limit: int
    offset: int


@_decoder("strategy")
def parse_strategy(raw: dict) -> Strategy:
    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ValueError(f"'enabled' must be a boolean, got {enabled!r}")
    exchanges = raw.get("exchanges") or []
    if isinstance(exchanges, str) or not all(isinstance(e, str) for e in exchanges):
        raise ValueError(f"'exchanges' must be a list of strings, got {exchanges!r}")
    return Strategy(
        name=_str(raw, "name"),
        enabled=enabled,
        total_trades=int(_num(raw, "totalTrades", 0)),
        win_rate=_num(raw, "winRate", 0.0),
        avg_win=_num(raw, "avgWin", 0.0),
        avg_loss=_num(raw, "avgLoss", 0.0),
        total_pnl=_num(raw, "totalPnl", 0.0),
        profit_factor=_num(raw, "profitFactor", 0.0),
        sharpe_ratio=_num(raw, "sharpeRatio", 0.0),
        sortino_ratio=_num(raw, "sortinoRatio", 0.0),
        max_drawdown=_num(raw, "maxDrawdown", 0.0),
        expectancy=_num(raw, "expectancy", 0.0),
        avg_hold_minutes=_num(raw, "avgHoldMinutes", 0.0),
        exchanges=frozenset(exchanges),
    )


@_decoder("trade")
def parse_trade(raw: dict) -> Trade:
    status = _str(raw, "status")
    exit_price = _opt_num(raw, "exitPrice")
    exit_time = raw.get("exitTime")
    if status == "OPEN" and (exit_price is not None or exit_time is not None):
        raise ValueError("OPEN trade must not carry exit price or exit time")
    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError(f"'metadata' must be an object, got {metadata!r}")
    return Trade(
        id=int(raw["id"]),
        asset=_str(raw, "asset"),
        exchange=_str(raw, "exchange"),
        direction=_str(raw, "direction"),
        entry_price=_num(raw, "entryPrice"),
        entry_time=parse_timestamp(raw["entryTime"]),
        quantity=_num(raw, "quantity"),
        realised_pnl=_num(raw, "realisedPnl", 0.0),
        status=status,
        exit_price=exit_price,
        exit_time=parse_timestamp(exit_time) if exit_time is not None else None,
        exit_reason=_opt_str(raw, "exitReason"),
        metadata=metadata,
    )


@_decoder("signal")
def parse_signal(raw: dict) -> Signal:
    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError(f"'metadata' must be an object, got {metadata!r}")
    return Signal(
        id=int(raw["id"]),
        timestamp=parse_timestamp(raw["timestamp"]),
        asset=_str(raw, "asset"),
        exchange=_str(raw, "exchange"),
        direction=_str(raw, "direction"),
        confidence=_num(raw, "confidence", 0.0),
        entry_price=_opt_num(raw, "entryPrice"),
        acted_on=bool(raw.get("actedOn", False)),
        metadata=metadata,
    )


@_decoder("equity point")
def parse_equity_point(raw: dict) -> EquityCurvePoint:
    return EquityCurvePoint(
        timestamp=parse_timestamp(raw["timestamp"]),
        total_equity=_num(raw, "totalEquity"),
        unrealised_pnl=_num(raw, "unrealisedPnl", 0.0),
        realised_pnl=_num(raw, "realisedPnl", 0.0),
        open_positions=int(_num(raw, "openPositions", 0)),
    )


@_decoder("summary")
def parse_summary(raw: dict) -> Summary:
    last_update = raw.get("lastUpdate")
    return Summary(
        total_equity=_num(raw, "totalEquity"),
        unrealised_pnl=_num(raw, "unrealisedPnl", 0.0),
        realised_pnl=_num(raw, "realisedPnl", 0.0),
        open_positions=int(_num(raw, "openPositions", 0)),
        daily_pnl=_num(raw, "dailyPnl", 0.0),
        sharpe_ratio=_num(raw, "sharpeRatio", 0.0),
        sortino_ratio=_num(raw, "sortinoRatio", 0.0),
        max_drawdown=_num(raw, "maxDrawdown", 0.0),
        expectancy=_num(raw, "expectancy", 0.0),
        avg_hold_minutes=_num(raw, "avgHoldMinutes", 0.0),
        profit_factor=_num(raw, "profitFactor", 0.0),
        last_update=parse_timestamp(last_update) if last_update else None,
    )


@_decoder("health")
def parse_health(raw: dict) -> HealthStatus:
    timestamp = raw.get("timestamp")
    return HealthStatus(
        status=_str(raw, "status"),
        timestamp=parse_timestamp(timestamp) if timestamp else None,
    )


@_decoder("strategy docs")
def parse_docs(raw: dict) -> StrategyDocs:
    known = {"name", "description", "thesis"}
    return StrategyDocs(
        name=_str(raw, "name"),
        description=_opt_str(raw, "description") or "",
        thesis=_opt_str(raw, "thesis") or "",
        extra={k: v for k, v in raw.items() if k not in known},
    )


# ── Feed records ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConsensusAlert:
    """One extreme-consensus alert line from a monitor's JSONL feed."""

    timestamp: datetime
    market_title: str
    market_id: str
    consensus_outcome: str
    consensus_probability: float
    contrarian_outcome: str
    contrarian_probability: float
    strength: str


@dataclass(frozen=True)
class FeedTrade:
    """One paper-trade line from ``/data/trades.jsonl``."""

    timestamp: datetime
    strategy: str
    platform: str
    market_title: Optional[str] = None
    asset: Optional[str] = None
    entry_odds_consensus: Optional[float] = None
    entry_odds_contrarian: Optional[float] = None
    entry_funding_pct: Optional[float] = None
    result: Optional[str] = None
    pnl: Optional[float] = None
    hold_time_seconds: Optional[float] = None


@dataclass(frozen=True)
class PaperMetrics:
    """Per-strategy paper-trading roll-up from ``/data/metrics.json``."""

    wins: int
    losses: int
    total_trades: int
    win_rate_pct: float
    total_pnl: float
    avg_pnl_per_trade: float
    sharpe_ratio: float


@dataclass(frozen=True)
class ServiceStatus:
    """Monitor process status served by the legacy ``/api/status``."""

    active: bool
    uptime: str
    poll_count: int
    extreme_count: int
    last_poll: str


@_decoder("service status")
def parse_service_status(raw: dict) -> ServiceStatus:
    return ServiceStatus(
        active=bool(raw.get("active", False)),
        uptime=str(raw.get("uptime", "")),
        poll_count=int(_num(raw, "pollCount", 0)),
        extreme_count=int(_num(raw, "extremeCount", 0)),
        last_poll=str(raw.get("lastPoll", "")),
    )


@_decoder("alert")
def parse_consensus_alert(raw: dict) -> ConsensusAlert:
    return ConsensusAlert(
        timestamp=parse_timestamp(raw["timestamp"]),
        market_title=_str(raw, "market_title"),
        market_id=str(raw["market_id"]),
        consensus_outcome=_str(raw, "consensus_outcome"),
        consensus_probability=_num(raw, "consensus_probability"),
        contrarian_outcome=_str(raw, "contrarian_outcome"),
        contrarian_probability=_num(raw, "contrarian_probability"),
        strength=_str(raw, "strength"),
    )


@_decoder("feed trade")
def parse_feed_trade(raw: dict) -> FeedTrade:
    return FeedTrade(
        timestamp=parse_timestamp(raw["timestamp"]),
        strategy=_str(raw, "strategy"),
        platform=_str(raw, "platform"),
        market_title=_opt_str(raw, "market_title"),
        asset=_opt_str(raw, "asset"),
        entry_odds_consensus=_opt_num(raw, "entry_odds_consensus"),
        entry_odds_contrarian=_opt_num(raw, "entry_odds_contrarian"),
        entry_funding_pct=_opt_num(raw, "entry_funding_pct"),
        result=_opt_str(raw, "result"),
        pnl=_opt_num(raw, "pnl"),
        hold_time_seconds=_opt_num(raw, "hold_time_seconds"),
    )


@_decoder("paper metrics")
def parse_paper_metrics(raw: dict) -> PaperMetrics:
    return PaperMetrics(
        wins=int(_num(raw, "wins", 0)),
        losses=int(_num(raw, "losses", 0)),
        total_trades=int(_num(raw, "total_trades", 0)),
        win_rate_pct=_num(raw, "win_rate_pct", 0.0),
        total_pnl=_num(raw, "total_pnl", 0.0),
        avg_pnl_per_trade=_num(raw, "avg_pnl_per_trade", 0.0),
        sharpe_ratio=_num(raw, "sharpe_ratio", 0.0),
    )


# ── List decoding ───────────────────────────────────────────────────────


def decode_many(items, decoder: Callable[[object], T], source: str) -> list[T]:
    """Decode every record in *items*, discarding the ones that fail.

    Each ``ParseError`` is logged and skipped so one corrupt record does not
    hide the rest.
    """
    if not isinstance(items, list):
        raise ParseError(f"{source}: expected a list, got {type(items).__name__}")
    records: list[T] = []
    for raw in items:
        try:
            records.append(decoder(raw))
        except ParseError as exc:
            logger.warning("%s: skipping record (%s)", source, exc)
    return records
