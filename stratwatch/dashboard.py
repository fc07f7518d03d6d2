"""Dashboard — registry of live views over the polling + aggregation engine.

Every view is declared as a ``ViewSpec`` (name, period, fetch, whether it
depends on the selected platform) and driven by the same ``PollTask``
primitive.  Switching platform invalidates only the platform-bound views.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from stratwatch.aggregate import Aggregator, FeedSnapshot
from stratwatch.config import Config
from stratwatch.metrics import (
    drawdown_series,
    format_hold,
    hold_seconds,
    paper_metrics_rollup,
    time_ago,
)
from stratwatch.models.feed_config import FeedConfig
from stratwatch.scheduler import Scheduler, ViewState
from stratwatch.sources.api_client import ALL_PLATFORMS, DashboardClient
from stratwatch.sources.feeds import LEGACY_ALERT_RECORDS, LEGACY_LOG_LINES, FeedClient
from stratwatch.sources.models import (
    Summary,
    TradeWithStrategy,
    parse_consensus_alert,
    parse_feed_trade,
)
from stratwatch.views import sort_alerts, sort_feed_trades

logger = logging.getLogger("stratwatch.dashboard")

DOCS_REFRESH_SECONDS = 300.0
HOLD_TICK_SECONDS = 1.0
RELATIVE_TIME_TICK_SECONDS = 10.0


@dataclass(frozen=True)
class ViewSpec:
    """Declarative definition of one polled view.

    ``fetch`` receives the platform selected when the cycle starts and must
    return the view's complete result.
    """

    name: str
    period: float
    fetch: Callable[[str], Awaitable[Any]]
    platform_bound: bool = False


@dataclass(frozen=True)
class PositionsSnapshot:
    positions: list[TradeWithStrategy]
    summary: Summary

    @property
    def total_unrealised(self) -> float:
        return self.summary.unrealised_pnl


class Dashboard:
    """Owns the scheduler, the source clients, and every view's state.

    Args:
        config:      Application ``Config``.
        client:      ``DashboardClient`` for the REST API.
        feed_client: ``FeedClient`` for logs and JSONL feeds.
        feeds:       Monitored feed definitions (see ``load_feeds``).
        scheduler:   Optional ``Scheduler``; a fresh one is created if omitted.
    """

    def __init__(
        self,
        config: Config,
        client: DashboardClient,
        feed_client: FeedClient,
        feeds: list[FeedConfig],
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._feed_client = feed_client
        self._feeds = feeds
        self._scheduler = scheduler or Scheduler()
        self._aggregator = Aggregator(client, feed_client, config.silent_threshold_min)
        self._platform = config.platform
        self._specs = {spec.name: spec for spec in self._build_specs()}
        self._hold_labels: dict[str, str] = {}
        self._relative_labels: dict[str, str] = {}

    # ── View definitions ─────────────────────────────────────────────────

    def _build_specs(self) -> list[ViewSpec]:
        cfg = self._config
        agg = self._aggregator
        return [
            ViewSpec("strategies", cfg.poll_data_seconds,
                     self._client.fetch_strategies_by_platform, platform_bound=True),
            ViewSpec("trades", cfg.poll_data_seconds,
                     agg.fetch_trades_by_platform, platform_bound=True),
            ViewSpec("positions", cfg.poll_data_seconds,
                     self._fetch_positions, platform_bound=True),
            ViewSpec("health", cfg.poll_data_seconds,
                     self._fetch_health, platform_bound=True),
            ViewSpec("equity", cfg.poll_data_seconds, self._fetch_equity),
            ViewSpec("summary", cfg.poll_data_seconds, self._fetch_summary),
            ViewSpec("docs", DOCS_REFRESH_SECONDS,
                     agg.fetch_docs_by_platform, platform_bound=True),
            ViewSpec("logs", cfg.poll_fast_seconds, self._fetch_logs),
            ViewSpec("alerts", cfg.poll_feed_seconds, self._fetch_alerts),
            ViewSpec("feed_trades", cfg.poll_feed_seconds,
                     self._fetch_feed_trades, platform_bound=True),
            ViewSpec("paper_metrics", cfg.poll_status_seconds,
                     self._fetch_paper_metrics, platform_bound=True),
            ViewSpec("status", cfg.poll_status_seconds, self._fetch_status),
            ViewSpec("comparison", cfg.poll_status_seconds,
                     self._fetch_comparison, platform_bound=True),
        ]

    async def _fetch_positions(self, platform: str) -> PositionsSnapshot:
        positions, summary = await asyncio.gather(
            self._aggregator.fetch_open_positions_by_platform(platform),
            self._client.fetch_summary(),
        )
        return PositionsSnapshot(positions=positions, summary=summary)

    async def _fetch_health(self, platform: str):
        return await self._aggregator.fetch_strategy_health(platform)

    async def _fetch_equity(self, platform: str):
        return drawdown_series(await self._client.fetch_equity_curve())

    async def _fetch_summary(self, platform: str) -> Summary:
        return await self._client.fetch_summary()

    async def _fetch_logs(self, platform: str) -> list[str]:
        lines = await self._feed_client.fetch_log_lines(self._config.log_feed_path)
        return lines[-LEGACY_LOG_LINES:]

    async def _fetch_alerts(self, platform: str):
        alerts = await self._feed_client.fetch_jsonl(
            self._config.alerts_feed_path, parse_consensus_alert,
        )
        return sort_alerts(alerts[-LEGACY_ALERT_RECORDS:], "time")

    async def _fetch_feed_trades(self, platform: str):
        trades = await self._feed_client.fetch_jsonl("/data/trades.jsonl", parse_feed_trade)
        if platform != ALL_PLATFORMS:
            trades = [t for t in trades if t.platform == platform]
        return sort_feed_trades(trades, "time")

    async def _fetch_paper_metrics(self, platform: str):
        return paper_metrics_rollup(await self._feed_client.fetch_paper_metrics(), platform)

    async def _fetch_status(self, platform: str) -> FeedSnapshot:
        feed = FeedConfig(
            name="status",
            platform=ALL_PLATFORMS,
            log_path=self._config.log_feed_path,
            alerts_path=self._config.alerts_feed_path,
        )
        return await self._aggregator.fetch_feed_snapshot(feed)

    async def _fetch_comparison(self, platform: str) -> list[FeedSnapshot]:
        return await self._aggregator.fetch_feed_comparison(self._feeds, platform)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def platform(self) -> str:
        return self._platform

    @property
    def view_names(self) -> list[str]:
        return list(self._specs)

    @property
    def mounted(self) -> list[str]:
        return [name for name in self._specs if self._scheduler.get(name) is not None]

    def spec(self, name: str) -> ViewSpec:
        return self._specs[name]

    def state(self, name: str) -> Optional[ViewState]:
        """Committed state of a mounted view, or ``None``."""
        task = self._scheduler.get(name)
        return task.state if task is not None else None

    @property
    def hold_labels(self) -> dict[str, str]:
        """Hold-time labels for open positions, keyed ``strategy:id``."""
        return dict(self._hold_labels)

    @property
    def relative_labels(self) -> dict[str, str]:
        """``time_ago`` labels for the health view, keyed by strategy name."""
        return dict(self._relative_labels)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def mount(self, name: str) -> None:
        """Start polling a view (immediate fetch, then every period)."""
        spec = self._specs.get(name)
        if spec is None:
            raise KeyError(f"Unknown view: {name}")

        async def _fetch():
            return await spec.fetch(self._platform)

        if name == "positions":
            self._scheduler.schedule(
                name, _fetch, spec.period, on_commit=lambda _: self.refresh_hold_labels(),
            )
            self._scheduler.tick(f"{name}:hold", HOLD_TICK_SECONDS, self.refresh_hold_labels)
        elif name == "health":
            self._scheduler.schedule(
                name, _fetch, spec.period, on_commit=lambda _: self.refresh_relative_labels(),
            )
            self._scheduler.tick(
                f"{name}:relative", RELATIVE_TIME_TICK_SECONDS, self.refresh_relative_labels,
            )
        else:
            self._scheduler.schedule(name, _fetch, spec.period)

    def unmount(self, name: str) -> None:
        """Stop polling a view; any in-flight result is discarded."""
        self._scheduler.cancel(name)
        self._scheduler.cancel(f"{name}:hold")
        self._scheduler.cancel(f"{name}:relative")

    def start(self, names: Optional[list[str]] = None) -> None:
        """Mount *names* (default: every view).  Requires a running loop."""
        for name in names or self.view_names:
            self.mount(name)
        logger.info(
            "Dashboard started on platform '%s' with %d view(s).",
            self._platform, len(self.mounted),
        )

    async def stop(self) -> None:
        await self._scheduler.shutdown()

    def set_platform(self, platform: str) -> None:
        """Switch platform and refetch every platform-bound mounted view."""
        if platform != ALL_PLATFORMS and platform not in self._config.platforms:
            raise ValueError(f"Unknown platform: {platform}")
        if platform == self._platform:
            return
        self._platform = platform
        self._hold_labels = {}
        for name, spec in self._specs.items():
            task = self._scheduler.get(name)
            if spec.platform_bound and task is not None:
                task.invalidate()
        logger.info("Platform switched to '%s'.", platform)

    # ── Display ticks ────────────────────────────────────────────────────

    def refresh_hold_labels(self, now: Optional[datetime] = None) -> None:
        """Recompute open-position hold times from the committed positions."""
        state = self.state("positions")
        if state is None or state.data is None:
            return
        now = now or datetime.now(timezone.utc)
        self._hold_labels = {
            f"{p.strategy}:{p.id}": format_hold(hold_seconds(p, now))
            for p in state.data.positions
        }

    def refresh_relative_labels(self, now: Optional[datetime] = None) -> None:
        """Recompute last-signal and heartbeat ``time_ago`` labels."""
        state = self.state("health")
        if state is None or state.data is None:
            return
        now = now or datetime.now(timezone.utc)
        labels: dict[str, str] = {}
        for row in state.data.rows:
            labels[row.strategy.name] = (
                time_ago(row.last_signal_time, now) if row.last_signal_time else "-"
            )
        heartbeat = state.data.service.timestamp
        if heartbeat is not None:
            labels["__heartbeat__"] = time_ago(heartbeat, now)
        self._relative_labels = labels
