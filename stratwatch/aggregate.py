"""Aggregation/join stage — per-strategy fan-out with partial-failure isolation.

Each join obtains the strategy set, issues one sub-request per strategy
concurrently, tags the returned records with the owning strategy, and
flattens.  A failing sub-request is logged and replaced by an empty result
for that strategy only; the strategy list itself failing fails the cycle.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from stratwatch.health import HealthReport, build_health_row
from stratwatch.models.feed_config import FeedConfig
from stratwatch.sources.api_client import ALL_PLATFORMS, DashboardClient, filter_by_platform
from stratwatch.sources.errors import SourceError
from stratwatch.sources.feeds import FeedClient, count_poll_markers, split_lines
from stratwatch.sources.models import Signal, Strategy, StrategyDocs, TradeWithStrategy

logger = logging.getLogger("stratwatch.aggregate")

T = TypeVar("T")


async def fan_out(
    strategies: list[Strategy],
    fetch: Callable[[Strategy], Awaitable[T]],
    empty: Callable[[], T],
    resource: str,
) -> list[T]:
    """Run *fetch* for every strategy concurrently.

    Returns results in strategy order.  A strategy whose sub-request raises
    ``SourceError`` contributes ``empty()`` instead.
    """

    async def _one(strategy: Strategy) -> T:
        try:
            return await fetch(strategy)
        except SourceError as exc:
            logger.warning(
                "Strategy '%s': %s fetch failed, using empty result (%s)",
                strategy.name, resource, exc,
            )
            return empty()

    return list(await asyncio.gather(*(_one(s) for s in strategies)))


@dataclass(frozen=True)
class FeedSnapshot:
    """Derived activity metrics for one monitored log/alert feed."""

    feed: FeedConfig
    poll_count: int
    extreme_count: int
    last_line: str
    error: Optional[str] = None


class Aggregator:
    """Joins per-strategy sub-resources into merged, tagged record sets.

    Args:
        client:      ``DashboardClient`` (or a compatible mock).
        feed_client: ``FeedClient`` for log/alert feeds, optional.
        silent_threshold_min: Silence threshold for health alerts.
    """

    def __init__(
        self,
        client: DashboardClient,
        feed_client: Optional[FeedClient] = None,
        silent_threshold_min: float = 60.0,
    ) -> None:
        self._client = client
        self._feeds = feed_client
        self._silent_threshold = silent_threshold_min

    async def _strategies(self, platform: str) -> list[Strategy]:
        return filter_by_platform(await self._client.fetch_strategies(), platform)

    # ── Trades ───────────────────────────────────────────────────────────

    async def _tagged_trades(
        self,
        platform: str,
        status: Optional[str],
    ) -> list[TradeWithStrategy]:
        strategies = await self._strategies(platform)

        async def _fetch(s: Strategy) -> list[TradeWithStrategy]:
            page = await self._client.fetch_strategy_trades(s.name, status=status)
            return [t.with_strategy(s.name) for t in page.items]

        per_strategy = await fan_out(strategies, _fetch, list, "trades")
        return [t for trades in per_strategy for t in trades]

    async def fetch_all_trades(self) -> list[TradeWithStrategy]:
        """Every trade of every strategy, tagged by strategy."""
        return await self._tagged_trades(ALL_PLATFORMS, status=None)

    async def fetch_trades_by_platform(self, platform: str) -> list[TradeWithStrategy]:
        """Every trade of the strategies on *platform*."""
        return await self._tagged_trades(platform, status=None)

    async def fetch_open_positions_by_platform(self, platform: str) -> list[TradeWithStrategy]:
        """Open trades (``status=OPEN``) of every strategy on *platform*."""
        return await self._tagged_trades(platform, status="OPEN")

    # ── Health ───────────────────────────────────────────────────────────

    async def fetch_strategy_health(
        self,
        platform: str = ALL_PLATFORMS,
        now: Optional[datetime] = None,
    ) -> HealthReport:
        """Strategies + service heartbeat, then signals per strategy.

        Alerts are evaluated against *now* (defaults to the time the join
        completes).
        """
        strategies, service = await asyncio.gather(
            self._strategies(platform),
            self._client.fetch_health(),
        )

        async def _signals(s: Strategy) -> list[Signal]:
            return (await self._client.fetch_strategy_signals(s.name)).items

        signal_lists = await fan_out(strategies, _signals, list, "signals")
        now = now or datetime.now(timezone.utc)
        rows = [
            build_health_row(s, signals, now, self._silent_threshold)
            for s, signals in zip(strategies, signal_lists)
        ]
        return HealthReport(service=service, rows=rows)

    # ── Docs ─────────────────────────────────────────────────────────────

    async def fetch_docs_by_platform(self, platform: str) -> list[StrategyDocs]:
        """Docs for each strategy on *platform*; failed lookups are skipped."""
        strategies = await self._strategies(platform)

        async def _docs(s: Strategy) -> list[StrategyDocs]:
            return [await self._client.fetch_strategy_docs(s.name)]

        per_strategy = await fan_out(strategies, _docs, list, "docs")
        return [d for docs in per_strategy for d in docs]

    # ── Feeds ────────────────────────────────────────────────────────────

    async def fetch_feed_snapshot(self, feed: FeedConfig) -> FeedSnapshot:
        """Poll count, alert count, and last log line for one feed."""
        if self._feeds is None:
            raise RuntimeError("Aggregator has no feed client")
        log_text, alerts_text = await asyncio.gather(
            self._feeds.fetch_text(feed.log_path),
            self._feeds.fetch_text(feed.alerts_path),
        )
        lines = split_lines(log_text)
        return FeedSnapshot(
            feed=feed,
            poll_count=count_poll_markers(log_text),
            extreme_count=len(split_lines(alerts_text)),
            last_line=lines[-1].strip() if lines else "No data yet",
        )

    async def fetch_feed_comparison(
        self,
        feeds: list[FeedConfig],
        platform: str = ALL_PLATFORMS,
    ) -> list[FeedSnapshot]:
        """Snapshots for every feed on *platform*; a failing feed reports its error."""
        selected = [f for f in feeds if platform == ALL_PLATFORMS or f.platform == platform]

        async def _one(feed: FeedConfig) -> FeedSnapshot:
            try:
                return await self.fetch_feed_snapshot(feed)
            except SourceError as exc:
                logger.warning("Feed '%s' fetch failed (%s)", feed.name, exc)
                return FeedSnapshot(feed, 0, 0, "No data yet", error=str(exc))

        return list(await asyncio.gather(*(_one(f) for f in selected)))
