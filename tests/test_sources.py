"""Tests for stratwatch.sources — REST and feed adapters with mocked HTTP responses."""

import json

import httpx
import pytest

from stratwatch.aggregate import Aggregator
from stratwatch.config import Config
from stratwatch.sources.api_client import DashboardClient, filter_by_platform
from stratwatch.sources.errors import NetworkError, ParseError
from stratwatch.sources.feeds import (
    FeedClient,
    classify_log_line,
    count_poll_markers,
    parse_jsonl,
    read_jsonl_tail,
    read_log_tail,
)
from stratwatch.sources.models import (
    Page,
    Strategy,
    Trade,
    parse_consensus_alert,
    parse_strategy,
    parse_trade,
)


def _make_config(**overrides) -> Config:
    defaults = dict(
        api_url="http://api.test",
        feed_url="http://feeds.test",
        trading_base="/tmp/trading",
        platform="polymarket",
        platforms=("polymarket", "hyperliquid"),
        silent_threshold_min=60.0,
        request_timeout=5.0,
        poll_fast_seconds=2.0,
        poll_feed_seconds=3.0,
        poll_status_seconds=5.0,
        poll_data_seconds=10.0,
        log_level="WARNING",
        http_port=3000,
        legacy_api=False,
    )
    defaults.update(overrides)
    return Config(**defaults)


def _patch_get(monkeypatch, routes: dict, captured: list | None = None):
    """Route ``httpx.AsyncClient.get`` to canned responses keyed by URL."""

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        if captured is not None:
            captured.append((url, params))
        status, body = routes.get(url, (404, ""))
        request = httpx.Request("GET", url)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body, request=request)
        return httpx.Response(status, text=body, request=request)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)


# ── Mock API responses ──────────────────────────────────────────────────

MOCK_STRATEGIES_RESPONSE = {
    "strategies": [
        {
            "name": "Pure Contrarian",
            "enabled": True,
            "totalTrades": 40,
            "winRate": 55.0,
            "totalPnl": 312.5,
            "maxDrawdown": 2.1,
            "exchanges": ["polymarket"],
        },
        {
            "name": "Funding Extreme",
            "enabled": True,
            "totalTrades": 12,
            "winRate": 58.3,
            "totalPnl": -40.0,
            "maxDrawdown": 3.4,
            "exchanges": ["hyperliquid"],
        },
        {"name": "Broken", "enabled": "yes"},
    ]
}

MOCK_TRADES_RESPONSE = {
    "trades": [
        {
            "id": 1,
            "asset": "BTC",
            "exchange": "hyperliquid",
            "direction": "LONG",
            "entryPrice": 64000.0,
            "entryTime": "2026-03-01T10:00:00Z",
            "quantity": 0.1,
            "realisedPnl": 0.0,
            "status": "OPEN",
        },
        {
            "id": 2,
            "asset": "ETH",
            "exchange": "hyperliquid",
            "direction": "SHORT",
            "entryPrice": 3100.0,
            "entryTime": "2026-03-01T08:00:00Z",
            "exitPrice": 3050.0,
            "exitTime": "2026-03-01T09:30:00Z",
            "exitReason": "take_profit",
            "quantity": 1.0,
            "realisedPnl": 50.0,
            "status": "CLOSED",
        },
    ],
    "total": 2,
    "limit": 50,
    "offset": 0,
}


# ── Record decoders ─────────────────────────────────────────────────────


class TestDecoders:
    def test_strategy_fields(self):
        s = parse_strategy(MOCK_STRATEGIES_RESPONSE["strategies"][0])
        assert isinstance(s, Strategy)
        assert s.name == "Pure Contrarian"
        assert s.enabled is True
        assert s.total_trades == 40
        assert s.total_pnl == pytest.approx(312.5)
        assert s.exchanges == frozenset({"polymarket"})
        assert s.sharpe_ratio == 0.0

    def test_strategy_bad_enabled_raises(self):
        with pytest.raises(ParseError):
            parse_strategy({"name": "x", "enabled": "yes"})

    def test_non_object_raises(self):
        with pytest.raises(ParseError):
            parse_strategy(["not", "a", "dict"])

    def test_trade_timestamps_are_utc(self):
        t = parse_trade(MOCK_TRADES_RESPONSE["trades"][1])
        assert isinstance(t, Trade)
        assert t.entry_time.utcoffset().total_seconds() == 0
        assert t.exit_price == pytest.approx(3050.0)
        assert t.is_open is False

    def test_open_trade_with_exit_fields_rejected(self):
        raw = dict(MOCK_TRADES_RESPONSE["trades"][0], exitPrice=65000.0)
        with pytest.raises(ParseError, match="OPEN"):
            parse_trade(raw)

    def test_missing_required_field(self):
        raw = dict(MOCK_TRADES_RESPONSE["trades"][0])
        del raw["entryTime"]
        with pytest.raises(ParseError):
            parse_trade(raw)

    def test_with_strategy_tags_copy(self):
        t = parse_trade(MOCK_TRADES_RESPONSE["trades"][0])
        tagged = t.with_strategy("Funding Extreme")
        assert tagged.strategy == "Funding Extreme"
        assert tagged.id == t.id
        assert tagged.entry_time == t.entry_time


class TestPlatformFilter:
    def test_filters_by_exchange_membership(self):
        strategies = [
            Strategy("A", True, exchanges=frozenset({"polymarket"})),
            Strategy("B", True, exchanges=frozenset({"hyperliquid"})),
            Strategy("C", True, exchanges=frozenset({"polymarket", "hyperliquid"})),
        ]
        assert [s.name for s in filter_by_platform(strategies, "polymarket")] == ["A", "C"]
        assert [s.name for s in filter_by_platform(strategies, "all")] == ["A", "B", "C"]


# ── DashboardClient ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_strategies_skips_bad_records(monkeypatch):
    """One corrupt record is dropped; the rest are returned."""
    _patch_get(monkeypatch, {"http://api.test/api/strategies": (200, MOCK_STRATEGIES_RESPONSE)})
    client = DashboardClient(_make_config())

    strategies = await client.fetch_strategies()
    assert [s.name for s in strategies] == ["Pure Contrarian", "Funding Extreme"]


@pytest.mark.asyncio
async def test_fetch_strategies_by_platform(monkeypatch):
    _patch_get(monkeypatch, {"http://api.test/api/strategies": (200, MOCK_STRATEGIES_RESPONSE)})
    client = DashboardClient(_make_config())

    strategies = await client.fetch_strategies_by_platform("hyperliquid")
    assert [s.name for s in strategies] == ["Funding Extreme"]


@pytest.mark.asyncio
async def test_fetch_trades_with_status(monkeypatch):
    """Strategy names are URL-encoded and the status filter is passed through."""
    captured = []
    _patch_get(
        monkeypatch,
        {"http://api.test/api/strategies/Funding%20Extreme/trades": (200, MOCK_TRADES_RESPONSE)},
        captured,
    )
    client = DashboardClient(_make_config())

    page = await client.fetch_strategy_trades("Funding Extreme", status="OPEN")
    assert isinstance(page, Page)
    assert page.total == 2
    assert page.limit == 50
    assert [t.id for t in page.items] == [1, 2]
    assert captured == [
        ("http://api.test/api/strategies/Funding%20Extreme/trades", {"status": "OPEN"})
    ]


@pytest.mark.asyncio
async def test_non_success_status_raises_network_error(monkeypatch):
    _patch_get(monkeypatch, {"http://api.test/api/summary": (503, "down")})
    client = DashboardClient(_make_config())

    with pytest.raises(NetworkError) as exc_info:
        await client.fetch_summary()
    assert exc_info.value.status == 503
    assert "(503)" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_error_raises_network_error(monkeypatch):
    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        raise httpx.ConnectError("connection refused", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    client = DashboardClient(_make_config())

    with pytest.raises(NetworkError) as exc_info:
        await client.fetch_health()
    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_corrupt_body_encoding_raises_network_error(monkeypatch):
    """Request-level failures outside the transport layer are normalised too."""

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        raise httpx.DecodingError("bad gzip", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    client = DashboardClient(_make_config())

    with pytest.raises(NetworkError) as exc_info:
        await client.fetch_summary()
    assert exc_info.value.status is None
    assert "bad gzip" in str(exc_info.value)


@pytest.mark.asyncio
async def test_invalid_json_raises_parse_error(monkeypatch):
    _patch_get(monkeypatch, {"http://api.test/api/health": (200, "<html>oops</html>")})
    client = DashboardClient(_make_config())

    with pytest.raises(ParseError):
        await client.fetch_health()


@pytest.mark.asyncio
async def test_equity_curve_and_health(monkeypatch):
    _patch_get(monkeypatch, {
        "http://api.test/api/equity-curve": (200, {"data": [
            {"timestamp": "2026-03-01T00:00:00Z", "totalEquity": 1000.0},
            {"timestamp": "2026-03-01T01:00:00Z", "totalEquity": 1010.0, "openPositions": 2},
        ]}),
        "http://api.test/api/health": (200, {"status": "healthy", "timestamp": "2026-03-01T01:00:00Z"}),
    })
    client = DashboardClient(_make_config())

    points = await client.fetch_equity_curve()
    assert [p.total_equity for p in points] == [1000.0, 1010.0]
    assert points[1].open_positions == 2

    health = await client.fetch_health()
    assert health.ok is True


@pytest.mark.asyncio
async def test_undecodable_strategy_response_excluded_from_join(monkeypatch):
    """One strategy's corrupt body drops only that strategy from the merged trades."""
    strategies = {"strategies": [
        {"name": "A", "enabled": True, "exchanges": ["hyperliquid"]},
        {"name": "B", "enabled": True, "exchanges": ["hyperliquid"]},
    ]}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        request = httpx.Request("GET", url)
        if url.endswith("/api/strategies"):
            return httpx.Response(200, json=strategies, request=request)
        if url.endswith("/api/strategies/B/trades"):
            raise httpx.DecodingError("bad gzip", request=request)
        return httpx.Response(200, json=MOCK_TRADES_RESPONSE, request=request)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    aggregator = Aggregator(DashboardClient(_make_config()))

    trades = await aggregator.fetch_all_trades()
    assert [(t.strategy, t.id) for t in trades] == [("A", 1), ("A", 2)]


# ── Feed helpers ────────────────────────────────────────────────────────


class TestLineHelpers:
    def test_parse_jsonl_skips_bad_lines(self):
        good = {
            "timestamp": "2026-03-01T10:00:00Z",
            "market_title": "Will X happen?",
            "market_id": "0xabc",
            "consensus_outcome": "Yes",
            "consensus_probability": 0.81,
            "contrarian_outcome": "No",
            "contrarian_probability": 0.19,
            "strength": "STRONG",
        }
        text = "\n".join([
            json.dumps(good),
            "{not json",
            json.dumps({"timestamp": "2026-03-01T10:00:00Z"}),
            "",
            json.dumps(dict(good, market_id="0xdef")),
        ])
        alerts = parse_jsonl(text, parse_consensus_alert, "alerts.jsonl")
        assert [a.market_id for a in alerts] == ["0xabc", "0xdef"]

    def test_count_poll_markers(self):
        text = "Poll #1 ok\nnoise\nPoll #2 ok\nPoll #\n"
        assert count_poll_markers(text) == 2

    @pytest.mark.parametrize("line, level", [
        ("❌ request failed", "error"),
        ("ERROR: boom", "error"),
        ("🚨 CONSENSUS EXTREME 82%", "alert"),
        ("✅ poll complete", "success"),
        ("⚠️ slow response", "warning"),
        ("Poll #4", "info"),
    ])
    def test_classify_log_line(self, line, level):
        assert classify_log_line(line) == level

    def test_read_log_tail(self, tmp_path):
        path = tmp_path / "monitor.log"
        path.write_text("\n".join(f"line {i}" for i in range(10)) + "\n\n")
        assert read_log_tail(path, limit=3) == ["line 7", "line 8", "line 9"]

    def test_read_jsonl_tail(self, tmp_path):
        path = tmp_path / "alerts.jsonl"
        path.write_text('{"a": 1}\nbroken\n[1, 2]\n{"a": 2}\n{"a": 3}\n')
        assert read_jsonl_tail(path, limit=2) == [{"a": 2}, {"a": 3}]

    def test_read_jsonl_tail_missing_file(self, tmp_path):
        assert read_jsonl_tail(tmp_path / "nope.jsonl") == []


# ── FeedClient ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_text_404_is_empty(monkeypatch):
    """A feed file that does not exist yet reads as empty, not as an error."""
    _patch_get(monkeypatch, {})
    feeds = FeedClient(_make_config())

    assert await feeds.fetch_text("/logs/new-monitor.log") == ""
    assert await feeds.fetch_log_lines("/logs/new-monitor.log") == []


@pytest.mark.asyncio
async def test_fetch_text_other_errors_raise(monkeypatch):
    _patch_get(monkeypatch, {"http://feeds.test/logs/m.log": (500, "boom")})
    feeds = FeedClient(_make_config())

    with pytest.raises(NetworkError):
        await feeds.fetch_text("/logs/m.log")


@pytest.mark.asyncio
async def test_fetch_paper_metrics(monkeypatch):
    _patch_get(monkeypatch, {"http://feeds.test/data/metrics.json": (200, {
        "polymarket_pure": {"wins": 6, "losses": 4, "total_trades": 10, "total_pnl": 42.0},
        "polymarket_bad": {"wins": "many"},
    })})
    feeds = FeedClient(_make_config())

    metrics = await feeds.fetch_paper_metrics()
    assert list(metrics) == ["polymarket_pure"]
    assert metrics["polymarket_pure"].wins == 6


@pytest.mark.asyncio
async def test_fetch_legacy_status_and_logs(monkeypatch):
    _patch_get(monkeypatch, {
        "http://feeds.test/api/status": (200, {
            "active": True, "uptime": "1h 2m 5s", "pollCount": 41,
            "extremeCount": 3, "lastPoll": "10:00:00",
        }),
        "http://feeds.test/api/logs": (200, {"lines": ["a", "b"]}),
    })
    feeds = FeedClient(_make_config())

    status = await feeds.fetch_legacy_status()
    assert status.poll_count == 41
    assert status.extreme_count == 3
    assert await feeds.fetch_legacy_logs() == ["a", "b"]
