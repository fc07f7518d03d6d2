"""Tests for stratwatch.config — environment loading, validation, feed definitions."""

import json

import pytest

from stratwatch.config import Config, load_config, load_feeds
from stratwatch.models.feed_config import FeedConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure StratWatch env vars are cleared between tests."""
    for var in [
        "STRATWATCH_API_URL",
        "STRATWATCH_FEED_URL",
        "STRATWATCH_PLATFORM",
        "STRATWATCH_PLATFORMS",
        "TRADING_BASE",
        "SILENT_THRESHOLD_MIN",
        "REQUEST_TIMEOUT",
        "POLL_FAST_SECONDS",
        "POLL_FEED_SECONDS",
        "POLL_STATUS_SECONDS",
        "POLL_DATA_SECONDS",
        "LOG_LEVEL",
        "HTTP_PORT",
        "LEGACY_API",
        "LOG_FEED_PATH",
        "ALERTS_FEED_PATH",
    ]:
        monkeypatch.delenv(var, raising=False)


def _set_required(monkeypatch):
    monkeypatch.setenv("STRATWATCH_API_URL", "http://localhost:3001/")


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch):
        _set_required(monkeypatch)
        cfg = load_config()
        assert cfg.api_url == "http://localhost:3001/"
        assert cfg.api_base_url == "http://localhost:3001"

    def test_defaults(self, monkeypatch):
        _set_required(monkeypatch)
        cfg = load_config()
        assert cfg.feed_base_url == "http://localhost:3001"
        assert cfg.platforms == ("polymarket", "hyperliquid")
        assert cfg.platform == "polymarket"
        assert cfg.silent_threshold_min == 60.0
        assert cfg.request_timeout == 15.0
        assert cfg.poll_fast_seconds == 2.0
        assert cfg.poll_feed_seconds == 3.0
        assert cfg.poll_status_seconds == 5.0
        assert cfg.poll_data_seconds == 10.0
        assert cfg.log_level == "INFO"
        assert cfg.http_port == 3000
        assert cfg.legacy_api is False
        assert cfg.log_feed_path == "/logs/contrarian-monitor.log"
        assert cfg.alerts_feed_path == "/data/consensus-extremes.jsonl"

    def test_config_missing_var(self, tmp_path):
        with pytest.raises(ValueError, match="STRATWATCH_API_URL"):
            load_config(env_path=str(tmp_path / "nonexistent.env"))

    def test_overrides(self, monkeypatch):
        _set_required(monkeypatch)
        monkeypatch.setenv("STRATWATCH_FEED_URL", "http://feeds:3000")
        monkeypatch.setenv("STRATWATCH_PLATFORM", "hyperliquid")
        monkeypatch.setenv("POLL_DATA_SECONDS", "30")
        monkeypatch.setenv("LEGACY_API", "yes")
        cfg = load_config()
        assert cfg.feed_base_url == "http://feeds:3000"
        assert cfg.platform == "hyperliquid"
        assert cfg.poll_data_seconds == 30.0
        assert cfg.legacy_api is True

    def test_all_platform_accepted(self, monkeypatch):
        _set_required(monkeypatch)
        monkeypatch.setenv("STRATWATCH_PLATFORM", "all")
        assert load_config().platform == "all"

    def test_unknown_platform_rejected(self, monkeypatch):
        _set_required(monkeypatch)
        monkeypatch.setenv("STRATWATCH_PLATFORM", "kalshi")
        with pytest.raises(ValueError, match="kalshi"):
            load_config()

    def test_config_is_frozen(self, monkeypatch):
        _set_required(monkeypatch)
        cfg = load_config()
        with pytest.raises(AttributeError):
            cfg.platform = "all"  # type: ignore[misc]
        assert isinstance(cfg, Config)


class TestLoadFeeds:
    def test_fallback_when_file_missing(self, tmp_path):
        feeds = load_feeds(tmp_path / "watch.json")
        assert [f.name for f in feeds] == [
            "Pure Contrarian",
            "Strength-Filtered",
            "Funding Extreme",
            "Funding + OI",
        ]
        assert {f.platform for f in feeds} == {"polymarket", "hyperliquid"}

    def test_reads_watch_json(self, tmp_path):
        path = tmp_path / "watch.json"
        path.write_text(json.dumps({
            "feeds": [
                {
                    "name": "Custom",
                    "platform": "polymarket",
                    "log_path": "/logs/custom.log",
                    "alerts_path": "/data/custom.jsonl",
                    "threshold": "90%",
                }
            ]
        }))
        feeds = load_feeds(path)
        assert feeds == [
            FeedConfig(
                name="Custom",
                platform="polymarket",
                log_path="/logs/custom.log",
                alerts_path="/data/custom.jsonl",
                threshold="90%",
            )
        ]

    def test_empty_feeds_array_falls_back(self, tmp_path):
        path = tmp_path / "watch.json"
        path.write_text(json.dumps({"feeds": []}))
        assert len(load_feeds(path)) == 4
