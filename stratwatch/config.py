"""StratWatch — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass

from dotenv import load_dotenv

from stratwatch.models.feed_config import FeedConfig


_REQUIRED_VARS = [
    "STRATWATCH_API_URL",
]

_WATCH_JSON = pathlib.Path(__file__).resolve().parent.parent / "watch.json"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    api_url: str
    feed_url: str
    trading_base: str
    platform: str
    platforms: tuple[str, ...]
    silent_threshold_min: float
    request_timeout: float
    poll_fast_seconds: float  # log tails
    poll_feed_seconds: float  # alert / trade JSONL feeds
    poll_status_seconds: float  # status, comparison, paper metrics
    poll_data_seconds: float  # trades, positions, health, equity
    log_level: str
    http_port: int
    legacy_api: bool
    log_feed_path: str = "/logs/contrarian-monitor.log"
    alerts_feed_path: str = "/data/consensus-extremes.jsonl"

    @property
    def api_base_url(self) -> str:
        """Return the REST API base URL without a trailing slash."""
        return self.api_url.rstrip("/")

    @property
    def feed_base_url(self) -> str:
        """Return the static feed (logs/data) base URL without a trailing slash."""
        return self.feed_url.rstrip("/")


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    api_url = os.environ["STRATWATCH_API_URL"]
    platforms = tuple(
        p.strip()
        for p in os.environ.get("STRATWATCH_PLATFORMS", "polymarket,hyperliquid").split(",")
        if p.strip()
    )
    platform = os.environ.get("STRATWATCH_PLATFORM", platforms[0] if platforms else "all")
    if platform != "all" and platform not in platforms:
        raise ValueError(
            f"STRATWATCH_PLATFORM '{platform}' is not one of: {', '.join(platforms)}"
        )

    return Config(
        api_url=api_url,
        feed_url=os.environ.get("STRATWATCH_FEED_URL") or api_url,
        trading_base=os.environ.get("TRADING_BASE", "/home/rdent/trading"),
        platform=platform,
        platforms=platforms,
        silent_threshold_min=float(os.environ.get("SILENT_THRESHOLD_MIN", "60")),
        request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "15.0")),
        poll_fast_seconds=float(os.environ.get("POLL_FAST_SECONDS", "2")),
        poll_feed_seconds=float(os.environ.get("POLL_FEED_SECONDS", "3")),
        poll_status_seconds=float(os.environ.get("POLL_STATUS_SECONDS", "5")),
        poll_data_seconds=float(os.environ.get("POLL_DATA_SECONDS", "10")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        http_port=int(os.environ.get("HTTP_PORT", "3000")),
        legacy_api=os.environ.get("LEGACY_API", "false").lower() in _TRUTHY,
        log_feed_path=os.environ.get("LOG_FEED_PATH", "/logs/contrarian-monitor.log"),
        alerts_feed_path=os.environ.get("ALERTS_FEED_PATH", "/data/consensus-extremes.jsonl"),
    )


# ── Feed definitions ────────────────────────────────────────────────────

_DEFAULT_FEEDS: list[dict] = [
    {
        "name": "Pure Contrarian",
        "platform": "polymarket",
        "description": ">72% consensus",
        "log_path": "/logs/contrarian-monitor.log",
        "alerts_path": "/data/consensus-extremes.jsonl",
        "threshold": "72%",
        "expected_win_rate": "54%",
    },
    {
        "name": "Strength-Filtered",
        "platform": "polymarket",
        "description": ">80% consensus only",
        "log_path": "/logs/strength-filtered-monitor.log",
        "alerts_path": "/data/strength-filtered-extremes.jsonl",
        "threshold": "80%",
        "expected_win_rate": "56%",
    },
    {
        "name": "Funding Extreme",
        "platform": "hyperliquid",
        "description": "Funding > 0.12%",
        "log_path": "/logs/funding-monitor.log",
        "alerts_path": "/data/funding-extremes.jsonl",
        "threshold": "0.12%",
        "expected_win_rate": "57%",
    },
    {
        "name": "Funding + OI",
        "platform": "hyperliquid",
        "description": "Funding > 0.15% + OI > 85%",
        "log_path": "/logs/funding-oi-monitor.log",
        "alerts_path": "/data/funding-oi-extremes.jsonl",
        "threshold": "0.15% + OI",
        "expected_win_rate": "60%",
    },
]


def load_feeds(path: pathlib.Path | None = None) -> list[FeedConfig]:
    """Load monitored log/alert feed definitions.

    Reads the ``feeds`` array from ``watch.json``.  Falls back to the
    built-in feed set when the file is absent or defines no feeds.
    """
    path = path or _WATCH_JSON
    entries: list[dict] = []
    if path.exists():
        data = json.loads(path.read_text(encoding="utf-8"))
        entries = data.get("feeds", [])

    if not entries:
        entries = _DEFAULT_FEEDS

    return [
        FeedConfig(
            name=e["name"],
            platform=e["platform"],
            log_path=e["log_path"],
            alerts_path=e["alerts_path"],
            description=e.get("description", ""),
            threshold=e.get("threshold", ""),
            expected_win_rate=e.get("expected_win_rate", ""),
        )
        for e in entries
    ]
