"""Legacy single-process backend — /api/status, /api/logs, /api/alerts.

Serves the primary monitor's state, log tail, and alert feed straight from
local files under ``TRADING_BASE``.  An alternate backend for the same
adapter contract that ``FeedClient.fetch_legacy_*`` consumes.
"""

import json
import logging
import pathlib
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from stratwatch.sources.feeds import read_jsonl_tail, read_log_tail
from stratwatch.sources.models import parse_timestamp

logger = logging.getLogger("stratwatch.api.legacy")
router = APIRouter(prefix="/api")

_trading_base: Optional[pathlib.Path] = None  # Set via configure_legacy()


def configure_legacy(trading_base: str | pathlib.Path) -> None:
    """Point the legacy endpoints at a trading data directory."""
    global _trading_base  # noqa: PLW0603
    _trading_base = pathlib.Path(trading_base)


def _path(*parts: str) -> pathlib.Path:
    if _trading_base is None:
        raise FileNotFoundError("Legacy backend not configured (TRADING_BASE)")
    return _trading_base.joinpath("polymarket", *parts)


def format_uptime(seconds: float) -> str:
    """``3725`` → ``"1h 2m 5s"``."""
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours}h {minutes}m {secs}s"


def _format_poll_time(value) -> str:
    if not value:
        return ""
    try:
        ts: datetime = parse_timestamp(value)
    except ValueError:
        return str(value)
    return ts.strftime("%H:%M:%S")


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def legacy_status():
    """Monitor status from ``monitor-state.json``."""
    try:
        state = json.loads(_path("data", "monitor-state.json").read_text(encoding="utf-8"))
        if not isinstance(state, dict):
            raise ValueError("monitor-state.json: expected a JSON object")
        return {
            "active": True,
            "uptime": format_uptime(state.get("uptime_seconds", 0) or 0),
            "pollCount": state.get("poll_count", 0) or 0,
            "extremeCount": state.get("extreme_count", 0) or 0,
            "lastPoll": _format_poll_time(state.get("timestamp")),
        }
    except (OSError, ValueError) as exc:
        logger.error("Status error: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})


@router.get("/logs")
async def legacy_logs():
    """Last 200 non-blank lines of the monitor log."""
    try:
        return {"lines": read_log_tail(_path("logs", "contrarian-monitor.log"))}
    except OSError as exc:
        logger.error("Logs error: %s", exc)
        return {"lines": [f"Error reading logs: {exc}"]}


@router.get("/alerts")
async def legacy_alerts():
    """Last 100 parseable records of the consensus-extremes feed."""
    try:
        return {"alerts": read_jsonl_tail(_path("data", "consensus-extremes.jsonl"))}
    except OSError as exc:
        logger.error("Alerts error: %s", exc)
        return {"alerts": []}
