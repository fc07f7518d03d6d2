"""Auxiliary feed sources — plain-text logs, JSONL feeds, legacy endpoints.

Line-oriented sources are decoded one line at a time: a malformed or
schema-invalid line is logged and discarded, never aborting the read.
"""

import json
import logging
import pathlib
import re
from collections import deque
from typing import Callable, TypeVar

from stratwatch.config import Config
from stratwatch.sources.api_client import get_json, get_response
from stratwatch.sources.errors import NetworkError, ParseError
from stratwatch.sources.models import (
    ConsensusAlert,
    PaperMetrics,
    ServiceStatus,
    decode_many,
    parse_consensus_alert,
    parse_paper_metrics,
    parse_service_status,
)

logger = logging.getLogger("stratwatch.sources")

T = TypeVar("T")

_POLL_MARKER = re.compile(r"Poll #\d+")

LEGACY_LOG_LINES = 200
LEGACY_ALERT_RECORDS = 100


# ── Pure line helpers ───────────────────────────────────────────────────


def split_lines(text: str) -> list[str]:
    """Split newline-delimited text, dropping blank lines."""
    return [line for line in text.split("\n") if line.strip()]


def parse_jsonl(text: str, decoder: Callable[[object], T], source: str) -> list[T]:
    """Decode one JSON object per line, skipping lines that fail."""
    records: list[T] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            records.append(decoder(json.loads(line)))
        except ValueError as exc:
            logger.warning("%s:%d: skipping malformed line (%s)", source, lineno, exc)
        except ParseError as exc:
            logger.warning("%s:%d: skipping invalid record (%s)", source, lineno, exc)
    return records


def count_poll_markers(log_text: str) -> int:
    """Number of ``Poll #N`` markers in a monitor log."""
    return len(_POLL_MARKER.findall(log_text))


def classify_log_line(line: str) -> str:
    """Map a monitor log line to a display level."""
    if "❌" in line or "ERROR" in line:
        return "error"
    if "🚨" in line or "CONSENSUS" in line:
        return "alert"
    if "✅" in line or "SUCCESS" in line:
        return "success"
    if "⚠️" in line or "WARNING" in line:
        return "warning"
    return "info"


# ── Local files (legacy single-process backend) ─────────────────────────


def read_log_tail(path: pathlib.Path, limit: int = LEGACY_LOG_LINES) -> list[str]:
    """Return the last *limit* non-blank lines of a log file."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        tail = deque((line.rstrip("\n") for line in f if line.strip()), maxlen=limit)
    return list(tail)


def read_jsonl_tail(path: pathlib.Path, limit: int = LEGACY_ALERT_RECORDS) -> list[dict]:
    """Return the last *limit* parseable JSON objects of a JSONL file.

    A missing file yields an empty list.
    """
    if not path.exists():
        return []
    text = path.read_text(encoding="utf-8", errors="replace")
    records = parse_jsonl(text, _json_object, str(path))
    return records[-limit:]


def _json_object(raw) -> dict:
    if not isinstance(raw, dict):
        raise ParseError(f"expected a JSON object, got {type(raw).__name__}")
    return raw


# ── HTTP feeds ──────────────────────────────────────────────────────────


class FeedClient:
    """Async client for the static log/data feeds and the legacy API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.feed_base_url
        self._timeout = config.request_timeout

    async def fetch_text(self, path: str) -> str:
        """Fetch a raw text file.

        A 404 means the monitor has not written the file yet and yields
        ``""``; any other failure raises ``NetworkError``.
        """
        url = f"{self._base_url}{path}"
        try:
            resp = await get_response(url, self._timeout)
        except NetworkError as exc:
            if exc.status == 404:
                return ""
            raise
        return resp.text

    async def fetch_log_lines(self, path: str) -> list[str]:
        """Fetch a ``/logs/*.log`` file as non-blank lines."""
        return split_lines(await self.fetch_text(path))

    async def fetch_jsonl(self, path: str, decoder: Callable[[object], T]) -> list[T]:
        """Fetch a ``/data/*.jsonl`` feed, skipping malformed lines."""
        return parse_jsonl(await self.fetch_text(path), decoder, path)

    async def fetch_paper_metrics(self) -> dict[str, PaperMetrics]:
        """Fetch ``/data/metrics.json`` keyed by strategy key."""
        text = await self.fetch_text("/data/metrics.json")
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ParseError(f"/data/metrics.json: invalid JSON ({exc})") from exc
        if not isinstance(data, dict):
            raise ParseError("/data/metrics.json: expected a JSON object")

        metrics: dict[str, PaperMetrics] = {}
        for key, raw in data.items():
            try:
                metrics[key] = parse_paper_metrics(raw)
            except ParseError as exc:
                logger.warning("metrics.json: skipping '%s' (%s)", key, exc)
        return metrics

    # ── Legacy single-process API ────────────────────────────────────────

    async def fetch_legacy_status(self) -> ServiceStatus:
        """``GET /api/status`` from the legacy backend."""
        return parse_service_status(await get_json(f"{self._base_url}/api/status", self._timeout))

    async def fetch_legacy_logs(self) -> list[str]:
        """``GET /api/logs`` → last log lines."""
        data = await get_json(f"{self._base_url}/api/logs", self._timeout)
        lines = data.get("lines", []) if isinstance(data, dict) else None
        if not isinstance(lines, list):
            raise ParseError("/api/logs: expected {lines: [...]}")
        return [str(line) for line in lines]

    async def fetch_legacy_alerts(self) -> list[ConsensusAlert]:
        """``GET /api/alerts`` → last parsed alert records."""
        data = await get_json(f"{self._base_url}/api/alerts", self._timeout)
        if not isinstance(data, dict):
            raise ParseError("/api/alerts: expected a JSON object")
        return decode_many(data.get("alerts", []), parse_consensus_alert, "alerts")
