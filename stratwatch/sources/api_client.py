"""Dashboard REST API async client.

Typed wrappers around each ``/api`` endpoint exposed by the strategy
processes.  Every call issues exactly one request; failures are normalised
into ``NetworkError`` / ``ParseError``.
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from stratwatch.config import Config
from stratwatch.sources.errors import NetworkError, ParseError
from stratwatch.sources.models import (
    EquityCurvePoint,
    HealthStatus,
    Page,
    Signal,
    Strategy,
    StrategyDocs,
    Summary,
    Trade,
    decode_many,
    parse_docs,
    parse_equity_point,
    parse_health,
    parse_signal,
    parse_strategy,
    parse_summary,
    parse_trade,
)

logger = logging.getLogger("stratwatch.sources")

ALL_PLATFORMS = "all"


def filter_by_platform(strategies: list[Strategy], platform: str) -> list[Strategy]:
    """Keep the strategies whose ``exchanges`` set contains *platform*.

    ``"all"`` keeps every strategy.
    """
    if platform == ALL_PLATFORMS:
        return list(strategies)
    return [s for s in strategies if platform in s.exchanges]


async def get_json(url: str, timeout: float, params: Optional[dict] = None):
    """Issue one GET and decode the JSON body.

    Raises ``NetworkError`` on transport failure or non-2xx status and
    ``ParseError`` when the body is not valid JSON.
    """
    resp = await get_response(url, timeout, params=params)
    try:
        return resp.json()
    except ValueError as exc:
        raise ParseError(f"GET {url}: invalid JSON body ({exc})") from exc


async def get_response(
    url: str,
    timeout: float,
    params: Optional[dict] = None,
) -> httpx.Response:
    """Issue one GET and return the successful response."""
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(
                url,
                headers={"Accept": "application/json"},
                params=params,
                timeout=timeout,
            )
    except httpx.RequestError as exc:
        raise NetworkError(None, f"GET {url} failed: {exc}") from exc

    if not resp.is_success:
        raise NetworkError(resp.status_code, f"GET {url}: {resp.reason_phrase}")
    return resp


def _object(payload, url: str) -> dict:
    if not isinstance(payload, dict):
        raise ParseError(f"GET {url}: expected a JSON object")
    return payload


class DashboardClient:
    """Async client wrapping the strategy dashboard REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.api_base_url
        self._timeout = config.request_timeout

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self._base_url}{path}"
        return _object(await get_json(url, self._timeout, params=params), url)

    # ── Strategies ───────────────────────────────────────────────────────

    async def fetch_strategies(self) -> list[Strategy]:
        """``GET /api/strategies`` → list of ``Strategy`` snapshots."""
        data = await self._get("/api/strategies")
        return decode_many(data.get("strategies", []), parse_strategy, "strategies")

    async def fetch_strategies_by_platform(self, platform: str) -> list[Strategy]:
        """Strategies tagged with *platform* in their ``exchanges`` set."""
        return filter_by_platform(await self.fetch_strategies(), platform)

    async def fetch_strategy_trades(
        self,
        name: str,
        status: Optional[str] = None,
    ) -> Page[Trade]:
        """``GET /api/strategies/:name/trades[?status=...]``."""
        params = {"status": status} if status else None
        data = await self._get(f"/api/strategies/{quote(name, safe='')}/trades", params)
        return _page(data, "trades", parse_trade, f"trades[{name}]")

    async def fetch_strategy_signals(self, name: str) -> Page[Signal]:
        """``GET /api/strategies/:name/signals``.

        Signals are returned in source order (newest first).
        """
        data = await self._get(f"/api/strategies/{quote(name, safe='')}/signals")
        return _page(data, "signals", parse_signal, f"signals[{name}]")

    async def fetch_strategy_docs(self, name: str) -> StrategyDocs:
        """``GET /api/strategies/:name/docs``."""
        data = await self._get(f"/api/strategies/{quote(name, safe='')}/docs")
        return parse_docs(data)

    # ── Account-level ────────────────────────────────────────────────────

    async def fetch_summary(self) -> Summary:
        """``GET /api/summary``."""
        return parse_summary(await self._get("/api/summary"))

    async def fetch_equity_curve(self) -> list[EquityCurvePoint]:
        """``GET /api/equity-curve`` → points ordered oldest-first."""
        data = await self._get("/api/equity-curve")
        return decode_many(data.get("data", []), parse_equity_point, "equity-curve")

    async def fetch_health(self) -> HealthStatus:
        """``GET /api/health``."""
        return parse_health(await self._get("/api/health"))


def _page(data: dict, key: str, decoder, source: str) -> Page:
    items = decode_many(data.get(key, []), decoder, source)
    try:
        return Page(
            items=items,
            total=int(data.get("total", len(items))),
            limit=int(data.get("limit", len(items))),
            offset=int(data.get("offset", 0)),
        )
    except (TypeError, ValueError) as exc:
        raise ParseError(f"{source}: invalid pagination fields ({exc})") from exc
