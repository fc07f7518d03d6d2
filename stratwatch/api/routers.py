"""Internal API routers — /views, /platform endpoints.

No business logic.  Reads committed view state from the ``Dashboard`` and
applies the sort/filter engine on request.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from stratwatch.metrics import equity_window
from stratwatch.views import (
    PNL_ALL,
    SortState,
    TRADE_SORT_KEYS,
    TradeFilter,
    build_trade_view,
    default_direction,
)

logger = logging.getLogger("stratwatch.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_dashboard = None  # Set via configure_routers()


def configure_routers(dashboard) -> None:
    """Inject the running ``Dashboard`` (or a duck-type for tests)."""
    global _dashboard  # noqa: PLW0603
    _dashboard = dashboard


def _view_payload(name: str) -> dict:
    state = _dashboard.state(name)
    if state is None:
        return {"error": f"View not mounted: {name}"}
    payload = state.to_dict()
    if name == "positions":
        payload["hold_labels"] = _dashboard.hold_labels
    elif name == "health":
        payload["relative_labels"] = _dashboard.relative_labels
        payload["service_ok"] = state.data.service_ok if state.data is not None else False
    return payload


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/views")
async def list_views():
    """Return every view with its mount and refresh status."""
    if _dashboard is None:
        return {"platform": None, "views": {}}
    views = {}
    for name in _dashboard.view_names:
        state = _dashboard.state(name)
        views[name] = {
            "mounted": state is not None,
            "loading": state.loading if state else None,
            "error": state.error if state else None,
            "last_update": state.last_update if state else None,
        }
    return {"platform": _dashboard.platform, "views": views}


@router.get("/views/trades/explore")
async def explore_trades(
    strategy: Optional[str] = Query(default=None),
    asset: Optional[str] = Query(default=None),
    pnl: str = Query(default=PNL_ALL, pattern="^(all|winners|losers)$"),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    sort: str = Query(default="entry_time"),
    direction: Optional[str] = Query(default=None, pattern="^(asc|desc)$"),
):
    """Filter and sort the committed trades view."""
    if sort not in TRADE_SORT_KEYS:
        return {"error": f"Unknown sort key: {sort}"}
    if _dashboard is None or _dashboard.state("trades") is None:
        return {"error": "View not mounted: trades"}

    state = _dashboard.state("trades")
    view = build_trade_view(
        state.data or [],
        TradeFilter(strategy=strategy, asset=asset, pnl=pnl,
                    date_from=date_from, date_to=date_to),
        SortState(sort, direction or default_direction(sort)),
        datetime.now(timezone.utc),
    )
    return {
        "rows": view.rows,
        "stats": view.stats,
        "strategies": view.strategy_keys,
        "assets": view.asset_keys,
        "empty_message": view.empty_message,
        "error": state.error,
        "last_update": state.last_update,
    }


@router.get("/views/equity/series")
async def equity_series(
    range_key: str = Query(default="all", alias="range", pattern="^(1h|6h|1d|all)$"),
):
    """Return equity points with drawdown, restricted to a trailing window."""
    if _dashboard is None or _dashboard.state("equity") is None:
        return {"error": "View not mounted: equity"}
    state = _dashboard.state("equity")
    rows = equity_window(state.data or [], range_key)
    return {
        "range": range_key,
        "rows": rows,
        "start_equity": rows[0].total_equity if rows else 0.0,
        "error": state.error,
        "last_update": state.last_update,
    }


@router.get("/views/{name}")
async def get_view(name: str):
    """Return the committed state of one view."""
    if _dashboard is None:
        return {"error": "Dashboard not running"}
    if name not in _dashboard.view_names:
        return {"error": f"Unknown view: {name}"}
    return _view_payload(name)


@router.post("/platform")
async def post_platform(body: dict):
    """Switch the selected platform.

    Expects ``{"platform": "..."}``.  Platform-bound views refetch
    immediately; their in-flight results are discarded.
    """
    if _dashboard is None:
        return {"status": "error", "errors": ["Dashboard not running"]}
    platform = body.get("platform")
    if not platform:
        return {"status": "error", "errors": ["Missing platform"]}
    try:
        _dashboard.set_platform(platform)
    except ValueError as exc:
        return {"status": "error", "errors": [str(exc)]}
    return {"status": "ok", "platform": _dashboard.platform}
