"""StratWatch — application entry point.

Boots the FastAPI view server and provides the CLI entry point for the live
dashboard and one-shot health checks.
"""

import logging

from fastapi import FastAPI

from stratwatch.api import legacy
from stratwatch.api.routers import router

app = FastAPI(title="StratWatch Dashboard API", version="0.1.0")
app.include_router(router)
app.include_router(legacy.router)

logger = logging.getLogger("stratwatch")


@app.get("/health")
async def health():
    """Liveness of this process (not of the monitored strategies)."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from stratwatch.config import load_config, load_feeds
    from stratwatch.sources.api_client import DashboardClient
    from stratwatch.sources.feeds import FeedClient

    parser = argparse.ArgumentParser(description="StratWatch strategy dashboard")
    parser.add_argument(
        "--mode",
        choices=["serve", "health"],
        default="serve",
        help="serve: run the live dashboard; health: print one health report (default: serve)",
    )
    parser.add_argument("--platform", help="Initial platform (overrides STRATWATCH_PLATFORM)")
    parser.add_argument("--port", type=int, help="HTTP port (overrides HTTP_PORT)")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    client = DashboardClient(config)
    feed_client = FeedClient(config)
    platform = args.platform or config.platform

    if args.mode == "health":
        asyncio.run(_print_health_once(config, client, platform))
        return

    if config.legacy_api:
        legacy.configure_legacy(config.trading_base)
        logger.info("Legacy file backend enabled (reading from %s).", config.trading_base)

    asyncio.run(
        _run_dashboard(
            config, client, feed_client, load_feeds(), platform,
            port=args.port or config.http_port,
        )
    )


async def _run_dashboard(config, client, feed_client, feeds, platform: str, port: int) -> None:
    """Start every view's poll task and the API server on one event loop."""
    import uvicorn

    from stratwatch.api.routers import configure_routers
    from stratwatch.dashboard import Dashboard

    dashboard = Dashboard(config, client, feed_client, feeds)
    dashboard.set_platform(platform)
    configure_routers(dashboard)
    dashboard.start()

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    logger.info("Dashboard API available at http://localhost:%d", port)
    try:
        await server.serve()
    finally:
        await dashboard.stop()
        logger.info("StratWatch stopped.")


async def _print_health_once(config, client, platform: str) -> None:
    """Run one health aggregation and print it."""
    from datetime import datetime, timezone

    from stratwatch.aggregate import Aggregator
    from stratwatch.cli.dashboard import print_health

    aggregator = Aggregator(client, silent_threshold_min=config.silent_threshold_min)
    now = datetime.now(timezone.utc)
    report = await aggregator.fetch_strategy_health(platform, now=now)
    print_health(report, now)


if __name__ == "__main__":
    _run_cli()
