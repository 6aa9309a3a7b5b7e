"""Entry point for the cross-exchange funding monitor.

Wires all components together and optionally embeds the FastAPI dashboard.
When the dashboard is enabled (default), the monitor and the dashboard
share a single asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. httpx.AsyncClient (shared by the REST adapters)
4. IntervalStore (Aster funding-interval memo)
5. Adapters (one per enabled exchange)
6. FundingMonitor (periodic aggregation passes)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI

from fundingarb.config import AppSettings
from fundingarb.exchange import build_adapters, build_interval_store
from fundingarb.exchange.interval_store import SqliteIntervalStore
from fundingarb.logging import get_logger, setup_logging
from fundingarb.market_data.funding_monitor import FundingBoard, FundingMonitor

TOP_OPPORTUNITIES_LOGGED = 5


async def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Note: Does NOT start the monitor -- that happens in the lifespan
    (dashboard mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("fundingarb.main")

    http_client = httpx.AsyncClient(
        timeout=settings.aggregation.http_timeout_seconds,
        headers={"Accept": "application/json"},
    )

    interval_store = build_interval_store(settings)
    if isinstance(interval_store, SqliteIntervalStore):
        await interval_store.connect()

    adapters = build_adapters(settings, http_client, interval_store)
    if not adapters:
        logger.warning("no_exchanges_enabled")

    funding_monitor = FundingMonitor(adapters, settings.aggregation)

    logger.info(
        "components_built",
        exchanges=[a.exchange.value for a in adapters],
        interval_cache=settings.interval_cache.backend,
    )

    return {
        "http_client": http_client,
        "interval_store": interval_store,
        "adapters": adapters,
        "funding_monitor": funding_monitor,
    }


async def _close_components(components: dict[str, Any]) -> None:
    """Stop the monitor and release network and storage resources."""
    await components["funding_monitor"].close()
    await components["http_client"].aclose()
    await components["interval_store"].close()


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to set ``stop_event``.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("fundingarb.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


def _log_top_opportunities(board: FundingBoard) -> None:
    logger = get_logger("fundingarb.main")
    for rank, opportunity in enumerate(board.opportunities[:TOP_OPPORTUNITIES_LOGGED], 1):
        logger.info(
            "top_opportunity",
            rank=rank,
            asset=opportunity.asset,
            long=opportunity.long_exchange.value,
            short=opportunity.short_exchange.value,
            hourly_spread=str(opportunity.hourly_spread),
            apy=str(opportunity.projected_apy.quantize(Decimal("0.01"))),
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores the monitor on app.state and starts it.
    On shutdown: stops the monitor and closes every resource.
    """
    logger = get_logger("fundingarb.main")
    components = app.state.components

    app.state.funding_monitor = components["funding_monitor"]
    await components["funding_monitor"].start()

    logger.info("lifespan_started")

    yield

    await _close_components(components)
    logger.info("funding_monitor_shutdown_complete")


async def _run_headless(settings: AppSettings, components: dict[str, Any]) -> None:
    """Refresh on the poll interval until SIGINT/SIGTERM, logging the leaders."""
    logger = get_logger("fundingarb.main")
    monitor: FundingMonitor = components["funding_monitor"]
    stop_event = asyncio.Event()
    _setup_signal_handlers(stop_event)

    logger.info(
        "starting_without_dashboard",
        poll_interval=settings.aggregation.poll_interval_seconds,
    )

    try:
        while not stop_event.is_set():
            board = await monitor.refresh_once()
            _log_top_opportunities(board)
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=settings.aggregation.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
    finally:
        await _close_components(components)
        logger.info("funding_monitor_shutdown_complete")


async def run() -> None:
    """Run the funding monitor.

    When dashboard is enabled (DASHBOARD_ENABLED=true, the default):
    - Creates the FastAPI dashboard app with lifespan
    - Runs monitor and dashboard in a single asyncio event loop via uvicorn

    When dashboard is disabled (DASHBOARD_ENABLED=false):
    - Runs refresh passes directly and logs the top opportunities
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("fundingarb.main")

    # 3-6. Build all components
    components = await _build_components(settings)

    if settings.dashboard.enabled:
        from fundingarb.dashboard.app import create_dashboard_app

        app = create_dashboard_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_dashboard",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        await _run_headless(settings, components)


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
