"""Entry point for the AMM history service.

Wires all components together and serves the JSON API. When the API is
enabled (default), components share a single asyncio event loop with
uvicorn via FastAPI's lifespan context manager. When disabled, only the
periodic cache sweep runs.

_build_components() creates, in order:
1. SqliteStorage + CacheLayer (persistent cache)
2. WebsocketLedgerClient (bounded connection pool)
3. PoolDiscovery and HistoryFetcher
4. QuoteEngine (fee profiles)
5. PairHistoryService (orchestration)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from ammtrail.config import AppSettings
from ammtrail.data.cache import CacheLayer, run_sweep_loop
from ammtrail.data.fetcher import HistoryFetcher
from ammtrail.data.storage import SqliteStorage
from ammtrail.ledger.discovery import PoolDiscovery
from ammtrail.ledger.websocket_client import WebsocketLedgerClient
from ammtrail.logging import get_logger, setup_logging
from ammtrail.pipeline import PairHistoryService
from ammtrail.pnl.quote import QuoteEngine


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT open the storage -- that happens in the lifespan
    (API mode) or run() (sweep-only mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    # 1. Persistent cache
    storage = SqliteStorage(
        settings.cache.db_path,
        quota_bytes=settings.cache.storage_quota_bytes,
    )
    cache = CacheLayer(storage, settings.cache)

    # 2. Ledger client with its shared connection pool
    ledger_client = WebsocketLedgerClient(settings.node)

    # 3. Discovery and history fetch
    discovery = PoolDiscovery(ledger_client, settings.node)
    fetcher = HistoryFetcher(ledger_client, settings.node, settings.fetch)

    # 4. Quote engine
    quote_engine = QuoteEngine(settings.quote)

    # 5. Orchestration
    history_service = PairHistoryService(discovery, fetcher, cache)

    return {
        "storage": storage,
        "cache": cache,
        "ledger_client": ledger_client,
        "discovery": discovery,
        "fetcher": fetcher,
        "quote_engine": quote_engine,
        "history_service": history_service,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("ammtrail.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: opens storage, stores components on app.state, starts the
    cache sweep as a background task.

    On shutdown: cancels the sweep, closes the ledger client and storage.
    """
    logger = get_logger("ammtrail.main")
    settings = app.state.settings
    components = app.state.components

    # Store components on app.state for route handler access
    app.state.cache = components["cache"]
    app.state.quote_engine = components["quote_engine"]
    app.state.history_service = components["history_service"]

    await components["storage"].connect()

    sweep_task = asyncio.create_task(
        run_sweep_loop(components["cache"], settings.cache.sweep_interval)
    )

    logger.info("lifespan_started", endpoints=len(settings.node.endpoints))

    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass

    await components["ledger_client"].close()
    await components["storage"].close()

    logger.info("ammtrail_stopped")


async def run() -> None:
    """Run the service.

    When the API is enabled (API_ENABLED=true, the default):
    - Creates the FastAPI app with lifespan
    - Runs it via uvicorn in this event loop

    When the API is disabled (API_ENABLED=false):
    - Opens the cache and runs only the periodic sweep until SIGINT/SIGTERM
    """
    # Settings come from env and .env
    settings = AppSettings()

    # Logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("ammtrail.main")

    # Build all components
    components = _build_components(settings)

    if settings.api.enabled:
        from ammtrail.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info("starting_without_api", sweep_interval=settings.cache.sweep_interval)

        await components["storage"].connect()
        sweep_task = asyncio.create_task(
            run_sweep_loop(components["cache"], settings.cache.sweep_interval)
        )
        try:
            await stop_event.wait()
        finally:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass
            await components["ledger_client"].close()
            await components["storage"].close()
            logger.info("ammtrail_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
