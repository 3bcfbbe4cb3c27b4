"""FastAPI application factory for the JSON API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from ammtrail.api import routes


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application. Route handlers expect
        history_service, quote_engine and cache on app.state.
    """
    app = FastAPI(
        title="AMM Trail",
        lifespan=lifespan,
    )

    app.include_router(routes.router, prefix="/api")

    return app
