"""FastAPI dashboard application factory (JSON API only)."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from fundingarb.dashboard.routes import api


def create_dashboard_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI dashboard application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application with the JSON API mounted under /api.
    """
    app = FastAPI(
        title="Cross-Exchange Funding Dashboard",
        lifespan=lifespan,
    )

    # Wired by main.py lifespan (or directly by tests)
    app.state.funding_monitor = None

    app.include_router(api.router, prefix="/api")

    return app
