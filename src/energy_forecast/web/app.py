"""
FastAPI application for the EnergyForecast dashboard.

PURPOSE: Application factory and server runner.
AI CONTEXT: One EnergyForecastApp per FastAPI app, stored on app.state and
started/closed by the lifespan.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from ..__version__ import __version__
from ..application import EnergyForecastApp
from ..config import Config
from .routes import router

__all__ = ["create_app", "run_dashboard"]

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """
    Start the application root before serving and close it afterwards.

    Startup attempts auto-login from the ENERGY_FORECAST_* environment
    variables; without them the dashboard opens on its login form.

    Args:
        app: The FastAPI application instance (provided by FastAPI).

    Yields:
        None. Control returns to FastAPI to handle requests.
    """
    energy: EnergyForecastApp = app.state.energy
    logger.info("EnergyForecast dashboard starting (v%s)", __version__)
    await energy.start()
    yield
    await energy.close()
    logger.info("EnergyForecast dashboard shutting down")


def create_app(application: EnergyForecastApp | None = None) -> FastAPI:
    """
    Create and configure the FastAPI dashboard application.

    Args:
        application: Application root to serve. Default: a new
            EnergyForecastApp built from Config and the environment.
            Tests pass one wired to in-memory storage and a mock transport.

    Returns:
        FastAPI application with all routes registered (/, /partials/*,
        /charts/*, /actions/*, /api/*).

    Example:
        >>> from fastapi.testclient import TestClient
        >>> with TestClient(create_app(EnergyForecastApp(filesystem=mock_fs))) as client:
        ...     client.get("/").status_code
        200
    """
    app = FastAPI(
        title="EnergyForecast",
        description="Electricity usage dashboard and monthly forecast",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.energy = application or EnergyForecastApp()
    app.include_router(router)
    return app


def run_dashboard(
    host: str = Config.DEFAULT_HOST,
    port: int = Config.DEFAULT_PORT,
    reload: bool = False,
    log_level: str = "info",
) -> None:
    """
    Launch the EnergyForecast web dashboard server.

    Blocks until the server is stopped (Ctrl+C).

    Args:
        host: Interface to bind. '127.0.0.1' (default) for local access,
            '0.0.0.0' to serve e.g. a wall tablet on the home network.
        port: TCP port. Default 8000.
        reload: Auto-reload on code changes (development only).
        log_level: Uvicorn logging verbosity.

    Raises:
        OSError: If the port is already in use or host is invalid.
    """
    uvicorn.run(
        "energy_forecast.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# For direct execution
if __name__ == "__main__":
    run_dashboard()
